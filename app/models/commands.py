"""
app/models/commands.py

Purpose: Fully-specified task commands

- Built by the slot-filling engine once every required field is present
- Validated again by the task executor before any write
- Sales, expenses and stock additions carry a list of lines; a flat
  single-line payload is accepted and folded into a one-line list
"""

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field, model_validator


SaleType = Literal["cash", "bank", "credit"]


def _fold_single_line(data: Any, list_field: str, line_fields: tuple) -> Any:
    """Moves flat line fields into ``list_field`` when no list was given."""
    if not isinstance(data, dict) or list_field in data:
        return data
    folded: Dict[str, Any] = dict(data)
    folded[list_field] = [{key: folded.pop(key) for key in line_fields if key in folded}]
    return folded


class SaleItem(BaseModel):
    product_name: str = Field(..., min_length=1)
    product_id: Optional[str] = None
    units_sold: int = Field(..., gt=0)
    amount_per_unit: float = Field(..., gt=0, allow_inf_nan=False)

    @property
    def total_amount(self) -> float:
        return round(self.units_sold * self.amount_per_unit, 2)


class SaleCommand(BaseModel):
    items: List[SaleItem] = Field(..., min_length=1)
    sale_type: SaleType = "cash"
    customer_name: Optional[str] = None
    bank_account_id: Optional[str] = None

    @model_validator(mode="before")
    @classmethod
    def single_item_shorthand(cls, data: Any) -> Any:
        return _fold_single_line(data, "items", tuple(SaleItem.model_fields))

    @model_validator(mode="after")
    def credit_sale_needs_customer(self):
        if self.sale_type == "credit" and not (self.customer_name or "").strip():
            raise ValueError("A credit sale needs the customer's name")
        return self

    @property
    def total_amount(self) -> float:
        return round(sum(item.total_amount for item in self.items), 2)


class ExpenseItem(BaseModel):
    amount: float = Field(..., gt=0, allow_inf_nan=False)
    description: str = Field(..., min_length=1)
    category: str = Field(default="General", min_length=1)


class ExpenseCommand(BaseModel):
    expenses: List[ExpenseItem] = Field(..., min_length=1)
    bank_account_id: Optional[str] = None

    @model_validator(mode="before")
    @classmethod
    def single_expense_shorthand(cls, data: Any) -> Any:
        return _fold_single_line(data, "expenses", tuple(ExpenseItem.model_fields))

    @property
    def total_amount(self) -> float:
        return round(sum(expense.amount for expense in self.expenses), 2)


class ProductItem(BaseModel):
    product_name: str = Field(..., min_length=1)
    quantity_added: int = Field(..., ge=0)
    cost: float = Field(..., ge=0, allow_inf_nan=False)
    price: float = Field(..., gt=0, allow_inf_nan=False)
    reorder_level: int = Field(default=5, ge=0)

    @property
    def purchase_cost(self) -> float:
        return round(self.cost * self.quantity_added, 2)


class ProductCommand(BaseModel):
    products: List[ProductItem] = Field(..., min_length=1)
    bank_account_id: Optional[str] = None

    @model_validator(mode="before")
    @classmethod
    def single_product_shorthand(cls, data: Any) -> Any:
        return _fold_single_line(data, "products", tuple(ProductItem.model_fields))


class CustomerPaymentCommand(BaseModel):
    customer_name: str = Field(..., min_length=1)
    amount: float = Field(..., gt=0, allow_inf_nan=False)
    bank_account_id: Optional[str] = None


class BankAccountCommand(BaseModel):
    bank_name: str = Field(..., min_length=1)
    opening_balance: float = Field(default=0, allow_inf_nan=False)


class ReconcileCommand(BaseModel):
    transaction_id: str
    action: Literal["edit", "delete"]
    field: Optional[Literal["amount", "description", "category"]] = None
    value: Optional[Any] = None

    @model_validator(mode="after")
    def edit_needs_field(self):
        if self.action == "edit" and (self.field is None or self.value is None):
            raise ValueError("An edit needs a field and a new value")
        return self
