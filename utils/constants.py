"""
utils/constants.py

Purpose: Centralized static content

- All user-facing messages
- Button ids and labels
- Menu definitions and currency aliases

(Prevents hardcoding across the codebase)
"""

# ============================================================
# ONBOARDING
# ============================================================

WELCOME_MESSAGE = """👋 *Welcome to LedgerChat!*

I'm your bookkeeping assistant on WhatsApp. Just tell me what you sold, bought or spent and I'll keep your books 📒

To get started, please send me:
1️⃣ Your *business name*
2️⃣ Your *email address*

Example: _Ada's Fabrics, ada@example.com_"""

ASK_BUSINESS_AND_EMAIL_RETRY = """🤔 I need both your *business name* and a valid *email address*.

Example: _Ada's Fabrics, ada@example.com_"""

OTP_SENT_MESSAGE = """📧 I've sent a 6-digit code to *{email}*.

Please type the code here to verify your email. It expires in {minutes} minutes."""

OTP_EMAIL_FAILED_MESSAGE = """❌ I couldn't send the verification email right now.

Please send your business name and email again in a moment."""

OTP_INVALID_MESSAGE = "❌ That code doesn't match. Please check your email and try again."

OTP_EXPIRED_MESSAGE = """⏰ That code has expired.

Please send your business name and email again and I'll send a new one."""

ASK_CURRENCY_MESSAGE = """✅ Email verified!

Last step: which *currency* do you trade in?
Example: _Naira_, _NGN_, _USD_, _Cedis_"""

CURRENCY_INVALID_MESSAGE = "🤔 I didn't recognise that currency. Please reply with something like *NGN*, *USD* or *GHS*."

ONBOARDING_COMPLETE_MESSAGE = """🎉 *Setup complete, {business_name}!*

Your {trial_days}-day free trial has started. You can now tell me things like:
• _Sold 3 bags of rice for 45k cash_
• _Spent 5000 on transport_
• _Add 20 shoes, cost 8k, sell 12k_"""

CURRENCY_ALIASES = {
    "NGN": ("ngn", "naira", "₦", "nigeria", "nigerian"),
    "USD": ("usd", "dollar", "dollars", "$", "us"),
    "GHS": ("ghs", "cedi", "cedis", "gh₵", "ghana"),
    "KES": ("kes", "shilling", "shillings", "ksh", "kenya"),
    "ZAR": ("zar", "rand", "south africa"),
    "GBP": ("gbp", "pound", "pounds", "£"),
    "EUR": ("eur", "euro", "euros", "€"),
}

# ============================================================
# MENU
# ============================================================

MAIN_MENU_TEXT = "What would you like to do? 👇"
MAIN_MENU_BUTTON = "Open Menu"

MAIN_MENU_SECTIONS = [
    {
        "title": "Record",
        "rows": [
            {"id": "menu:log_sale", "title": "💰 Log a Sale"},
            {"id": "menu:log_expense", "title": "💸 Log an Expense"},
            {"id": "menu:add_product", "title": "📦 Add Stock"},
            {"id": "menu:customer_payment", "title": "🤝 Customer Payment"},
            {"id": "menu:add_bank", "title": "🏦 Add Bank Account"},
        ]
    },
    {
        "title": "View",
        "rows": [
            {"id": "menu:check_stock", "title": "📋 Check Stock"},
            {"id": "menu:report", "title": "📊 Reports"},
            {"id": "menu:balances", "title": "🏦 Bank Balances"},
            {"id": "menu:debtors", "title": "📒 Who Owes Me"},
            {"id": "menu:edit", "title": "✏️ Edit a Transaction"},
        ]
    },
]

# Opening question for each menu-started flow
MENU_FLOW_PROMPTS = {
    "menu:log_sale": "💰 What did you sell? e.g. _2 bags of rice at 45k each, cash_",
    "menu:log_expense": "💸 What did you spend on, and how much?",
    "menu:add_product": "📦 Which product are you adding, and how many?",
    "menu:customer_payment": "🤝 Who paid you, and how much?",
    "menu:add_bank": "🏦 What is the bank name?",
}

# ============================================================
# CONVERSATION CONTROL
# ============================================================

CANCELLED_MESSAGE = "Cancelled. 👍"

FLOW_EXPIRED_MESSAGE = "⏰ Your previous task timed out, so I've cleared it."

RECOVERY_MESSAGE = "🔄 Something got mixed up on my side, so I've reset our conversation. Please try again."

GENERIC_ERROR_MESSAGE = "❌ Something went wrong. Please try again or type *menu* to start over."

TASK_FAILED_MESSAGE = "I ran into an issue trying to complete that task. Please try again. 🛠️"

EXTRACTION_FAILED_REPLY = "🤔 Sorry, I didn't quite get that. Could you say it another way?"

SELECT_FROM_MENU_MESSAGE = "Please select an option from the menu, or type *cancel*."

UNSUPPORTED_MEDIA_MESSAGE = "I couldn't understand that content. Please send it as text. 🙏"

RATE_LIMIT_WARNING = "⏳ You're sending messages very quickly. Please wait a minute and try again."

# ============================================================
# INTENT REPLIES
# ============================================================

GREETING_REPLY = "Hello! How can I help you today?"

UNKNOWN_COMMAND_REPLY = "If that was a command, I didn't recognize it. Try checking the menu."

AI_UNAVAILABLE_REPLY = "I'm having trouble connecting to my brain right now. 🧠\nPlease use the menu to select an option."

DEFAULT_GENERAL_REPLY = "How can I help? Type *menu* to see what I can do."

DEFAULT_INSIGHT = "💡 Tip: record every sale and expense the same day. Small daily habits make month-end much easier."

# ============================================================
# SLOT FILLING PROMPTS
# ============================================================

FIELD_PROMPTS = {
    "sale": {
        "product_name": "Which product did you sell?",
        "units_sold": "How many units did you sell?",
        "amount_per_unit": "What price did you sell each one for?",
        "sale_type": "Was this Cash, Bank Transfer, or Credit?",
        "customer_name": "Who is the customer? (needed for credit sales)",
    },
    "expense": {
        "amount": "How much was the expense?",
        "description": "What was the money for?",
    },
    "product": {
        "product_name": "What is the product called?",
        "quantity_added": "How many are you adding?",
        "cost": "What is the Cost Price?",
        "price": "What is the Selling Price?",
    },
    "customer_payment": {
        "customer_name": "Who made the payment?",
        "amount": "How much did they pay?",
    },
    "bank_account": {
        "bank_name": "What is the bank name?",
        "opening_balance": "What is the current balance?",
    },
}

# ============================================================
# SELECTIONS
# ============================================================

BANK_SELECTION_PROMPTS = {
    "sale": "🏦 Which account received the money?",
    "expense": "🏦 Paid from which account?",
    "purchase": "🏦 Paid for stock from which account?",
    "customer_payment": "🏦 Which account received the payment?",
}

BANK_NONE_TITLE = "Cash / None"
BANK_BUTTON_PREFIX = "select_bank:"
PRODUCT_BUTTON_PREFIX = "confirm_prod:"
TRANSACTION_BUTTON_PREFIX = "select_txn:"
EDIT_FIELD_BUTTON_PREFIX = "edit_field:"
REPORT_BUTTON_PREFIX = "report:"
NONE_OPTION = "none"

ITEM_SELECTION_PROMPT = "🔎 I couldn't find *{name}* exactly. Did you mean one of these?"

PRODUCT_NOT_LISTED_MESSAGE = "Okay. Add *{name}* as a product first (e.g. _Add 10 {name}, cost 5k, sell 8k_), then log the sale."

NONE_OF_THESE_TITLE = "None of these"

REPORT_MENU_TEXT = "📊 Which report would you like?"

REPORT_OPTIONS = [
    {"id": "report:SALES", "title": "Sales"},
    {"id": "report:EXPENSES", "title": "Expenses"},
    {"id": "report:PNL", "title": "Profit & Loss"},
    {"id": "report:INVENTORY", "title": "Inventory"},
]

RECONCILE_PICK_PROMPT = "✏️ Which transaction do you want to change?"

RECONCILE_NONE_MESSAGE = "You don't have any transactions to edit yet."

TRANSACTION_NOT_FOUND_MESSAGE = "I couldn't find that transaction anymore."

INVALID_AMOUNT_REPLY = "Please enter a valid amount greater than zero (e.g. 5000 or 5k)."

RECONCILE_ACTION_PROMPT = "What would you like to do with:\n{summary}"

EDIT_FIELD_OPTIONS = [
    {"id": "edit_field:amount", "title": "Edit Amount"},
    {"id": "edit_field:description", "title": "Edit Description"},
    {"id": "edit_field:delete", "title": "Delete"},
]

EDIT_VALUE_PROMPTS = {
    "amount": "What is the correct amount?",
    "description": "What is the correct description?",
    "category": "What is the correct category?",
}

# ============================================================
# SUBSCRIPTION
# ============================================================

SUBSCRIPTION_ACTIVE_MESSAGE = "✅ Your *{status}* plan is active until *{expires}*."

SUBSCRIPTION_EXPIRED_MESSAGE = "⚠️ Your subscription has expired. Type *upgrade* to renew."

SUBSCRIPTION_REQUIRED_MESSAGE = """⚠️ Your subscription has expired, so I can't record new entries.

Type *upgrade* to renew and keep your books up to date."""

PAYMENT_LINK_MESSAGE = """💳 *Renew your subscription*

Plan: {price} / {days} days
Pay securely here: {url}"""

PAYMENT_LINK_FAILED_MESSAGE = "❌ I couldn't create a payment link right now. Please try again shortly."

PAYMENT_CONFIRMED_MESSAGE = """🎉 *Payment received!*

Your subscription is active until *{expires}*. Thank you!"""

PAYMENT_UNDERPAID_MESSAGE = """⚠️ *Payment Alert*

We received {paid}, but the plan costs {price}. Your subscription was not extended. Please contact support."""
