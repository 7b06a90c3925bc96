"""
app/services/email_service.py

Purpose: Transactional email (Brevo)

- Generates and sends the onboarding verification code
- Without an API key the code is logged instead (development)
"""

import secrets

import httpx

from app.core.config import settings
from app.core.exceptions import UpstreamUnavailable
from app.core.logging import get_logger

logger = get_logger(__name__)

BREVO_SEND_URL = "https://api.brevo.com/v3/smtp/email"


def generate_otp() -> str:
    """Random 6-digit code."""
    return f"{secrets.randbelow(900000) + 100000}"


def _otp_html(business_name: str, otp: str) -> str:
    return f"""<html>
  <body>
    <h1>Hello from LedgerChat!</h1>
    <p>Hi {business_name},</p>
    <p>Your verification code is: <strong>{otp}</strong></p>
    <p>This code will expire in {settings.OTP_EXPIRY_MINUTES} minutes.</p>
    <p>If you did not request this, you can safely ignore this email.</p>
  </body>
</html>"""


async def send_otp(email: str, business_name: str) -> str:
    """
    Sends a verification code to ``email``.

    Returns:
        The generated code

    Raises:
        UpstreamUnavailable: If the email provider rejected or timed out
    """
    otp = generate_otp()

    if not settings.BREVO_API_KEY:
        logger.warning(f"📧 BREVO_API_KEY not set; OTP for {email} is {otp}")
        return otp

    body = {
        "sender": {"name": settings.EMAIL_SENDER_NAME, "email": settings.EMAIL_SENDER},
        "to": [{"email": email, "name": business_name}],
        "subject": "Your LedgerChat Verification Code",
        "htmlContent": _otp_html(business_name, otp),
    }

    try:
        async with httpx.AsyncClient() as client:
            response = await client.post(
                BREVO_SEND_URL,
                json=body,
                headers={"api-key": settings.BREVO_API_KEY, "accept": "application/json"},
                timeout=10.0
            )
    except httpx.TimeoutException as e:
        logger.error(f"Email provider timeout sending OTP to {email}")
        raise UpstreamUnavailable("Email provider timed out") from e
    except httpx.RequestError as e:
        logger.error(f"Email provider unreachable: {e}")
        raise UpstreamUnavailable("Email provider unreachable") from e

    if response.status_code >= 300:
        logger.error(f"❌ Brevo error {response.status_code}: {response.text[:300]}")
        raise UpstreamUnavailable(f"Email provider returned {response.status_code}")

    logger.info(f"📧 OTP sent to {email}")
    return otp
