import logging
import os

import resend
from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)

RESEND_API_KEY = os.getenv("RESEND_API_KEY")
RESEND_FROM_EMAIL = os.getenv("RESEND_FROM_EMAIL", "noreply@quimicavestibular.com.br")
RESEND_FROM_NAME = os.getenv("RESEND_FROM_NAME", "QuimITA")

if RESEND_API_KEY:
    resend.api_key = RESEND_API_KEY
else:
    logger.warning("RESEND_API_KEY not found. Email functionality will be disabled.")


def send_password_reset_email(email: str, reset_token: str, base_url: str) -> bool:
    """
    Send the password reset link using Resend.

    Args:
        email: Recipient email address
        reset_token: Raw token to embed in the link
        base_url: Frontend URL that hosts the reset page

    Returns:
        bool: True if email was sent successfully, False otherwise
    """
    if not RESEND_API_KEY:
        logger.error("Cannot send password reset email - Resend not configured")
        return False

    reset_link = f"{base_url.rstrip('/')}/redefinir-senha?token={reset_token}"

    html_content = f"""
    <!DOCTYPE html>
    <html>
    <head>
        <meta charset="UTF-8">
        <title>Redefinição de senha - QuimITA</title>
    </head>
    <body style="font-family: Arial, sans-serif; line-height: 1.6; color: #333; max-width: 600px; margin: 0 auto; padding: 20px;">
        <h1 style="font-size: 24px;">Redefinição de senha</h1>
        <p>Recebemos um pedido para redefinir a senha da sua conta QuimITA.</p>
        <p>
            <a href="{reset_link}"
               style="display: inline-block; background: #2563eb; color: white; padding: 12px 24px;
                      text-decoration: none; border-radius: 6px; font-weight: 600;">
                Redefinir senha
            </a>
        </p>
        <p style="font-size: 13px; color: #6b7280;">
            O link expira em 1 hora. Se você não fez este pedido, ignore este email.
        </p>
    </body>
    </html>
    """

    text_content = (
        "Recebemos um pedido para redefinir a senha da sua conta QuimITA.\n\n"
        f"Acesse: {reset_link}\n\n"
        "O link expira em 1 hora. Se você não fez este pedido, ignore este email."
    )

    try:
        params = {
            "from": f"{RESEND_FROM_NAME} <{RESEND_FROM_EMAIL}>",
            "to": [email],
            "subject": "Redefinição de senha - QuimITA",
            "html": html_content,
            "text": text_content,
        }
        resend.Emails.send(params)
        return True
    except Exception:
        logger.exception("Error sending password reset email to %s", email)
        return False
