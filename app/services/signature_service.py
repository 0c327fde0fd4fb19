import hashlib
import hmac
from typing import Optional


def sign_meta_payload(body: bytes, app_secret: str) -> str:
    digest = hmac.new(app_secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    return f"sha256={digest}"


def verify_meta_signature(body: bytes, header: Optional[str], app_secret: Optional[str]) -> bool:
    """Check X-Hub-Signature-256. Passes when no app secret is configured."""
    if not app_secret:
        return True
    if not header or not header.startswith("sha256="):
        return False
    return hmac.compare_digest(sign_meta_payload(body, app_secret), header)


def verify_telegram_secret(header: Optional[str], expected: Optional[str]) -> bool:
    """Check X-Telegram-Bot-Api-Secret-Token. Passes when no secret is configured."""
    if not expected:
        return True
    return bool(header) and hmac.compare_digest(header, expected)
