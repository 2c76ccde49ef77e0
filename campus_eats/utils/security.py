# campus_eats/utils/security.py
import base64
import re
from ..exceptions import ValidationError

_LOCAL_MSISDN = re.compile(r"^0([17]\d{8})$")
_INTL_MSISDN = re.compile(r"^\+?254([17]\d{8})$")

def generate_stk_password(shortcode: str, passkey: str, timestamp: str) -> str:
    """Build the STK push password: base64(shortcode + passkey + timestamp)"""
    raw = f"{shortcode}{passkey}{timestamp}"
    return base64.b64encode(raw.encode()).decode()

def basic_auth_header(consumer_key: str, consumer_secret: str) -> str:
    """Authorization header for the OAuth token endpoint"""
    token = base64.b64encode(f"{consumer_key}:{consumer_secret}".encode()).decode()
    return f"Basic {token}"

def normalize_phone_number(phone_number: str) -> str:
    """Normalize a Kenyan mobile number to the 2547XXXXXXXX form"""
    cleaned = re.sub(r"[\s\-()]", "", phone_number or "")

    match = _LOCAL_MSISDN.match(cleaned) or _INTL_MSISDN.match(cleaned)
    if not match:
        raise ValidationError(
            "Phone number must be a Safaricom number like 0712345678 or 254712345678",
            {"phone_number": phone_number}
        )
    return f"254{match.group(1)}"
