# campus_eats/utils/formatters.py
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, List, Union
import pytz
from pydantic import ValidationError as SchemaError
from ..config import Config

def to_money(amount: Union[Decimal, int, float, str]) -> Decimal:
    """Convert an amount to a Decimal rounded to cents"""
    if not isinstance(amount, Decimal):
        amount = Decimal(str(amount))
    return amount.quantize(Config.MONEY_QUANTUM, rounding=ROUND_HALF_UP)

def format_price(amount: Decimal) -> str:
    """Format a price for display"""
    return f"{Config.CURRENCY} {to_money(amount):,.2f}"

def format_datetime(dt: datetime) -> str:
    """Format a timestamp in the campus timezone"""
    local_tz = pytz.timezone(Config.TIMEZONE)
    if dt.tzinfo is None:
        dt = pytz.utc.localize(dt)
    local_time = dt.astimezone(local_tz)
    return local_time.strftime("%Y-%m-%d %H:%M:%S")

def mpesa_timestamp(dt: datetime) -> str:
    """Daraja expects YYYYMMDDHHMMSS in East Africa Time"""
    local_tz = pytz.timezone(Config.MPESA_TIMEZONE)
    if dt.tzinfo is None:
        dt = pytz.utc.localize(dt)
    return dt.astimezone(local_tz).strftime("%Y%m%d%H%M%S")

def schema_errors(error: SchemaError) -> List[Dict[str, Any]]:
    """pydantic errors reduced to JSON-safe fields"""
    return error.errors(include_url=False, include_context=False)

