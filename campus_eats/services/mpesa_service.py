# campus_eats/services/mpesa_service.py
import asyncio
import logging
import uuid
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, Optional
import aiohttp
from ..config import Config
from ..exceptions import PaymentGatewayError, ValidationError
from ..models.transaction import CallbackOutcome, StkPushResponse
from ..utils.clock import Clock, utc_now
from ..utils.formatters import mpesa_timestamp
from ..utils.security import basic_auth_header, generate_stk_password

# Daraja STK query codes that mean "still waiting on the customer"
PENDING_QUERY_ERRORS = {"500.001.1001"}

def parse_stk_callback(payload: Dict[str, Any]) -> CallbackOutcome:
    """Turn a Daraja STK callback body into a CallbackOutcome"""
    try:
        stk_callback = payload["Body"]["stkCallback"]
        checkout_request_id = stk_callback["CheckoutRequestID"]
        result_code = int(stk_callback["ResultCode"])
    except (KeyError, TypeError, ValueError) as e:
        raise ValidationError("Invalid M-Pesa callback format") from e

    metadata = {}
    for item in (stk_callback.get("CallbackMetadata") or {}).get("Item", []):
        if "Name" in item:
            metadata[item["Name"]] = item.get("Value")

    amount = metadata.get("Amount")
    phone_number = metadata.get("PhoneNumber")
    transaction_date = metadata.get("TransactionDate")

    return CallbackOutcome(
        checkout_request_id=checkout_request_id,
        success=result_code == 0,
        result_code=result_code,
        result_desc=stk_callback.get("ResultDesc"),
        mpesa_receipt_number=metadata.get("MpesaReceiptNumber"),
        amount=Decimal(str(amount)) if amount is not None else None,
        phone_number=str(phone_number) if phone_number is not None else None,
        transaction_date=str(transaction_date) if transaction_date is not None else None
    )

def whole_shillings(amount: Decimal) -> int:
    """STK push only accepts integer amounts"""
    return int(amount.quantize(Decimal(1), rounding=ROUND_HALF_UP))

class MpesaGateway:
    """Client for the Daraja STK push API"""

    def __init__(self, consumer_key: str = None, consumer_secret: str = None,
                 shortcode: str = None, passkey: str = None, base_url: str = None,
                 callback_url: str = None, timeout: float = None, clock: Clock = utc_now):
        self.consumer_key = consumer_key or Config.MPESA_CONSUMER_KEY
        self.consumer_secret = consumer_secret or Config.MPESA_CONSUMER_SECRET
        self.shortcode = shortcode or Config.MPESA_SHORTCODE
        self.passkey = passkey or Config.MPESA_PASSKEY
        self.base_url = (base_url or Config.MPESA_BASE_URL).rstrip("/")
        self.callback_url = callback_url or Config.MPESA_CALLBACK_URL
        self.timeout = aiohttp.ClientTimeout(total=timeout or Config.MPESA_TIMEOUT)
        self.clock = clock
        self.logger = logging.getLogger(__name__)

    async def initiate_stk_push(self, phone_number: str, amount: Decimal,
                                account_reference: str,
                                description: str = "Payment") -> StkPushResponse:
        """Send the PIN prompt to the payer's phone"""
        timestamp = mpesa_timestamp(self.clock())
        payload = {
            "BusinessShortCode": self.shortcode,
            "Password": generate_stk_password(self.shortcode, self.passkey, timestamp),
            "Timestamp": timestamp,
            "TransactionType": "CustomerPayBillOnline",
            "Amount": whole_shillings(amount),
            "PartyA": phone_number,
            "PartyB": self.shortcode,
            "PhoneNumber": phone_number,
            "CallBackURL": self.callback_url,
            "AccountReference": account_reference[:12],
            "TransactionDesc": description[:13],
        }

        data = await self._post("/mpesa/stkpush/v1/processrequest", payload)

        if str(data.get("ResponseCode")) != "0" or not data.get("CheckoutRequestID"):
            raise PaymentGatewayError(
                data.get("errorMessage") or data.get("ResponseDescription") or "STK push rejected",
                {"response": data}
            )

        return StkPushResponse(
            checkout_request_id=data["CheckoutRequestID"],
            merchant_request_id=data.get("MerchantRequestID"),
            response_code=str(data["ResponseCode"]),
            response_description=data.get("ResponseDescription"),
            customer_message=data.get("CustomerMessage")
        )

    async def query_stk_status(self, checkout_request_id: str) -> Optional[CallbackOutcome]:
        """Ask Daraja for the result of a checkout request; None while still pending"""
        timestamp = mpesa_timestamp(self.clock())
        payload = {
            "BusinessShortCode": self.shortcode,
            "Password": generate_stk_password(self.shortcode, self.passkey, timestamp),
            "Timestamp": timestamp,
            "CheckoutRequestID": checkout_request_id,
        }

        try:
            data = await self._post("/mpesa/stkpushquery/v1/query", payload)
        except PaymentGatewayError as e:
            if e.details.get("response", {}).get("errorCode") in PENDING_QUERY_ERRORS:
                return None
            raise

        if str(data.get("ResponseCode")) != "0" or data.get("ResultCode") is None:
            return None

        result_code = int(data["ResultCode"])
        return CallbackOutcome(
            checkout_request_id=checkout_request_id,
            success=result_code == 0,
            result_code=result_code,
            result_desc=data.get("ResultDesc")
        )

    async def _get_access_token(self, session: aiohttp.ClientSession) -> str:
        async with session.get(
            f"{self.base_url}/oauth/v1/generate",
            params={"grant_type": "client_credentials"},
            headers={"Authorization": basic_auth_header(self.consumer_key, self.consumer_secret)}
        ) as response:
            if response.status != 200:
                raise PaymentGatewayError(
                    f"M-Pesa authentication failed: {response.status}",
                    {"status": response.status}
                )
            data = await response.json()

        token = data.get("access_token")
        if not token:
            raise PaymentGatewayError("M-Pesa authentication returned no access token")
        return token

    async def _post(self, path: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        try:
            async with aiohttp.ClientSession(timeout=self.timeout) as session:
                token = await self._get_access_token(session)
                async with session.post(
                    f"{self.base_url}{path}",
                    json=payload,
                    headers={"Authorization": f"Bearer {token}"}
                ) as response:
                    data = await response.json(content_type=None)
                    if response.status != 200:
                        raise PaymentGatewayError(
                            f"M-Pesa request failed: {response.status}",
                            {"status": response.status, "response": data or {}}
                        )
                    return data or {}
        except PaymentGatewayError:
            raise
        except asyncio.TimeoutError as e:
            raise PaymentGatewayError("M-Pesa request timed out") from e
        except aiohttp.ClientError as e:
            raise PaymentGatewayError(f"M-Pesa request error: {e}") from e
        except ValueError as e:
            raise PaymentGatewayError("M-Pesa returned an unreadable response") from e

class SimulatedMpesaGateway:
    """Stands in for Daraja when no credentials are configured"""

    def __init__(self):
        self.logger = logging.getLogger(__name__)

    async def initiate_stk_push(self, phone_number: str, amount: Decimal,
                                account_reference: str,
                                description: str = "Payment") -> StkPushResponse:
        self.logger.warning("M-Pesa credentials not configured, simulating STK push")
        token = uuid.uuid4().hex[:12]
        return StkPushResponse(
            checkout_request_id=f"ws_CO_{token}",
            merchant_request_id=f"mr_{token}",
            response_code="0",
            response_description="Success. Request accepted for processing",
            customer_message="Success. Request accepted for processing"
        )

    async def query_stk_status(self, checkout_request_id: str) -> Optional[CallbackOutcome]:
        return None

def build_gateway():
    """Real Daraja client when credentials are present, simulator otherwise"""
    if Config.mpesa_configured():
        return MpesaGateway()
    return SimulatedMpesaGateway()
