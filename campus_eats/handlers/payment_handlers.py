# campus_eats/handlers/payment_handlers.py
from aiohttp import web
from ..exceptions import CampusEatsError
from ..services.mpesa_service import parse_stk_callback
from ..services.payment_service import PaymentService
from ..utils.messages import Messages
from .base_handler import BaseHandler

# Daraja only needs an acknowledgement
CALLBACK_ACK = {"ResultCode": 0, "ResultDesc": "Accepted"}

class PaymentHandler(BaseHandler):
    """M-Pesa checkout, callback and status endpoints"""

    def __init__(self, payment_service: PaymentService):
        super().__init__()
        self.payment_service = payment_service

    async def initiate_payment(self, request: web.Request) -> web.Response:
        user_id = self.current_user_id(request)
        body = await self.read_json(request)
        self.require(body, "order_id", "phone_number")

        transaction = await self.payment_service.initiate_checkout(
            body["order_id"],
            str(body["phone_number"]),
            user_id=user_id
        )
        return self.respond({
            "success": True,
            "message": Messages.checkout_prompt(transaction),
            "checkout_request_id": transaction.checkout_request_id,
            "transaction_id": transaction.transaction_id,
        })

    async def mpesa_callback(self, request: web.Request) -> web.Response:
        """Provider webhook: always acknowledged, problems only logged"""
        try:
            payload = await request.json()
            self.logger.info(f"M-Pesa callback received: {payload}")
            outcome = parse_stk_callback(payload)
            await self.payment_service.handle_callback(outcome.checkout_request_id, outcome)
        except CampusEatsError as e:
            self.logger.warning(f"M-Pesa callback not applied: {e.message}")
        except Exception as e:
            self.logger.error(f"M-Pesa callback processing error: {e}", exc_info=True)
        return web.json_response(CALLBACK_ACK)

    async def payment_status(self, request: web.Request) -> web.Response:
        user_id = self.current_user_id(request)
        order = await self.payment_service.refresh_payment_status(
            request.match_info["order_id"],
            user_id=user_id
        )
        return self.respond({
            "order_id": order.order_id,
            "payment_status": order.payment_status.value,
            "order_status": order.status.value,
            "checkout_request_id": order.checkout_request_id,
            "mpesa_receipt_number": order.mpesa_receipt_number,
            "amount": str(order.total),
            "message": Messages.payment_status(order),
        })

    async def list_transactions(self, request: web.Request) -> web.Response:
        user_id = self.current_user_id(request)
        transactions = await self.payment_service.list_transactions(
            request.match_info["order_id"],
            user_id=user_id
        )
        return self.respond(transactions)

    async def manual_confirm(self, request: web.Request) -> web.Response:
        _, cafeteria_id = self.admin_context(request)
        order = await self.payment_service.confirm_payment_manually(
            request.match_info["order_id"],
            actor_cafeteria_id=cafeteria_id
        )
        return self.respond({
            "success": True,
            "message": "Payment confirmed successfully",
            "order": order.model_dump(mode="json"),
        })
