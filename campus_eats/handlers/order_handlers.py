# campus_eats/handlers/order_handlers.py
from aiohttp import web
from ..exceptions import NotFound
from ..services.invoice_service import InvoiceService
from ..services.order_service import OrderService
from .base_handler import BaseHandler

class OrderHandler(BaseHandler):
    """Order endpoints for customers and cafeteria administrators"""

    def __init__(self, order_service: OrderService, invoice_service: InvoiceService):
        super().__init__()
        self.order_service = order_service
        self.invoice_service = invoice_service

    async def create_order(self, request: web.Request) -> web.Response:
        user_id = self.current_user_id(request)
        body = await self.read_json(request)
        self.require(body, "cafeteria_id", "items")

        order = await self.order_service.create_order(
            user_id=user_id,
            cafeteria_id=body["cafeteria_id"],
            items=body["items"],
            payment_method=body.get("payment_method", "mpesa")
        )
        payload = order.model_dump(mode="json")
        payload["discount_ids"] = order.discount_ids
        return self.respond(payload, status=201)

    async def list_orders(self, request: web.Request) -> web.Response:
        user_id = self.current_user_id(request)
        orders = await self.order_service.list_user_orders(user_id)
        return self.respond(orders)

    async def get_order(self, request: web.Request) -> web.Response:
        user_id = self.current_user_id(request)
        order = await self.order_service.get_order(request.match_info["order_id"], user_id=user_id)
        return self.respond(order)

    async def get_invoice(self, request: web.Request) -> web.Response:
        user_id = self.current_user_id(request)
        order = await self.order_service.get_order(request.match_info["order_id"], user_id=user_id)
        invoice = await self.invoice_service.get_invoice_for_order(order.order_id)
        if not invoice:
            raise NotFound(f"No invoice for order {order.order_id}")
        return self.respond(invoice)

    async def cancel_order(self, request: web.Request) -> web.Response:
        user_id = self.current_user_id(request)
        order = await self.order_service.cancel_order(request.match_info["order_id"], user_id=user_id)
        return self.respond(order)

    async def list_cafeteria_orders(self, request: web.Request) -> web.Response:
        _, cafeteria_id = self.admin_context(request)
        orders = await self.order_service.list_cafeteria_orders(
            cafeteria_id,
            status=request.query.get("status")
        )
        return self.respond(orders)

    async def update_order_status(self, request: web.Request) -> web.Response:
        _, cafeteria_id = self.admin_context(request)
        body = await self.read_json(request)
        self.require(body, "status")

        order = await self.order_service.update_order_status(
            request.match_info["order_id"],
            body["status"],
            actor_cafeteria_id=cafeteria_id
        )
        return self.respond({"message": "Order status updated", "order": order.model_dump(mode="json")})
