# campus_eats/handlers/discount_handlers.py
from aiohttp import web
from ..exceptions import ValidationError
from ..services.discount_service import DiscountService
from .base_handler import BaseHandler

class DiscountHandler(BaseHandler):
    """Discount administration and cart previews"""

    def __init__(self, discount_service: DiscountService):
        super().__init__()
        self.discount_service = discount_service

    @staticmethod
    def _discount_id(request: web.Request) -> int:
        try:
            return int(request.match_info["discount_id"])
        except ValueError as e:
            raise ValidationError("Discount id must be an integer") from e

    async def preview(self, request: web.Request) -> web.Response:
        body = await self.read_json(request)
        self.require(body, "cafeteria_id", "items")
        result = await self.discount_service.preview_discount(body["cafeteria_id"], body["items"])
        payload = result.model_dump(mode="json")
        payload["discount_ids"] = result.discount_ids
        return self.respond(payload)

    async def list_discounts(self, request: web.Request) -> web.Response:
        _, cafeteria_id = self.admin_context(request)
        discounts = await self.discount_service.list_discounts(
            cafeteria_id,
            scope=request.query.get("scope"),
            is_active=self.query_bool(request, "is_active")
        )
        return self.respond(discounts)

    async def create_discount(self, request: web.Request) -> web.Response:
        _, cafeteria_id = self.admin_context(request)
        body = await self.read_json(request)
        body["cafeteria_id"] = cafeteria_id
        discount = await self.discount_service.create_discount(body)
        return self.respond(discount, status=201)

    async def update_discount(self, request: web.Request) -> web.Response:
        _, cafeteria_id = self.admin_context(request)
        discount_id = self._discount_id(request)
        await self._check_owner(discount_id, cafeteria_id)
        body = await self.read_json(request)
        body.pop("cafeteria_id", None)
        discount = await self.discount_service.update_discount(discount_id, body)
        return self.respond(discount)

    async def toggle_discount(self, request: web.Request) -> web.Response:
        _, cafeteria_id = self.admin_context(request)
        discount_id = self._discount_id(request)
        await self._check_owner(discount_id, cafeteria_id)
        discount = await self.discount_service.toggle_discount(discount_id)
        return self.respond(discount)

    async def delete_discount(self, request: web.Request) -> web.Response:
        _, cafeteria_id = self.admin_context(request)
        discount_id = self._discount_id(request)
        await self._check_owner(discount_id, cafeteria_id)
        await self.discount_service.delete_discount(discount_id)
        return self.respond({"message": "Discount deleted successfully"})

    async def _check_owner(self, discount_id: int, cafeteria_id: str):
        discount = await self.discount_service.get_discount(discount_id)
        if discount.cafeteria_id != cafeteria_id:
            raise ValidationError("Discount belongs to another cafeteria")
