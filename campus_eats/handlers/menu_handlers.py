# campus_eats/handlers/menu_handlers.py
from aiohttp import web
from ..exceptions import ValidationError
from ..services.category_service import CategoryService
from ..services.menu_service import MenuService
from ..services.price_history_service import PriceHistoryRecorder
from .base_handler import BaseHandler

class MenuHandler(BaseHandler):
    """Menu and category listing, editing, pricing and stock"""

    def __init__(self, menu_service: MenuService, category_service: CategoryService,
                 price_history: PriceHistoryRecorder):
        super().__init__()
        self.menu_service = menu_service
        self.category_service = category_service
        self.price_history = price_history

    async def list_menu(self, request: web.Request) -> web.Response:
        menu_items = await self.menu_service.list_menu_items(
            request.match_info["cafeteria_id"],
            category_id=request.query.get("category_id")
        )
        return self.respond(menu_items)

    async def list_categories(self, request: web.Request) -> web.Response:
        categories = await self.category_service.list_categories(request.match_info["cafeteria_id"])
        return self.respond(categories)

    async def create_category(self, request: web.Request) -> web.Response:
        _, cafeteria_id = self.admin_context(request)
        body = await self.read_json(request)
        category = await self.category_service.create_category(cafeteria_id, body)
        return self.respond(category, status=201)

    async def update_category(self, request: web.Request) -> web.Response:
        _, cafeteria_id = self.admin_context(request)
        body = await self.read_json(request)
        category = await self.category_service.update_category(
            request.match_info["category_id"], body, actor_cafeteria_id=cafeteria_id
        )
        return self.respond(category)

    async def delete_category(self, request: web.Request) -> web.Response:
        _, cafeteria_id = self.admin_context(request)
        await self.category_service.delete_category(
            request.match_info["category_id"], actor_cafeteria_id=cafeteria_id
        )
        return self.respond({"message": "Category deleted"})

    async def create_menu_item(self, request: web.Request) -> web.Response:
        _, cafeteria_id = self.admin_context(request)
        body = await self.read_json(request)
        menu_item = await self.menu_service.create_menu_item(cafeteria_id, body)
        return self.respond(menu_item, status=201)

    async def update_menu_item(self, request: web.Request) -> web.Response:
        user_id, cafeteria_id = self.admin_context(request)
        body = await self.read_json(request)
        menu_item = await self.menu_service.update_menu_item(
            request.match_info["menu_item_id"],
            body,
            changed_by=user_id,
            actor_cafeteria_id=cafeteria_id
        )
        return self.respond(menu_item)

    async def delete_menu_item(self, request: web.Request) -> web.Response:
        _, cafeteria_id = self.admin_context(request)
        await self.menu_service.delete_menu_item(
            request.match_info["menu_item_id"], actor_cafeteria_id=cafeteria_id
        )
        return self.respond({"message": "Menu item deleted"})

    async def update_price(self, request: web.Request) -> web.Response:
        user_id, cafeteria_id = self.admin_context(request)
        body = await self.read_json(request)
        self.require(body, "price")

        entry = await self.menu_service.update_price(
            request.match_info["menu_item_id"],
            body["price"],
            changed_by=user_id,
            reason=body.get("reason"),
            actor_cafeteria_id=cafeteria_id
        )
        return self.respond({
            "changed": entry is not None,
            "history": entry.model_dump(mode="json") if entry else None,
        })

    async def bulk_update_prices(self, request: web.Request) -> web.Response:
        user_id, cafeteria_id = self.admin_context(request)
        body = await self.read_json(request)
        self.require(body, "mode", "value")

        entries = await self.menu_service.bulk_update_prices(
            cafeteria_id,
            body["mode"],
            body["value"],
            changed_by=user_id,
            menu_item_ids=body.get("menu_item_ids"),
            category_id=body.get("category_id"),
            reason=body.get("reason")
        )
        return self.respond({"updated": len(entries), "history": self.dump(entries)})

    async def restock(self, request: web.Request) -> web.Response:
        _, cafeteria_id = self.admin_context(request)
        body = await self.read_json(request)
        self.require(body, "quantity")
        try:
            quantity = int(body["quantity"])
        except (TypeError, ValueError) as e:
            raise ValidationError("quantity must be an integer") from e

        menu_item = await self.menu_service.restock(
            request.match_info["menu_item_id"],
            quantity,
            actor_cafeteria_id=cafeteria_id
        )
        return self.respond(menu_item)

    async def set_availability(self, request: web.Request) -> web.Response:
        _, cafeteria_id = self.admin_context(request)
        body = await self.read_json(request)
        if not isinstance(body.get("available"), bool):
            raise ValidationError("available must be true or false")

        menu_item = await self.menu_service.set_availability(
            request.match_info["menu_item_id"],
            body["available"],
            actor_cafeteria_id=cafeteria_id
        )
        return self.respond(menu_item)

    async def price_history_for_item(self, request: web.Request) -> web.Response:
        _, cafeteria_id = self.admin_context(request)
        menu_item = await self.menu_service.get_menu_item(request.match_info["menu_item_id"])
        if menu_item.cafeteria_id != cafeteria_id:
            return self.respond({"success": False, "error": "Menu item belongs to another cafeteria"}, status=403)
        entries = await self.price_history.get_item_history(menu_item.menu_item_id)
        return self.respond(entries)

    async def price_history_for_cafeteria(self, request: web.Request) -> web.Response:
        _, cafeteria_id = self.admin_context(request)
        entries = await self.price_history.get_cafeteria_history(cafeteria_id)
        return self.respond(entries)
