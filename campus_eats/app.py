# campus_eats/app.py
import asyncio
import logging
from typing import Optional
from aiohttp import web
from .config import Config
from .database import Database
from .handlers import (
    DiscountHandler,
    InvoiceHandler,
    MenuHandler,
    OrderHandler,
    PaymentHandler,
    error_middleware
)
from .services import (
    CategoryService,
    DiscountResolver,
    DiscountService,
    InvoiceService,
    MenuService,
    OrderService,
    PaymentService,
    PriceHistoryRecorder,
    build_gateway
)

class CampusEatsApp:
    def __init__(self, db=None, gateway=None):
        """Wire services and routes"""
        self.db = db or Database()
        self.gateway = gateway or build_gateway()
        self.logger = logging.getLogger(__name__)
        self.runner: Optional[web.AppRunner] = None

        self.invoice_service = InvoiceService(self.db)
        discount_resolver = DiscountResolver()
        self.price_history = PriceHistoryRecorder(self.db)
        self.order_service = OrderService(self.db, discount_resolver, self.invoice_service)
        self.payment_service = PaymentService(self.db, self.gateway, self.invoice_service)
        self.discount_service = DiscountService(self.db, discount_resolver)
        self.menu_service = MenuService(self.db, self.price_history)
        self.category_service = CategoryService(self.db)

        self.application = web.Application(middlewares=[error_middleware])
        self.setup_handlers()

    def setup_handlers(self):
        """Register HTTP routes"""
        orders = OrderHandler(self.order_service, self.invoice_service)
        payments = PaymentHandler(self.payment_service)
        discounts = DiscountHandler(self.discount_service)
        menu = MenuHandler(self.menu_service, self.category_service, self.price_history)
        invoices = InvoiceHandler(self.invoice_service)

        self.application.add_routes([
            # Customer orders
            web.post("/api/orders", orders.create_order),
            web.get("/api/orders", orders.list_orders),
            web.get("/api/orders/{order_id}", orders.get_order),
            web.post("/api/orders/{order_id}/cancel", orders.cancel_order),
            web.get("/api/orders/{order_id}/invoice", orders.get_invoice),

            # Menu
            web.get("/api/cafeterias/{cafeteria_id}/menu", menu.list_menu),
            web.get("/api/cafeterias/{cafeteria_id}/categories", menu.list_categories),

            # Payments
            web.post("/api/payments/mpesa/initiate", payments.initiate_payment),
            web.post("/api/payments/mpesa/callback", payments.mpesa_callback),
            web.get("/api/payments/status/{order_id}", payments.payment_status),
            web.get("/api/payments/transactions/{order_id}", payments.list_transactions),
            web.post("/api/payments/manual-confirm/{order_id}", payments.manual_confirm),

            # Discounts
            web.post("/api/discounts/preview", discounts.preview),
            web.get("/api/admin/discounts", discounts.list_discounts),
            web.post("/api/admin/discounts", discounts.create_discount),
            web.put("/api/admin/discounts/{discount_id}", discounts.update_discount),
            web.delete("/api/admin/discounts/{discount_id}", discounts.delete_discount),
            web.post("/api/admin/discounts/{discount_id}/toggle", discounts.toggle_discount),

            # Cafeteria administration
            web.get("/api/admin/orders", orders.list_cafeteria_orders),
            web.put("/api/admin/orders/{order_id}/status", orders.update_order_status),
            web.post("/api/admin/categories", menu.create_category),
            web.put("/api/admin/categories/{category_id}", menu.update_category),
            web.delete("/api/admin/categories/{category_id}", menu.delete_category),
            web.post("/api/admin/menu", menu.create_menu_item),
            web.put("/api/admin/menu/{menu_item_id}", menu.update_menu_item),
            web.delete("/api/admin/menu/{menu_item_id}", menu.delete_menu_item),
            web.put("/api/admin/menu/{menu_item_id}/price", menu.update_price),
            web.post("/api/admin/menu/bulk-price", menu.bulk_update_prices),
            web.put("/api/admin/menu/{menu_item_id}/stock", menu.restock),
            web.put("/api/admin/menu/{menu_item_id}/availability", menu.set_availability),
            web.get("/api/admin/menu/{menu_item_id}/price-history", menu.price_history_for_item),
            web.get("/api/admin/price-history", menu.price_history_for_cafeteria),
            web.get("/api/admin/invoices", invoices.list_invoices),
            web.get("/api/admin/invoices/{invoice_id}", invoices.get_invoice),
        ])

    async def start(self):
        """Connect to the database and serve until cancelled"""
        Config.validate()
        await self.db.connect()

        self.runner = web.AppRunner(self.application)
        await self.runner.setup()
        site = web.TCPSite(self.runner, Config.HOST, Config.PORT)
        await site.start()
        self.logger.info(f"Listening on {Config.HOST}:{Config.PORT}")

        try:
            await asyncio.Event().wait()
        finally:
            await self.stop()

    async def stop(self):
        if self.runner:
            await self.runner.cleanup()
            self.runner = None
        await self.db.close()
