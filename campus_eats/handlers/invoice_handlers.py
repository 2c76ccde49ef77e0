# campus_eats/handlers/invoice_handlers.py
from aiohttp import web
from ..services.invoice_service import InvoiceService
from .base_handler import BaseHandler

class InvoiceHandler(BaseHandler):
    """Invoice lookups for cafeteria administrators"""

    def __init__(self, invoice_service: InvoiceService):
        super().__init__()
        self.invoice_service = invoice_service

    async def list_invoices(self, request: web.Request) -> web.Response:
        _, cafeteria_id = self.admin_context(request)
        invoices = await self.invoice_service.list_invoices(
            cafeteria_id,
            status=request.query.get("status")
        )
        return self.respond(invoices)

    async def get_invoice(self, request: web.Request) -> web.Response:
        _, cafeteria_id = self.admin_context(request)
        invoice = await self.invoice_service.get_invoice(
            request.match_info["invoice_id"],
            cafeteria_id=cafeteria_id
        )
        return self.respond(invoice)
