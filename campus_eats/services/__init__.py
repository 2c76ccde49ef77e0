from .category_service import CategoryService
from .discount_service import DiscountResolver, DiscountService
from .invoice_service import InvoiceService
from .menu_service import MenuService
from .mpesa_service import MpesaGateway, SimulatedMpesaGateway, build_gateway
from .order_service import OrderService
from .payment_service import PaymentService
from .price_history_service import PriceHistoryRecorder

__all__ = [
    'CategoryService',
    'DiscountResolver',
    'DiscountService',
    'InvoiceService',
    'MenuService',
    'MpesaGateway',
    'SimulatedMpesaGateway',
    'build_gateway',
    'OrderService',
    'PaymentService',
    'PriceHistoryRecorder',
]
