import pytest

from campus_eats.services import (
    CategoryService,
    DiscountResolver,
    DiscountService,
    InvoiceService,
    MenuService,
    OrderService,
    PaymentService,
    PriceHistoryRecorder,
)

from .fakes import FakeGateway, InMemoryDatabase


@pytest.fixture
def db():
    return InMemoryDatabase()


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def invoice_service(db):
    return InvoiceService(db)


@pytest.fixture
def resolver():
    return DiscountResolver()


@pytest.fixture
def order_service(db, resolver, invoice_service):
    return OrderService(db, resolver, invoice_service)


@pytest.fixture
def payment_service(db, gateway, invoice_service):
    return PaymentService(db, gateway, invoice_service)


@pytest.fixture
def discount_service(db, resolver):
    return DiscountService(db, resolver)


@pytest.fixture
def price_history(db):
    return PriceHistoryRecorder(db)


@pytest.fixture
def category_service(db):
    return CategoryService(db)


@pytest.fixture
def menu_service(db, price_history):
    return MenuService(db, price_history)
