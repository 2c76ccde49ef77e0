# campus_eats/services/payment_service.py
import logging
import uuid
from datetime import timedelta
from typing import List, Optional
from ..config import Config
from ..exceptions import InvalidOrderState, NotFound, PaymentGatewayError, ValidationError
from ..models.order import Order, OrderStatus, PaymentMethod, PaymentStatus
from ..models.transaction import CallbackOutcome, Transaction, TransactionStatus
from ..utils.clock import Clock, utc_now
from ..utils.security import normalize_phone_number
from .invoice_service import InvoiceService
from .mpesa_service import whole_shillings

class PaymentService:
    """Mobile-money checkout and reconciliation of provider callbacks"""

    def __init__(self, db, gateway, invoice_service: Optional[InvoiceService] = None,
                 clock: Clock = utc_now):
        self.db = db
        self.gateway = gateway
        self.invoice_service = invoice_service or InvoiceService(db, clock=clock)
        self.clock = clock
        self.logger = logging.getLogger(__name__)

    async def initiate_checkout(self, order_id: str, phone_number: str,
                                user_id: Optional[str] = None) -> Transaction:
        """Record a pending transaction and send the STK push.

        The transaction is committed before the gateway is called, so a
        gateway failure leaves it pending for a later retry or manual
        reconciliation.
        """
        phone_number = normalize_phone_number(phone_number)

        async with self.db.unit_of_work() as uow:
            order = await uow.orders.get(order_id, for_update=True)
            if not order or (user_id is not None and order.user_id != user_id):
                raise NotFound(f"Order {order_id} not found")

            if order.status == OrderStatus.CANCELLED:
                raise InvalidOrderState(f"Order {order_id} is cancelled")
            if order.payment_status != PaymentStatus.PENDING:
                raise InvalidOrderState(
                    f"Order {order_id} payment is already {order.payment_status.value}",
                    {"payment_status": order.payment_status.value}
                )

            transaction = await uow.transactions.insert(
                transaction_id=str(uuid.uuid4()),
                order_id=order_id,
                phone_number=phone_number,
                amount=order.total
            )

        self.logger.info(
            f"Initiating M-Pesa payment for order {order_id}: amount={order.total} "
            f"transaction={transaction.transaction_id}"
        )

        try:
            response = await self.gateway.initiate_stk_push(
                phone_number,
                order.total,
                account_reference=order_id,
                description=f"Order {order_id[:6]}"
            )
        except PaymentGatewayError as e:
            self.logger.error(
                f"STK push failed for order {order_id}, transaction "
                f"{transaction.transaction_id} left pending: {e.message}"
            )
            raise

        async with self.db.unit_of_work() as uow:
            await uow.transactions.attach_checkout_request(
                transaction.transaction_id,
                response.checkout_request_id,
                response.merchant_request_id
            )
            await uow.orders.set_checkout_request(
                order_id,
                response.checkout_request_id,
                PaymentMethod.MPESA.value
            )

        self.logger.info(
            f"STK push accepted for order {order_id}: checkout_request_id={response.checkout_request_id}"
        )
        return transaction.model_copy(update={
            'checkout_request_id': response.checkout_request_id,
            'merchant_request_id': response.merchant_request_id,
        })

    async def handle_callback(self, checkout_request_id: str, outcome: CallbackOutcome) -> Transaction:
        """Apply a provider callback to its transaction and order.

        Delivery is at-least-once: a callback for a transaction that is already
        completed or failed changes nothing.
        """
        paid_order_id = None

        async with self.db.unit_of_work() as uow:
            transaction = await uow.transactions.get_by_checkout_request_id(
                checkout_request_id, for_update=True
            )
            if not transaction:
                raise NotFound(f"No transaction for checkout request {checkout_request_id}")

            if transaction.is_terminal:
                self.logger.info(
                    f"Ignoring repeated callback for {checkout_request_id}: "
                    f"transaction already {transaction.status.value}"
                )
                return transaction

            order = await uow.orders.get(transaction.order_id, for_update=True)

            if outcome.success:
                if outcome.amount is not None and outcome.amount != whole_shillings(transaction.amount):
                    self.logger.warning(
                        f"Callback amount {outcome.amount} differs from transaction amount "
                        f"{transaction.amount} for {checkout_request_id}"
                    )

                if not await uow.transactions.complete(
                    transaction.transaction_id,
                    outcome.mpesa_receipt_number,
                    outcome.result_code,
                    outcome.result_desc
                ):
                    return await uow.transactions.get_by_checkout_request_id(checkout_request_id)

                await uow.orders.update_payment(
                    transaction.order_id,
                    PaymentStatus.PAID,
                    status=OrderStatus.CONFIRMED if order and order.status == OrderStatus.PENDING else None,
                    mpesa_receipt_number=outcome.mpesa_receipt_number
                )
                transaction = transaction.model_copy(update={
                    'status': TransactionStatus.COMPLETED,
                    'mpesa_receipt_number': outcome.mpesa_receipt_number,
                    'result_code': outcome.result_code,
                    'result_desc': outcome.result_desc,
                })
                paid_order_id = transaction.order_id

                self.logger.info(
                    f"M-Pesa payment successful for order {transaction.order_id}: "
                    f"receipt={outcome.mpesa_receipt_number}"
                )
            else:
                if not await uow.transactions.fail(
                    transaction.transaction_id,
                    outcome.result_code,
                    outcome.result_desc
                ):
                    return await uow.transactions.get_by_checkout_request_id(checkout_request_id)

                # Another attempt may already have paid this order
                if order and order.payment_status != PaymentStatus.PAID:
                    await uow.orders.update_payment(transaction.order_id, PaymentStatus.FAILED)

                transaction = transaction.model_copy(update={
                    'status': TransactionStatus.FAILED,
                    'result_code': outcome.result_code,
                    'result_desc': outcome.result_desc,
                })

                self.logger.warning(
                    f"M-Pesa payment failed for order {transaction.order_id}: "
                    f"code={outcome.result_code} desc={outcome.result_desc}"
                )

        if paid_order_id:
            await self.invoice_service.try_generate_for_order(paid_order_id)

        return transaction

    async def refresh_payment_status(self, order_id: str, user_id: Optional[str] = None) -> Order:
        """Return the order, asking the gateway first if its payment looks stuck"""
        order = await self._get_order(order_id, user_id)

        if order.payment_status != PaymentStatus.PENDING or not order.checkout_request_id:
            return order

        age = self.clock() - order.created_at
        if age <= timedelta(seconds=Config.PAYMENT_QUERY_AFTER_SECONDS):
            return order

        self.logger.info(
            f"Order {order_id} still pending after {int(age.total_seconds())}s, "
            f"querying M-Pesa for {order.checkout_request_id}"
        )

        try:
            outcome = await self.gateway.query_stk_status(order.checkout_request_id)
        except PaymentGatewayError as e:
            self.logger.warning(f"Failed to query M-Pesa status for order {order_id}: {e.message}")
            return order

        if outcome is None:
            return order

        try:
            await self.handle_callback(order.checkout_request_id, outcome)
        except NotFound:
            self.logger.warning(
                f"Order {order_id} references checkout request {order.checkout_request_id} "
                f"with no transaction"
            )
            return order

        return await self._get_order(order_id, user_id)

    async def confirm_payment_manually(self, order_id: str,
                                       actor_cafeteria_id: Optional[str] = None) -> Order:
        """Administrator override: mark the order paid"""
        async with self.db.unit_of_work() as uow:
            order = await uow.orders.get(order_id, for_update=True)
            if not order:
                raise NotFound(f"Order {order_id} not found")
            if actor_cafeteria_id is not None and order.cafeteria_id != actor_cafeteria_id:
                raise ValidationError("Order belongs to another cafeteria")

            if order.payment_status == PaymentStatus.PAID:
                return order

            new_status = OrderStatus.CONFIRMED if order.status == OrderStatus.PENDING else None
            await uow.orders.update_payment(order_id, PaymentStatus.PAID, status=new_status)
            order = order.model_copy(update={
                'payment_status': PaymentStatus.PAID,
                'status': new_status or order.status,
            })

        self.logger.info(f"Manual payment confirmation for order {order_id}")
        await self.invoice_service.try_generate_for_order(order_id)
        return order

    async def list_transactions(self, order_id: str, user_id: Optional[str] = None) -> List[Transaction]:
        """Payment attempts for an order, oldest first"""
        await self._get_order(order_id, user_id)
        async with self.db.unit_of_work() as uow:
            return await uow.transactions.list_for_order(order_id)

    async def _get_order(self, order_id: str, user_id: Optional[str]) -> Order:
        async with self.db.unit_of_work() as uow:
            order = await uow.orders.get(order_id)
        if not order or (user_id is not None and order.user_id != user_id):
            raise NotFound(f"Order {order_id} not found")
        return order
