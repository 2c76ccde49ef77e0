# campus_eats/utils/messages.py
from ..models.order import Order, PaymentStatus
from ..models.transaction import Transaction
from .formatters import format_price

class Messages:
    @staticmethod
    def checkout_prompt(transaction: Transaction) -> str:
        """Shown after the STK push is sent"""
        return (
            f"M-Pesa payment of {format_price(transaction.amount)} initiated. "
            f"Please check your phone and enter your PIN."
        )

    @staticmethod
    def payment_status(order: Order) -> str:
        if order.payment_status == PaymentStatus.PAID:
            receipt = f" (receipt {order.mpesa_receipt_number})" if order.mpesa_receipt_number else ""
            return f"Payment received{receipt}."
        if order.payment_status == PaymentStatus.FAILED:
            return "Payment failed or was cancelled. You can try again."
        return "Waiting for payment confirmation."

