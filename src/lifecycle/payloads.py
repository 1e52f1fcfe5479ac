"""Entity snapshots captured into webhook payloads."""

from src.config.settings import ChainSettings
from src.models.invoice import Invoice
from src.models.payment import Payment, PaymentStatus
from src.models.refund import Refund


def _iso(value):
    return value.isoformat() if value is not None else None


def payment_payload(payment: Payment, chain: ChainSettings, refund: Refund | None = None) -> dict:
    data = {
        "id": payment.payment_id,
        "merchantId": payment.merchant_id,
        "amount": str(payment.amount),
        "currency": payment.currency,
        "status": payment.status.value,
    }
    if payment.status is PaymentStatus.CREATED:
        data["merchantWallet"] = payment.merchant_wallet
        data["expiresAt"] = _iso(payment.expires_at)
    elif payment.status is PaymentStatus.CONFIRMED:
        data["txHash"] = payment.tx_hash
        data["payerWallet"] = payment.payer_wallet
        data["explorerLink"] = chain.explorer_link(payment.tx_hash) if payment.tx_hash else None
        data["settlementTime"] = payment.settlement_time
    elif payment.status is PaymentStatus.FAILED:
        data["reason"] = payment.metadata.get("failureReason")
    elif payment.status is PaymentStatus.REFUNDED and refund is not None:
        return {
            "payment": data,
            "refund": {
                "id": refund.refund_id,
                "amount": str(refund.amount),
                "currency": refund.currency,
                "txHash": refund.tx_hash,
                "explorerLink": chain.explorer_link(refund.tx_hash) if refund.tx_hash else None,
            },
        }
    return data


def invoice_payload(invoice: Invoice) -> dict:
    return {
        "id": invoice.invoice_id,
        "merchantId": invoice.merchant_id,
        "invoiceNumber": invoice.invoice_number,
        "amount": str(invoice.amount),
        "currency": invoice.currency,
        "status": invoice.status.value,
        "customerEmail": invoice.customer_email,
        "customerName": invoice.customer_name,
        "dueDate": _iso(invoice.due_date),
        "paymentId": invoice.payment_id,
    }
