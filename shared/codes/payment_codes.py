"""
Payment specific codes and provider status mapping.
"""
from __future__ import annotations

from enum import IntEnum


class PaymentCode(IntEnum):
    # Generic success
    SUCCESS = 0

    # Provider/Network errors (6xxxx)
    UPSTREAM_ERROR = 60000
    CONFIGURATION_ERROR = 60001
    SIGNATURE_ERROR = 60002
    VALIDATION_ERROR = 60003
    INVALID_STATE = 60004
    UNSUPPORTED_GATEWAY = 60005
    GATEWAY_DISABLED = 60006
    PAYMENT_NOT_FOUND = 60007
    ORDER_NOT_FOUND = 60008


# Provider status vocabulary -> internal outcome (completed/failed/pending).
# Anything not listed is treated as pending by the adapters.
PROVIDER_STATUS_TO_INTERNAL = {
    "payu": {
        "success": "completed",
        "failure": "failed",
        "failed": "failed",
        "cancel": "failed",
        "pending": "pending",
        "in progress": "pending",
        "initiated": "pending",
    },
    "razorpay": {
        # payment entity status
        "created": "pending",
        "authorized": "pending",
        "captured": "completed",
        "failed": "failed",
        # order entity status
        "attempted": "pending",
        "paid": "completed",
        # webhook events
        "payment.captured": "completed",
        "order.paid": "completed",
        "payment.failed": "failed",
        "payment.authorized": "pending",
    },
    "phonepe": {
        "PAYMENT_SUCCESS": "completed",
        "PAYMENT_ERROR": "failed",
        "PAYMENT_DECLINED": "failed",
        "TIMED_OUT": "failed",
        "TRANSACTION_NOT_FOUND": "failed",
        "PAYMENT_CANCELLED": "failed",
        "PAYMENT_PENDING": "pending",
        "INTERNAL_SERVER_ERROR": "pending",
    },
    "cashfree": {
        # order_status
        "PAID": "completed",
        "ACTIVE": "pending",
        "EXPIRED": "failed",
        "CANCELLED": "failed",
        "TERMINATED": "failed",
        "FAILED": "failed",
        # webhook types / payment_status
        "PAYMENT_SUCCESS": "completed",
        "PAYMENT_SUCCESS_WEBHOOK": "completed",
        "PAYMENT_FAILED": "failed",
        "PAYMENT_FAILED_WEBHOOK": "failed",
        "PAYMENT_USER_DROPPED_WEBHOOK": "failed",
        "SUCCESS": "completed",
        "USER_DROPPED": "failed",
        "NOT_ATTEMPTED": "pending",
        "PENDING": "pending",
    },
    "cod": {},
}

# Provider refund vocabulary -> internal refund status.
PROVIDER_REFUND_STATUS_TO_INTERNAL = {
    "payu": {"1": "processing", "0": "failed"},
    "razorpay": {"pending": "processing", "processed": "completed", "failed": "failed"},
    "phonepe": {"PAYMENT_SUCCESS": "completed", "PAYMENT_PENDING": "processing", "PAYMENT_ERROR": "failed"},
    "cashfree": {"SUCCESS": "completed", "PENDING": "processing", "ONHOLD": "processing", "CANCELLED": "failed"},
    "cod": {},
}
