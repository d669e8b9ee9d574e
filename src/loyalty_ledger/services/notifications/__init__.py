"""Notification service package."""

from .backend import (
    InMemoryTransactionNotifier,
    NotificationDeliveryError,
    TelegramNotifier,
    TransactionNotifier,
)
from .service import NotificationEvent, NotificationService
from .templates import TransactionNotice, render_transaction_notice

__all__ = [
    "InMemoryTransactionNotifier",
    "NotificationDeliveryError",
    "NotificationEvent",
    "NotificationService",
    "TelegramNotifier",
    "TransactionNotice",
    "TransactionNotifier",
    "render_transaction_notice",
]
