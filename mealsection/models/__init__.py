from mealsection.models.account import (
    Account,
    ROLES,
    ROLE_CUSTOMER,
    ROLE_VENDOR,
    ROLE_RIDER,
    ROLE_MANAGER,
    APPROVAL_ROLES,
)
from mealsection.models.ledger_entry import LedgerEntry
from mealsection.models.order import (
    Order,
    OrderPack,
    OrderPackItem,
    OrderMessage,
    ORDER_STATUSES,
    PACK_TYPES,
    STATUS_PENDING,
    STATUS_PROCESSING,
    STATUS_DELIVERED,
    STATUS_CANCELLED,
)
from mealsection.models.withdrawal import Withdrawal
from mealsection.models.processed_paystack_ref import ProcessedPaystackRef
from mealsection.models.webhook_event import WebhookEvent
from mealsection.models.reconciliation_report import ReconciliationReport

__all__ = [
    "Account",
    "ROLES",
    "ROLE_CUSTOMER",
    "ROLE_VENDOR",
    "ROLE_RIDER",
    "ROLE_MANAGER",
    "APPROVAL_ROLES",
    "LedgerEntry",
    "Order",
    "OrderPack",
    "OrderPackItem",
    "OrderMessage",
    "ORDER_STATUSES",
    "PACK_TYPES",
    "STATUS_PENDING",
    "STATUS_PROCESSING",
    "STATUS_DELIVERED",
    "STATUS_CANCELLED",
    "Withdrawal",
    "ProcessedPaystackRef",
    "WebhookEvent",
    "ReconciliationReport",
]
