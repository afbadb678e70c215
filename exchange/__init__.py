"""
Clothing Exchange Core

This module provides:
- Exchange requests for direct swaps and points redemption
- Settlement: pending → approved / rejected, applied atomically and at most once
- Append-only point ledger with non-negative balances
- Admin moderation of listed items
- Catalog browsing over approved items
"""

from .errors import (
    ExchangeError,
    NotFoundError,
    InvalidRequestError,
    UnauthorizedError,
    AlreadySettledError,
    InsufficientPointsError,
    StorageFailureError,
)
from .models import (
    ItemStatus,
    RequestKind,
    RequestStatus,
    TransactionType,
    Item,
    ExchangeRequest,
    PointTransaction,
    CatalogFilter,
)
from .storage import InMemoryStorage
from .ledger import LedgerStore
from .registry import ItemRegistry
from .accounts import AccountService
from .service import ExchangeService
from .moderation import ModerationService
from .catalog import CatalogService

__all__ = [
    "ExchangeError",
    "NotFoundError",
    "InvalidRequestError",
    "UnauthorizedError",
    "AlreadySettledError",
    "InsufficientPointsError",
    "StorageFailureError",
    "ItemStatus",
    "RequestKind",
    "RequestStatus",
    "TransactionType",
    "Item",
    "ExchangeRequest",
    "PointTransaction",
    "CatalogFilter",
    "InMemoryStorage",
    "LedgerStore",
    "ItemRegistry",
    "AccountService",
    "ExchangeService",
    "ModerationService",
    "CatalogService",
]
