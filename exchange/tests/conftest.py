from types import SimpleNamespace

import pytest

from exchange.accounts import AccountService
from exchange.catalog import CatalogService
from exchange.ledger import LedgerStore
from exchange.models import CreateItemRequest, ItemStatus, RegisterUserRequest
from exchange.moderation import ModerationService
from exchange.registry import ItemRegistry
from exchange.service import ExchangeService
from exchange.storage import InMemoryStorage, ADMIN_ID


@pytest.fixture
def platform():
    storage = InMemoryStorage()
    ledger = LedgerStore(storage)
    registry = ItemRegistry(storage, default_points=25)
    accounts = AccountService(storage, ledger, signup_bonus=0)
    return SimpleNamespace(
        storage=storage,
        ledger=ledger,
        registry=registry,
        accounts=accounts,
        exchange=ExchangeService(storage, ledger, registry),
        moderation=ModerationService(storage, registry, accounts),
        catalog=CatalogService(storage, registry),
    )


@pytest.fixture
def make_user(platform):
    """Register a user and seed their balance with a bonus credit."""
    counter = iter(range(1, 10_000))

    def _make(points: int = 0, first_name: str = "Test"):
        n = next(counter)
        user = platform.accounts.register(RegisterUserRequest(
            email=f"user{n}@example.com",
            password_hash="hash",
            first_name=first_name,
            last_name=f"User{n}",
        ))
        if points:
            platform.ledger.grant_bonus(user.id, points, "Test balance")
        return user.id

    return _make


@pytest.fixture
def list_item(platform):
    """Submit an item and approve it so it is visible and requestable."""

    def _list(owner_id, approve: bool = True, **overrides):
        fields = {
            "title": "Blue denim jacket",
            "description": "Classic fit, light wear",
            "category": "women",
            "type": "jacket",
            "size": "M",
            "condition": "good",
            "points": 40,
        }
        fields.update(overrides)
        item = platform.registry.create_item(owner_id, CreateItemRequest(**fields))
        if approve:
            item = platform.moderation.set_item_status(item.id, ItemStatus.APPROVED, ADMIN_ID)
        return item

    return _list
