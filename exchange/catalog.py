from typing import Optional
from uuid import UUID

from .filters import build_conditions
from .models import CatalogFilter, ItemWithOwner
from .registry import ItemRegistry
from .storage import InMemoryStorage, newest_first


class CatalogService:
    """Read-only browsing over the item registry."""

    def __init__(self, storage: InMemoryStorage, registry: ItemRegistry):
        self.storage = storage
        self.registry = registry

    def list_items(self, filters: Optional[CatalogFilter] = None) -> list[ItemWithOwner]:
        filters = filters or CatalogFilter()
        predicate = build_conditions(filters)
        with self.storage.read():
            rows = newest_first(r for r in self.storage.items.values() if predicate.evaluate(r))
            page = rows[filters.offset:filters.offset + filters.limit]
            return [self.registry.with_owner(self.registry.get_item(r["id"])) for r in page]

    def get_item(self, item_id: UUID) -> ItemWithOwner:
        with self.storage.read():
            return self.registry.with_owner(self.registry.get_item(item_id))
