from collections import Counter
from datetime import datetime, timezone
from uuid import UUID

from .accounts import AccountService
from .errors import InvalidRequestError
from .logger import get_logger
from .models import Item, ItemStatus, ItemWithOwner, PlatformStats, RequestStatus
from .registry import ItemRegistry
from .service import supersede_pending
from .storage import InMemoryStorage, newest_first

logger = get_logger(__name__)

MODERATION_OUTCOMES = (ItemStatus.APPROVED, ItemStatus.REJECTED)


class ModerationService:
    """Admin review of submitted items and platform-wide statistics."""

    def __init__(self, storage: InMemoryStorage, registry: ItemRegistry, accounts: AccountService):
        self.storage = storage
        self.registry = registry
        self.accounts = accounts

    def set_item_status(self, item_id: UUID, status: ItemStatus, acting_admin_id: UUID) -> Item:
        self.accounts.require_admin(acting_admin_id)
        if status not in MODERATION_OUTCOMES:
            raise InvalidRequestError(f"Invalid status {status.value!r}, expected approved or rejected")

        with self.storage.transaction():
            item = self.registry.get_item(item_id)
            if item.status == status:
                return item
            if item.status == ItemStatus.SWAPPED:
                raise InvalidRequestError(f"Item {item_id} has already been exchanged")
            item = self.registry.set_status(item_id, status)
            if status == ItemStatus.REJECTED:
                supersede_pending(self.storage, [item_id], datetime.now(timezone.utc))

        logger.info("Item moderated", extra={"item_id": item_id, "status": status.value, "user_id": acting_admin_id})
        return item

    def delete_item(self, item_id: UUID, acting_admin_id: UUID) -> None:
        self.accounts.require_admin(acting_admin_id)
        with self.storage.transaction():
            self.registry.get_item(item_id)
            open_requests = self.storage.pending_requests_for([item_id])
            if open_requests:
                raise InvalidRequestError(
                    f"Item {item_id} has {len(open_requests)} pending request(s); resolve them first"
                )
            self.registry.delete_item(item_id)

        logger.info("Item deleted", extra={"item_id": item_id, "user_id": acting_admin_id})

    def pending_items(self, acting_admin_id: UUID) -> list[ItemWithOwner]:
        self.accounts.require_admin(acting_admin_id)
        with self.storage.read():
            rows = newest_first(r for r in self.storage.items.values() if r["status"] == ItemStatus.PENDING)
            return [self.registry.with_owner(self.registry.get_item(r["id"])) for r in rows]

    def platform_stats(self, acting_admin_id: UUID) -> PlatformStats:
        self.accounts.require_admin(acting_admin_id)
        with self.storage.read():
            items_by_status = Counter(r["status"].value for r in self.storage.items.values())
            requests_by_status = Counter(r["status"].value for r in self.storage.requests.values())

            return PlatformStats(
                total_users=len(self.storage.users),
                total_items=len(self.storage.items),
                items_by_status={s.value: items_by_status.get(s.value, 0) for s in ItemStatus},
                total_requests=len(self.storage.requests),
                requests_by_status={s.value: requests_by_status.get(s.value, 0) for s in RequestStatus},
                points_in_circulation=sum(u["points"] for u in self.storage.users.values()),
            )
