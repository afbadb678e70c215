from datetime import datetime, timezone
from typing import Optional
from uuid import UUID, uuid4

from .config import get_settings
from .errors import NotFoundError
from .logger import get_logger
from .models import CreateItemRequest, Item, ItemStatus, ItemWithOwner, OwnerSummary
from .storage import InMemoryStorage

logger = get_logger(__name__)


class ItemRegistry:
    """Listed items, their moderation status and current owner."""

    def __init__(self, storage: InMemoryStorage, default_points: Optional[int] = None):
        self.storage = storage
        self.default_points = default_points or get_settings().DEFAULT_ITEM_POINTS

    def create_item(self, owner_id: UUID, request: CreateItemRequest) -> Item:
        if not self.storage.get_user(owner_id):
            raise NotFoundError(f"User {owner_id} not found")

        now = datetime.now(timezone.utc)
        item = Item(
            id=uuid4(),
            title=request.title,
            description=request.description,
            category=request.category,
            type=request.type,
            size=request.size,
            condition=request.condition,
            tags=request.tags,
            images=request.images,
            points=request.points or self.default_points,
            status=ItemStatus.PENDING,
            owner_id=owner_id,
            created_at=now,
            updated_at=now,
        )
        with self.storage.transaction():
            self.storage.insert_item(item.model_dump())

        logger.info("Item submitted for moderation", extra={"item_id": item.id, "user_id": owner_id})
        return item

    def get_item(self, item_id: UUID) -> Item:
        row = self.storage.get_item(item_id)
        if not row:
            raise NotFoundError(f"Item {item_id} not found")
        return Item(**row)

    def with_owner(self, item: Item) -> ItemWithOwner:
        owner = self.storage.get_user(item.owner_id)
        if not owner:
            raise NotFoundError(f"Owner {item.owner_id} of item {item.id} not found")
        return ItemWithOwner(**item.model_dump(), owner=OwnerSummary(**owner))

    def transfer_owner(self, item_id: UUID, new_owner_id: UUID) -> Item:
        return Item(**self.storage.update_item(item_id, owner_id=new_owner_id))

    def set_status(self, item_id: UUID, status: ItemStatus) -> Item:
        return Item(**self.storage.update_item(item_id, status=status))

    def delete_item(self, item_id: UUID) -> None:
        self.storage.delete_item(item_id)
