from datetime import datetime, timezone
from typing import Optional
from uuid import UUID, uuid4

from .errors import (
    AlreadySettledError,
    InsufficientPointsError,
    InvalidRequestError,
    NotFoundError,
    UnauthorizedError,
)
from .ledger import LedgerStore
from .logger import get_logger
from .models import (
    CreateExchangeRequest,
    ExchangeRequest,
    Item,
    ItemStatus,
    PointTransaction,
    RequestDirection,
    RequestKind,
    RequestStatus,
    SettlementResult,
)
from .registry import ItemRegistry
from .storage import InMemoryStorage, newest_first

logger = get_logger(__name__)

SUPERSEDED_REASON = "item no longer available"


def supersede_pending(
    storage: InMemoryStorage, item_ids: list[UUID], settled_at: datetime, exclude: Optional[UUID] = None
) -> list[UUID]:
    """Reject every pending request that names one of ``item_ids``; returns the rejected ids."""
    superseded = []
    for r in storage.pending_requests_for(item_ids):
        if r["id"] == exclude:
            continue
        if storage.compare_and_set_request_status(
            r["id"], RequestStatus.PENDING, RequestStatus.REJECTED,
            settled_at=settled_at, rejection_reason=SUPERSEDED_REASON,
        ):
            superseded.append(r["id"])
    return superseded


class ExchangeService:
    """Exchange request lifecycle: pending → approved | rejected.

    Approval settles the request inside one storage transaction. The status
    flip is a compare-and-set on ``pending`` so a request is settled at most
    once, and any failure after it (short balance, item gone) rolls the flip
    back together with every ownership and ledger change.
    """

    def __init__(self, storage: InMemoryStorage, ledger: LedgerStore, registry: ItemRegistry):
        self.storage = storage
        self.ledger = ledger
        self.registry = registry

    def create_request(self, requester_id: UUID, request: CreateExchangeRequest) -> ExchangeRequest:
        if not self.storage.get_user(requester_id):
            raise NotFoundError(f"User {requester_id} not found")

        item = self.registry.get_item(request.item_id)
        if not item.is_requestable():
            raise InvalidRequestError(f"Item {item.id} is not available ({item.status.value})")
        if item.owner_id == requester_id:
            raise InvalidRequestError("Cannot request your own item")

        if request.kind == RequestKind.POINTS:
            self._validate_points_offer(requester_id, request)
        else:
            self._validate_swap_offer(requester_id, item, request)

        data = {
            "id": uuid4(),
            "item_id": item.id,
            "requester_id": requester_id,
            "owner_id": item.owner_id,
            "kind": request.kind,
            "offered_item_id": request.offered_item_id,
            "offered_points": request.offered_points,
            "status": RequestStatus.PENDING,
            "rejection_reason": None,
            "created_at": datetime.now(timezone.utc),
            "settled_at": None,
        }
        with self.storage.transaction():
            self.storage.insert_request(data)

        logger.info(
            "Exchange request created",
            extra={"request_id": data["id"], "item_id": item.id, "user_id": requester_id, "kind": request.kind.value},
        )
        return ExchangeRequest(**data)

    def approve_request(self, request_id: UUID, acting_user_id: UUID) -> SettlementResult:
        with self.storage.transaction():
            found = self._get_for_owner(request_id, acting_user_id)

            settled_at = datetime.now(timezone.utc)
            if not self.storage.compare_and_set_request_status(
                request_id, RequestStatus.PENDING, RequestStatus.APPROVED, settled_at=settled_at
            ):
                raise AlreadySettledError(f"Request {request_id} is already {found.status.value}")

            item = self._require_available(found.item_id, found.owner_id)

            transactions: list[PointTransaction] = []
            transferred = [item.id]
            if found.kind == RequestKind.SWAP:
                self.registry.transfer_owner(item.id, found.requester_id)
                if found.offered_item_id:
                    offered = self._require_available(found.offered_item_id, found.requester_id)
                    self.registry.transfer_owner(offered.id, found.owner_id)
                    transferred.append(offered.id)
            else:
                transactions = self._settle_points(found, item)
                self.registry.transfer_owner(item.id, found.requester_id)

            for item_id in transferred:
                self.registry.set_status(item_id, ItemStatus.SWAPPED)

            superseded = supersede_pending(self.storage, transferred, settled_at, exclude=request_id)
            settled = ExchangeRequest(**self.storage.get_request(request_id))

        logger.info(
            "Exchange request settled",
            extra={"request_id": request_id, "kind": found.kind.value, "user_id": acting_user_id},
        )
        return SettlementResult(
            request=settled,
            transferred_item_ids=transferred,
            transactions=transactions,
            superseded_request_ids=superseded,
            message="Request approved",
        )

    def reject_request(self, request_id: UUID, acting_user_id: UUID, reason: Optional[str] = None) -> ExchangeRequest:
        with self.storage.transaction():
            found = self._get_for_owner(request_id, acting_user_id)
            if not self.storage.compare_and_set_request_status(
                request_id, RequestStatus.PENDING, RequestStatus.REJECTED,
                settled_at=datetime.now(timezone.utc), rejection_reason=reason,
            ):
                raise AlreadySettledError(f"Request {request_id} is already {found.status.value}")
            rejected = ExchangeRequest(**self.storage.get_request(request_id))

        logger.info("Exchange request rejected", extra={"request_id": request_id, "user_id": acting_user_id})
        return rejected

    def get_request(self, request_id: UUID) -> ExchangeRequest:
        data = self.storage.get_request(request_id)
        if not data:
            raise NotFoundError(f"Request {request_id} not found")
        return ExchangeRequest(**data)

    def list_requests(
        self,
        user_id: UUID,
        direction: RequestDirection = RequestDirection.ALL,
        status: Optional[RequestStatus] = None,
    ) -> list[ExchangeRequest]:
        def matches(r: dict) -> bool:
            if status and r["status"] != status:
                return False
            if direction == RequestDirection.INCOMING:
                return r["owner_id"] == user_id
            if direction == RequestDirection.OUTGOING:
                return r["requester_id"] == user_id
            return user_id in (r["owner_id"], r["requester_id"])

        with self.storage.read():
            rows = [r for r in newest_first(self.storage.requests.values()) if matches(r)]
            return [ExchangeRequest(**r) for r in rows]

    def _validate_points_offer(self, requester_id: UUID, request: CreateExchangeRequest) -> None:
        if request.offered_item_id is not None:
            raise InvalidRequestError("Points requests cannot offer an item")
        points = request.offered_points
        if points is None:
            raise InvalidRequestError("offered_points is required for points requests")
        if points <= 0:
            raise InvalidRequestError("offered_points must be positive")
        balance = self.storage.get_user(requester_id)["points"]
        if balance < points:
            raise InsufficientPointsError(f"Balance of {balance} points cannot cover {points}")

    def _validate_swap_offer(self, requester_id: UUID, item: Item, request: CreateExchangeRequest) -> None:
        if request.offered_points is not None:
            raise InvalidRequestError("Swap requests cannot offer points")
        if request.offered_item_id is None:
            return
        if request.offered_item_id == item.id:
            raise InvalidRequestError("Cannot offer the requested item in exchange for itself")
        offered = self.registry.get_item(request.offered_item_id)
        if offered.owner_id != requester_id:
            raise InvalidRequestError("Offered item must belong to the requester")
        if not offered.is_requestable():
            raise InvalidRequestError(f"Offered item {offered.id} is not available ({offered.status.value})")

    def _get_for_owner(self, request_id: UUID, acting_user_id: UUID) -> ExchangeRequest:
        found = self.get_request(request_id)
        if found.owner_id != acting_user_id:
            raise UnauthorizedError("Only the item owner can decide on this request")
        return found

    def _require_available(self, item_id: UUID, expected_owner_id: UUID) -> Item:
        row = self.storage.get_item(item_id)
        if not row:
            raise InvalidRequestError(f"Item {item_id} no longer exists")
        item = Item(**row)
        if item.owner_id != expected_owner_id or not item.is_requestable():
            raise InvalidRequestError(f"Item {item_id} is no longer available")
        return item

    def _settle_points(self, found: ExchangeRequest, item: Item) -> list[PointTransaction]:
        points = found.offered_points
        debit = self.ledger.debit(
            found.requester_id, points, f"Points sent for {item.title}",
            related_request_id=found.id,
        )
        credit = self.ledger.credit(
            found.owner_id, points, f"Points received for {item.title}",
            related_request_id=found.id,
        )
        return [debit, credit]
