import copy
import itertools
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Iterator, Optional
from uuid import UUID, uuid4

from .errors import ExchangeError, InsufficientPointsError, NotFoundError, StorageFailureError
from .logger import get_logger
from .models import RequestStatus, TransactionType, UserRole

logger = get_logger(__name__)

ADMIN_ID = UUID("550e8400-e29b-41d4-a716-446655440000")
JOHN_ID = UUID("660e8400-e29b-41d4-a716-446655440001")
JANE_ID = UUID("660e8400-e29b-41d4-a716-446655440002")


class InMemoryStorage:
    """Tables of plain dict rows behind a single re-entrant writer lock.

    Every mutation the services perform happens inside ``transaction()``, which
    snapshots the tables on entry and restores them if the block raises, so a
    failed operation leaves no trace.
    """

    def __init__(self, seed: bool = True):
        self.users: dict[UUID, dict] = {}
        self.items: dict[UUID, dict] = {}
        self.requests: dict[UUID, dict] = {}
        self.transactions: dict[UUID, dict] = {}
        self.email_index: dict[str, UUID] = {}
        self._lock = threading.RLock()
        self._depth = 0
        self._seq = itertools.count(1)
        if seed:
            self._seed_data()

    def _seed_data(self):
        for user_id, email, first, last, role, points in (
            (ADMIN_ID, "admin@rewear.com", "Admin", "User", UserRole.ADMIN, 1000),
            (JOHN_ID, "user1@rewear.com", "John", "Doe", UserRole.USER, 100),
            (JANE_ID, "user2@rewear.com", "Jane", "Smith", UserRole.USER, 100),
        ):
            now = datetime.now(timezone.utc)
            self.insert_user({
                "id": user_id, "email": email, "password_hash": "!seeded",
                "first_name": first, "last_name": last, "role": role,
                "points": points, "profile_image_url": f"https://i.pravatar.cc/150?u={email}",
                "created_at": now, "updated_at": now,
            })
            self.insert_transaction({
                "id": uuid4(), "user_id": user_id, "amount": points,
                "type": TransactionType.BONUS, "description": "Welcome bonus",
                "related_request_id": None, "balance_after": points, "created_at": now,
            })

    # ---------- Transactions ----------

    @contextmanager
    def transaction(self) -> Iterator["InMemoryStorage"]:
        with self._lock:
            if self._depth:
                # Nested: the outermost block owns the snapshot.
                self._depth += 1
                try:
                    yield self
                finally:
                    self._depth -= 1
                return

            snapshot = self._snapshot()
            self._depth = 1
            try:
                yield self
            except ExchangeError:
                self._restore(snapshot)
                raise
            except Exception as e:
                self._restore(snapshot)
                logger.exception("Storage transaction failed, rolled back")
                raise StorageFailureError(f"Storage failure: {e}") from e
            finally:
                self._depth = 0

    @contextmanager
    def read(self) -> Iterator["InMemoryStorage"]:
        """Hold the writer lock for a multi-step read.

        Writers keep the lock for the whole of a transaction, so a reader never
        sees rows that a failing transaction is about to roll back.
        """
        with self._lock:
            yield self

    def _snapshot(self) -> dict:
        return copy.deepcopy({
            "users": self.users,
            "items": self.items,
            "requests": self.requests,
            "transactions": self.transactions,
            "email_index": self.email_index,
        })

    def _restore(self, snapshot: dict) -> None:
        self.users = snapshot["users"]
        self.items = snapshot["items"]
        self.requests = snapshot["requests"]
        self.transactions = snapshot["transactions"]
        self.email_index = snapshot["email_index"]

    def _stamp(self, row: dict) -> dict:
        row.setdefault("seq", next(self._seq))
        return row

    # ---------- Users ----------

    def insert_user(self, row: dict) -> dict:
        with self._lock:
            self.users[row["id"]] = self._stamp(row)
            self.email_index[row["email"].lower()] = row["id"]
            return row

    def get_user(self, user_id: UUID) -> Optional[dict]:
        with self._lock:
            return _copy(self.users.get(user_id))

    def find_user_by_email(self, email: str) -> Optional[dict]:
        with self._lock:
            user_id = self.email_index.get(email.lower())
            return _copy(self.users.get(user_id)) if user_id else None

    def update_user(self, user_id: UUID, **fields) -> dict:
        with self._lock:
            row = self.users.get(user_id)
            if row is None:
                raise NotFoundError(f"User {user_id} not found")
            row.update(fields, updated_at=datetime.now(timezone.utc))
            return row

    def adjust_points(self, user_id: UUID, delta: int) -> int:
        """Atomically add ``delta`` to a balance, refusing to go below zero."""
        with self._lock:
            row = self.users.get(user_id)
            if row is None:
                raise NotFoundError(f"User {user_id} not found")
            new_balance = row["points"] + delta
            if new_balance < 0:
                raise InsufficientPointsError(
                    f"User {user_id} has {row['points']} points, {-delta} required"
                )
            row["points"] = new_balance
            row["updated_at"] = datetime.now(timezone.utc)
            return new_balance

    # ---------- Items ----------

    def insert_item(self, row: dict) -> dict:
        with self._lock:
            self.items[row["id"]] = self._stamp(row)
            return row

    def get_item(self, item_id: UUID) -> Optional[dict]:
        with self._lock:
            return _copy(self.items.get(item_id))

    def update_item(self, item_id: UUID, **fields) -> dict:
        with self._lock:
            row = self.items.get(item_id)
            if row is None:
                raise NotFoundError(f"Item {item_id} not found")
            row.update(fields, updated_at=datetime.now(timezone.utc))
            return row

    def delete_item(self, item_id: UUID) -> None:
        with self._lock:
            if self.items.pop(item_id, None) is None:
                raise NotFoundError(f"Item {item_id} not found")

    # ---------- Exchange requests ----------

    def insert_request(self, row: dict) -> dict:
        with self._lock:
            self.requests[row["id"]] = self._stamp(row)
            return row

    def get_request(self, request_id: UUID) -> Optional[dict]:
        with self._lock:
            return _copy(self.requests.get(request_id))

    def compare_and_set_request_status(self, request_id: UUID, expected, new, **fields) -> bool:
        """UPDATE requests SET status=new WHERE id=? AND status=expected.

        Returns False when no row matched.
        """
        with self._lock:
            row = self.requests.get(request_id)
            if row is None or row["status"] != expected:
                return False
            row["status"] = new
            row.update(fields)
            return True

    def pending_requests_for(self, item_ids) -> list[dict]:
        """Pending requests that name any of ``item_ids`` as requested or offered item."""
        item_ids = set(item_ids)
        with self._lock:
            return [
                dict(r) for r in self.requests.values()
                if r["status"] == RequestStatus.PENDING
                and (r["item_id"] in item_ids or r["offered_item_id"] in item_ids)
            ]

    # ---------- Point transactions ----------

    def insert_transaction(self, row: dict) -> dict:
        with self._lock:
            self.transactions[row["id"]] = self._stamp(row)
            return row


def _copy(row: Optional[dict]) -> Optional[dict]:
    return dict(row) if row is not None else None


def newest_first(rows) -> list[dict]:
    return sorted(rows, key=lambda r: (r["created_at"], r.get("seq", 0)), reverse=True)
