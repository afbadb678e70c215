from datetime import datetime, timezone
from typing import Optional
from uuid import UUID, uuid4

from .errors import InvalidRequestError, NotFoundError
from .logger import get_logger
from .models import (
    TransactionType,
    PointTransaction,
    UserBalance,
    LedgerHistoryResponse,
)
from .storage import InMemoryStorage, newest_first

logger = get_logger(__name__)


class LedgerStore:
    """Point balances and the append-only transaction ledger behind them.

    A balance only ever changes together with a PointTransaction recording the
    signed amount and the resulting balance, so the sum of a user's entries
    always equals their current balance.
    """

    def __init__(self, storage: InMemoryStorage):
        self.storage = storage

    def debit(
        self,
        user_id: UUID,
        amount: int,
        description: str,
        type: TransactionType = TransactionType.DEBIT,
        related_request_id: Optional[UUID] = None,
    ) -> PointTransaction:
        return self._post(user_id, -self._validate_amount(amount), type, description, related_request_id)

    def credit(
        self,
        user_id: UUID,
        amount: int,
        description: str,
        type: TransactionType = TransactionType.CREDIT,
        related_request_id: Optional[UUID] = None,
    ) -> PointTransaction:
        return self._post(user_id, self._validate_amount(amount), type, description, related_request_id)

    def grant_bonus(self, user_id: UUID, amount: int, description: str) -> PointTransaction:
        return self.credit(user_id, amount, description, type=TransactionType.BONUS)

    def append_transaction(self, entry: PointTransaction) -> PointTransaction:
        with self.storage.transaction():
            if entry.id in self.storage.transactions:
                raise InvalidRequestError(f"Transaction {entry.id} already recorded")
            self.storage.insert_transaction(entry.model_dump())
        return entry

    def get_balance(self, user_id: UUID) -> UserBalance:
        with self.storage.read():
            user = self.storage.get_user(user_id)
            if not user:
                raise NotFoundError(f"User {user_id} not found")
            entries = [e for e in self.storage.transactions.values() if e["user_id"] == user_id]

        last_entry = max(entries, key=lambda e: e["created_at"]) if entries else None

        return UserBalance(
            user_id=user_id,
            current_balance=user["points"],
            total_entries=len(entries),
            last_transaction_at=last_entry["created_at"] if last_entry else None,
        )

    def get_history(self, user_id: UUID, limit: int = 50, offset: int = 0) -> LedgerHistoryResponse:
        with self.storage.read():
            balance = self.get_balance(user_id)
            all_entries = newest_first(
                e for e in self.storage.transactions.values() if e["user_id"] == user_id
            )
        paginated = all_entries[offset:offset + limit]

        return LedgerHistoryResponse(
            user_id=user_id,
            entries=[PointTransaction(**e) for e in paginated],
            total_count=len(all_entries),
            current_balance=balance.current_balance,
        )

    def transactions_for_request(self, request_id: UUID) -> list[PointTransaction]:
        with self.storage.read():
            rows = newest_first(self.storage.transactions.values())
        return [PointTransaction(**e) for e in rows if e["related_request_id"] == request_id]

    def _post(
        self,
        user_id: UUID,
        signed_amount: int,
        type: TransactionType,
        description: str,
        related_request_id: Optional[UUID],
    ) -> PointTransaction:
        with self.storage.transaction():
            balance_after = self.storage.adjust_points(user_id, signed_amount)
            entry = PointTransaction(
                id=uuid4(),
                user_id=user_id,
                amount=signed_amount,
                type=type,
                description=description,
                related_request_id=related_request_id,
                balance_after=balance_after,
                created_at=datetime.now(timezone.utc),
            )
            self.storage.insert_transaction(entry.model_dump())

        logger.info(
            "Posted %s of %d points", type.value, signed_amount,
            extra={"user_id": user_id, "amount": signed_amount, "request_id": related_request_id},
        )
        return entry

    @staticmethod
    def _validate_amount(amount: int) -> int:
        if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
            raise InvalidRequestError(f"Point amount must be a positive integer, got {amount!r}")
        return amount
