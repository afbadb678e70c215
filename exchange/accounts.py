from datetime import datetime, timezone
from typing import Optional
from uuid import UUID, uuid4

from .config import get_settings
from .errors import InvalidRequestError, NotFoundError, UnauthorizedError
from .ledger import LedgerStore
from .logger import get_logger
from .models import Caller, RegisterUserRequest, User, UserRole
from .storage import InMemoryStorage

logger = get_logger(__name__)


class AccountService:
    """User registration and role administration, plus the authorization
    checks every other service runs against an explicit caller id."""

    def __init__(self, storage: InMemoryStorage, ledger: LedgerStore, signup_bonus: Optional[int] = None):
        self.storage = storage
        self.ledger = ledger
        self.signup_bonus = get_settings().SIGNUP_BONUS_POINTS if signup_bonus is None else signup_bonus

    def register(self, request: RegisterUserRequest) -> User:
        now = datetime.now(timezone.utc)
        user_id = uuid4()
        with self.storage.transaction():
            if self.storage.find_user_by_email(request.email):
                raise InvalidRequestError("Email already registered")
            self.storage.insert_user({
                "id": user_id,
                "email": request.email,
                "password_hash": request.password_hash,
                "first_name": request.first_name,
                "last_name": request.last_name,
                "role": UserRole.USER,
                "points": 0,
                "profile_image_url": request.profile_image_url,
                "created_at": now,
                "updated_at": now,
            })
            if self.signup_bonus > 0:
                self.ledger.grant_bonus(user_id, self.signup_bonus, "Welcome bonus")

        logger.info("Registered user", extra={"user_id": user_id})
        return self.get_user(user_id)

    def get_user(self, user_id: UUID) -> User:
        row = self.storage.get_user(user_id)
        if not row:
            raise NotFoundError(f"User {user_id} not found")
        return User(**row)

    def authenticate(self, user_id: Optional[UUID]) -> Caller:
        if user_id is None:
            raise UnauthorizedError("Authentication required")
        row = self.storage.get_user(user_id)
        if not row:
            raise UnauthorizedError("Unknown caller")
        return Caller(user_id=row["id"], role=row["role"])

    def require_admin(self, user_id: Optional[UUID]) -> Caller:
        caller = self.authenticate(user_id)
        if not caller.is_admin:
            raise UnauthorizedError("Admin access required")
        return caller

    def set_role(self, user_id: UUID, role: UserRole, acting_admin_id: UUID) -> User:
        self.require_admin(acting_admin_id)
        if user_id == acting_admin_id and role != UserRole.ADMIN:
            raise InvalidRequestError("Admins cannot revoke their own admin role")
        with self.storage.transaction():
            if not self.storage.get_user(user_id):
                raise NotFoundError(f"User {user_id} not found")
            self.storage.update_user(user_id, role=role)

        logger.info("Changed role to %s", role.value, extra={"user_id": user_id})
        return self.get_user(user_id)
