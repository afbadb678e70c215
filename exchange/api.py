from typing import Optional
from uuid import UUID
from fastapi import Depends, FastAPI, Header, HTTPException, Query, status
from fastapi.middleware.cors import CORSMiddleware

from search import SearchQueryParser

from .accounts import AccountService
from .catalog import CatalogService
from .config import get_settings
from .errors import (
    AlreadySettledError, ExchangeError, InsufficientPointsError, InvalidRequestError,
    NotFoundError, StorageFailureError, UnauthorizedError,
)
from .ledger import LedgerStore
from .logger import setup_logger
from .models import (
    CatalogFilter, Category, Condition, CreateExchangeRequest, CreateItemRequest, ExchangeRequest,
    Item, ItemType, ItemWithOwner, LedgerHistoryResponse, NaturalSearchRequest,
    NaturalSearchResponse, PlatformStats, RegisterUserRequest, RejectRequest, RequestDirection,
    RequestStatus, SetItemStatusRequest, SetRoleRequest, SettlementResult, Size, UserBalance, UserProfile,
)
from .moderation import ModerationService
from .registry import ItemRegistry
from .service import ExchangeService
from .storage import InMemoryStorage

settings = get_settings()
logger = setup_logger("exchange", settings.LOG_LEVEL)

app = FastAPI(
    title=settings.APP_NAME,
    description="Clothing exchange: swaps, points redemption and item moderation",
    version=settings.VERSION,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allow_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

storage = InMemoryStorage()
ledger = LedgerStore(storage)
registry = ItemRegistry(storage)
accounts = AccountService(storage, ledger)
exchange_service = ExchangeService(storage, ledger, registry)
moderation_service = ModerationService(storage, registry, accounts)
catalog_service = CatalogService(storage, registry)
search_parser = SearchQueryParser()

ERROR_STATUS = {
    NotFoundError: status.HTTP_404_NOT_FOUND,
    InvalidRequestError: status.HTTP_400_BAD_REQUEST,
    UnauthorizedError: status.HTTP_403_FORBIDDEN,
    AlreadySettledError: status.HTTP_409_CONFLICT,
    InsufficientPointsError: status.HTTP_402_PAYMENT_REQUIRED,
    StorageFailureError: status.HTTP_503_SERVICE_UNAVAILABLE,
}


def to_http(e: ExchangeError) -> HTTPException:
    code = ERROR_STATUS.get(type(e), status.HTTP_400_BAD_REQUEST)
    return HTTPException(status_code=code, detail=str(e))


def current_user_id(x_user_id: Optional[UUID] = Header(default=None)) -> UUID:
    try:
        return accounts.authenticate(x_user_id).user_id
    except UnauthorizedError as e:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(e))


@app.get("/health", tags=["System"])
def health_check():
    return {"status": "healthy", "service": "rewear-exchange"}


# ---------- Users ----------

@app.post("/users", response_model=UserProfile, status_code=status.HTTP_201_CREATED, tags=["Users"])
def register_user(request: RegisterUserRequest) -> UserProfile:
    try:
        return UserProfile.model_validate(accounts.register(request))
    except ExchangeError as e:
        raise to_http(e)


@app.get("/users/{user_id}", response_model=UserProfile, tags=["Users"])
def get_user(user_id: UUID) -> UserProfile:
    try:
        return UserProfile.model_validate(accounts.get_user(user_id))
    except NotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"User {user_id} not found")


@app.get("/users/{user_id}/balance", response_model=UserBalance, tags=["Users"])
def get_user_balance(user_id: UUID, caller_id: UUID = Depends(current_user_id)) -> UserBalance:
    try:
        if caller_id != user_id:
            accounts.require_admin(caller_id)
        return ledger.get_balance(user_id)
    except ExchangeError as e:
        raise to_http(e)


@app.get("/users/{user_id}/transactions", response_model=LedgerHistoryResponse, tags=["Users"])
def get_transaction_history(
    user_id: UUID,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    caller_id: UUID = Depends(current_user_id),
) -> LedgerHistoryResponse:
    try:
        if caller_id != user_id:
            accounts.require_admin(caller_id)
        return ledger.get_history(user_id, limit, offset)
    except ExchangeError as e:
        raise to_http(e)


# ---------- Items ----------

@app.get("/items", response_model=list[ItemWithOwner], tags=["Items"])
def list_items(
    category: Optional[Category] = None,
    type: Optional[ItemType] = None,
    size: Optional[Size] = None,
    condition: Optional[Condition] = None,
    search: Optional[str] = None,
    owner_id: Optional[UUID] = None,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
) -> list[ItemWithOwner]:
    filters = CatalogFilter(
        category=category, type=type, size=size, condition=condition,
        search=search, owner_id=owner_id, limit=limit, offset=offset,
    )
    return catalog_service.list_items(filters)


@app.get("/items/{item_id}", response_model=ItemWithOwner, tags=["Items"])
def get_item(item_id: UUID) -> ItemWithOwner:
    try:
        return catalog_service.get_item(item_id)
    except NotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Item {item_id} not found")


@app.post("/items", response_model=Item, status_code=status.HTTP_201_CREATED, tags=["Items"])
def create_item(request: CreateItemRequest, caller_id: UUID = Depends(current_user_id)) -> Item:
    try:
        return registry.create_item(caller_id, request)
    except ExchangeError as e:
        raise to_http(e)


@app.get("/me/items", response_model=list[ItemWithOwner], tags=["Items"])
def list_my_items(caller_id: UUID = Depends(current_user_id)) -> list[ItemWithOwner]:
    return catalog_service.list_items(CatalogFilter(owner_id=caller_id, status=None, limit=200))


# ---------- Exchange requests ----------

@app.post("/requests", response_model=ExchangeRequest, status_code=status.HTTP_201_CREATED, tags=["Requests"])
def create_request(request: CreateExchangeRequest, caller_id: UUID = Depends(current_user_id)) -> ExchangeRequest:
    try:
        return exchange_service.create_request(caller_id, request)
    except ExchangeError as e:
        raise to_http(e)


@app.get("/requests", response_model=list[ExchangeRequest], tags=["Requests"])
def list_requests(
    direction: RequestDirection = RequestDirection.ALL,
    request_status: Optional[RequestStatus] = Query(None, alias="status"),
    caller_id: UUID = Depends(current_user_id),
) -> list[ExchangeRequest]:
    return exchange_service.list_requests(caller_id, direction, request_status)


@app.get("/requests/{request_id}", response_model=ExchangeRequest, tags=["Requests"])
def get_request(request_id: UUID, caller_id: UUID = Depends(current_user_id)) -> ExchangeRequest:
    try:
        found = exchange_service.get_request(request_id)
        if caller_id not in (found.owner_id, found.requester_id):
            accounts.require_admin(caller_id)
        return found
    except ExchangeError as e:
        raise to_http(e)


@app.post("/requests/{request_id}/approve", response_model=SettlementResult, tags=["Requests"])
def approve_request(request_id: UUID, caller_id: UUID = Depends(current_user_id)) -> SettlementResult:
    try:
        return exchange_service.approve_request(request_id, caller_id)
    except ExchangeError as e:
        raise to_http(e)


@app.post("/requests/{request_id}/reject", response_model=ExchangeRequest, tags=["Requests"])
def reject_request(
    request_id: UUID,
    request: Optional[RejectRequest] = None,
    caller_id: UUID = Depends(current_user_id),
) -> ExchangeRequest:
    try:
        return exchange_service.reject_request(request_id, caller_id, request.reason if request else None)
    except ExchangeError as e:
        raise to_http(e)


# ---------- Admin ----------

@app.get("/admin/items/pending", response_model=list[ItemWithOwner], tags=["Admin"])
def pending_items(caller_id: UUID = Depends(current_user_id)) -> list[ItemWithOwner]:
    try:
        return moderation_service.pending_items(caller_id)
    except ExchangeError as e:
        raise to_http(e)


@app.put("/admin/items/{item_id}/status", response_model=Item, tags=["Admin"])
def set_item_status(
    item_id: UUID, request: SetItemStatusRequest, caller_id: UUID = Depends(current_user_id)
) -> Item:
    try:
        return moderation_service.set_item_status(item_id, request.status, caller_id)
    except ExchangeError as e:
        raise to_http(e)


@app.delete("/admin/items/{item_id}", tags=["Admin"])
def delete_item(item_id: UUID, caller_id: UUID = Depends(current_user_id)):
    try:
        moderation_service.delete_item(item_id, caller_id)
    except ExchangeError as e:
        raise to_http(e)
    return {"message": "Item deleted successfully"}


@app.get("/admin/stats", response_model=PlatformStats, tags=["Admin"])
def platform_stats(caller_id: UUID = Depends(current_user_id)) -> PlatformStats:
    try:
        return moderation_service.platform_stats(caller_id)
    except ExchangeError as e:
        raise to_http(e)


@app.put("/admin/users/{user_id}/role", response_model=UserProfile, tags=["Admin"])
def set_user_role(user_id: UUID, request: SetRoleRequest, caller_id: UUID = Depends(current_user_id)) -> UserProfile:
    try:
        return UserProfile.model_validate(accounts.set_role(user_id, request.role, caller_id))
    except ExchangeError as e:
        raise to_http(e)


# ---------- Search ----------

@app.post("/search/natural", response_model=NaturalSearchResponse, tags=["Search"])
def natural_search(request: NaturalSearchRequest) -> NaturalSearchResponse:
    filters = search_parser.parse(request.query)
    return NaturalSearchResponse(filters=filters, items=catalog_service.list_items(filters))


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
