"""
Unit Tests for the Exchange Request Lifecycle

Tests cover:
1. Request creation and validation
2. Points settlement (debit/credit pair, item transfer)
3. Swap settlement (bidirectional transfer)
4. At-most-once settlement, including concurrent approvals
5. All-or-nothing rollback on failed settlement
6. Rejection and authorization
"""

import threading

import pytest
from uuid import uuid4

from exchange.errors import (
    AlreadySettledError,
    InsufficientPointsError,
    InvalidRequestError,
    NotFoundError,
    UnauthorizedError,
)
from exchange.models import (
    CreateExchangeRequest,
    ItemStatus,
    RequestDirection,
    RequestKind,
    RequestStatus,
    TransactionType,
)
from exchange.service import SUPERSEDED_REASON
from exchange.storage import ADMIN_ID


def points_request(item_id, points):
    return CreateExchangeRequest(item_id=item_id, kind=RequestKind.POINTS, offered_points=points)


def swap_request(item_id, offered_item_id=None):
    return CreateExchangeRequest(item_id=item_id, kind=RequestKind.SWAP, offered_item_id=offered_item_id)


class TestCreateRequest:
    """Tests for request creation."""

    def test_create_points_request(self, platform, make_user, list_item):
        owner = make_user()
        requester = make_user(points=100)
        item = list_item(owner)

        request = platform.exchange.create_request(requester, points_request(item.id, 40))

        assert request.status == RequestStatus.PENDING
        assert request.owner_id == owner
        assert request.requester_id == requester
        assert request.offered_points == 40

    def test_missing_item_fails(self, platform, make_user):
        requester = make_user(points=100)

        with pytest.raises(NotFoundError):
            platform.exchange.create_request(requester, points_request(uuid4(), 10))

    def test_cannot_request_own_item(self, platform, make_user, list_item):
        owner = make_user(points=100)
        item = list_item(owner)

        with pytest.raises(InvalidRequestError):
            platform.exchange.create_request(owner, points_request(item.id, 10))

    def test_unapproved_item_not_requestable(self, platform, make_user, list_item):
        owner = make_user()
        requester = make_user(points=100)
        item = list_item(owner, approve=False)

        with pytest.raises(InvalidRequestError):
            platform.exchange.create_request(requester, points_request(item.id, 10))

    @pytest.mark.parametrize("points", [None, 0, -10])
    def test_points_request_needs_positive_points(self, platform, make_user, list_item, points):
        owner = make_user()
        requester = make_user(points=100)
        item = list_item(owner)

        with pytest.raises(InvalidRequestError):
            platform.exchange.create_request(requester, points_request(item.id, points))

    def test_points_request_checks_balance_up_front(self, platform, make_user, list_item):
        owner = make_user()
        requester = make_user(points=10)
        item = list_item(owner)

        with pytest.raises(InsufficientPointsError):
            platform.exchange.create_request(requester, points_request(item.id, 40))

    def test_swap_offer_must_belong_to_requester(self, platform, make_user, list_item):
        owner = make_user()
        requester = make_user()
        stranger = make_user()
        item = list_item(owner)
        strangers_item = list_item(stranger)

        with pytest.raises(InvalidRequestError):
            platform.exchange.create_request(requester, swap_request(item.id, strangers_item.id))

    def test_swap_request_cannot_carry_points(self, platform, make_user, list_item):
        owner = make_user()
        requester = make_user(points=100)
        item = list_item(owner)

        with pytest.raises(InvalidRequestError):
            platform.exchange.create_request(requester, CreateExchangeRequest(
                item_id=item.id, kind=RequestKind.SWAP, offered_points=10,
            ))


class TestPointsSettlement:
    """Tests for approving points requests."""

    def test_points_scenario(self, platform, make_user, list_item):
        """A (100) buys X (40) from B (0); B approves."""
        owner = make_user()
        requester = make_user(points=100)
        item = list_item(owner, points=40)
        request = platform.exchange.create_request(requester, points_request(item.id, 40))

        result = platform.exchange.approve_request(request.id, owner)

        # Verify balances
        assert platform.ledger.get_balance(requester).current_balance == 60
        assert platform.ledger.get_balance(owner).current_balance == 40

        # Verify exactly one debit/credit pair referencing the request
        entries = platform.ledger.transactions_for_request(request.id)
        assert sorted(e.amount for e in entries) == [-40, 40]
        assert sum(e.amount for e in entries) == 0
        assert {e.type for e in entries} == {TransactionType.DEBIT, TransactionType.CREDIT}
        assert len(result.transactions) == 2

        # Verify item left the catalog and changed hands
        settled_item = platform.registry.get_item(item.id)
        assert settled_item.status == ItemStatus.SWAPPED
        assert settled_item.owner_id == requester
        assert result.request.status == RequestStatus.APPROVED
        assert result.request.settled_at is not None

        # Second approval is refused and changes nothing
        with pytest.raises(AlreadySettledError):
            platform.exchange.approve_request(request.id, owner)
        assert platform.ledger.get_balance(requester).current_balance == 60
        assert platform.ledger.get_balance(owner).current_balance == 40
        assert len(platform.ledger.transactions_for_request(request.id)) == 2

    def test_insufficient_points_at_settlement_rolls_back(self, platform, make_user, list_item):
        """Balance drops between request and approval; nothing is applied."""
        owner = make_user()
        requester = make_user(points=40)
        item = list_item(owner, points=40)
        request = platform.exchange.create_request(requester, points_request(item.id, 40))
        platform.ledger.debit(requester, 30, "Spent elsewhere")

        with pytest.raises(InsufficientPointsError):
            platform.exchange.approve_request(request.id, owner)

        assert platform.exchange.get_request(request.id).status == RequestStatus.PENDING
        assert platform.ledger.transactions_for_request(request.id) == []
        assert platform.ledger.get_balance(requester).current_balance == 10
        assert platform.ledger.get_balance(owner).current_balance == 0
        unchanged = platform.registry.get_item(item.id)
        assert unchanged.owner_id == owner
        assert unchanged.status == ItemStatus.APPROVED

    def test_balances_never_negative(self, platform, make_user, list_item):
        owner = make_user()
        requester = make_user(points=50)
        first = list_item(owner, points=40)
        second = list_item(owner, points=40)
        r1 = platform.exchange.create_request(requester, points_request(first.id, 40))
        r2 = platform.exchange.create_request(requester, points_request(second.id, 40))

        platform.exchange.approve_request(r1.id, owner)
        with pytest.raises(InsufficientPointsError):
            platform.exchange.approve_request(r2.id, owner)

        assert all(u["points"] >= 0 for u in platform.storage.users.values())


class TestSwapSettlement:
    """Tests for approving swap requests."""

    def test_bidirectional_swap(self, platform, make_user, list_item):
        owner = make_user()
        requester = make_user()
        wanted = list_item(owner, title="Red dress", type="dress")
        offered = list_item(requester, title="Wool coat")
        bystander = list_item(owner, title="Leather boots", type="shoes")
        request = platform.exchange.create_request(requester, swap_request(wanted.id, offered.id))

        result = platform.exchange.approve_request(request.id, owner)

        assert platform.registry.get_item(wanted.id).owner_id == requester
        assert platform.registry.get_item(offered.id).owner_id == owner
        assert set(result.transferred_item_ids) == {wanted.id, offered.id}
        assert result.transactions == []

        # No third item is affected
        untouched = platform.registry.get_item(bystander.id)
        assert untouched.owner_id == owner
        assert untouched.status == ItemStatus.APPROVED

    def test_swap_without_offered_item(self, platform, make_user, list_item):
        owner = make_user()
        requester = make_user()
        wanted = list_item(owner)
        request = platform.exchange.create_request(requester, swap_request(wanted.id))

        result = platform.exchange.approve_request(request.id, owner)

        assert result.transferred_item_ids == [wanted.id]
        assert platform.registry.get_item(wanted.id).owner_id == requester

    def test_unavailable_offered_item_rolls_back(self, platform, make_user, list_item):
        """Offered item pulled by moderation after the request; nothing moves."""
        owner = make_user()
        requester = make_user()
        wanted = list_item(owner)
        offered = list_item(requester)
        request = platform.exchange.create_request(requester, swap_request(wanted.id, offered.id))
        platform.moderation.set_item_status(offered.id, ItemStatus.REJECTED, ADMIN_ID)

        with pytest.raises(InvalidRequestError):
            platform.exchange.approve_request(request.id, owner)

        assert platform.registry.get_item(wanted.id).owner_id == owner
        assert platform.registry.get_item(wanted.id).status == ItemStatus.APPROVED
        assert platform.exchange.get_request(request.id).status == RequestStatus.PENDING

    def test_competing_requests_are_superseded(self, platform, make_user, list_item):
        owner = make_user()
        first = make_user(points=100)
        second = make_user(points=100)
        item = list_item(owner)
        winner = platform.exchange.create_request(first, points_request(item.id, 40))
        loser = platform.exchange.create_request(second, points_request(item.id, 40))

        result = platform.exchange.approve_request(winner.id, owner)

        assert result.superseded_request_ids == [loser.id]
        rejected = platform.exchange.get_request(loser.id)
        assert rejected.status == RequestStatus.REJECTED
        assert rejected.rejection_reason == SUPERSEDED_REASON
        with pytest.raises(AlreadySettledError):
            platform.exchange.approve_request(loser.id, owner)
        assert platform.ledger.get_balance(second).current_balance == 100


class TestAtMostOnce:
    """Tests for concurrent approval."""

    def test_concurrent_approvals_settle_once(self, platform, make_user, list_item):
        owner = make_user()
        requester = make_user(points=100)
        item = list_item(owner, points=40)
        request = platform.exchange.create_request(requester, points_request(item.id, 40))

        barrier = threading.Barrier(2)
        outcomes = []

        def approve():
            barrier.wait()
            try:
                platform.exchange.approve_request(request.id, owner)
                outcomes.append("ok")
            except AlreadySettledError:
                outcomes.append("already_settled")

        threads = [threading.Thread(target=approve) for _ in range(2)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert sorted(outcomes) == ["already_settled", "ok"]
        assert platform.ledger.get_balance(requester).current_balance == 60
        assert platform.ledger.get_balance(owner).current_balance == 40
        assert len(platform.ledger.transactions_for_request(request.id)) == 2


class TestReadIsolation:
    """Readers only ever see committed state."""

    def test_reader_waits_out_a_failing_settlement(self, platform, make_user, list_item, monkeypatch):
        owner = make_user()
        requester = make_user(points=100)
        item = list_item(owner, points=40)
        request = platform.exchange.create_request(requester, points_request(item.id, 40))

        in_credit = threading.Event()
        release = threading.Event()

        def stalled_credit(*args, **kwargs):
            in_credit.set()
            release.wait(timeout=5)
            raise InvalidRequestError("credit refused")

        monkeypatch.setattr(platform.ledger, "credit", stalled_credit)

        failures = []

        def approve():
            try:
                platform.exchange.approve_request(request.id, owner)
            except InvalidRequestError as e:
                failures.append(e)

        seen = {}

        def read():
            seen["status"] = platform.exchange.get_request(request.id).status
            seen["balance"] = platform.ledger.get_balance(requester).current_balance

        approver = threading.Thread(target=approve)
        approver.start()
        assert in_credit.wait(timeout=5)

        # The debit has been applied but not committed
        reader = threading.Thread(target=read)
        reader.start()
        reader.join(timeout=0.2)
        assert reader.is_alive()

        release.set()
        approver.join(timeout=5)
        reader.join(timeout=5)

        assert len(failures) == 1
        assert seen == {"status": RequestStatus.PENDING, "balance": 100}

    def test_reads_during_concurrent_writes(self, platform, make_user, list_item):
        user = make_user(points=10)
        stop = threading.Event()
        errors = []

        def write():
            while not stop.is_set():
                platform.ledger.grant_bonus(user, 1, "Streak bonus")
                list_item(user, approve=False)

        def read():
            try:
                for _ in range(200):
                    platform.moderation.platform_stats(ADMIN_ID)
                    platform.ledger.get_history(user)
                    platform.catalog.list_items()
                    platform.exchange.list_requests(user)
            except Exception as e:
                errors.append(e)
            finally:
                stop.set()

        writer = threading.Thread(target=write)
        reader = threading.Thread(target=read)
        writer.start()
        reader.start()
        reader.join(timeout=30)
        writer.join(timeout=30)

        assert errors == []
        history = platform.ledger.get_history(user)
        assert history.current_balance == 10 + history.total_count - 1


class TestRejectAndAuthorization:
    """Tests for rejection and owner-only decisions."""

    def test_reject_pending_request(self, platform, make_user, list_item):
        owner = make_user()
        requester = make_user(points=100)
        item = list_item(owner)
        request = platform.exchange.create_request(requester, points_request(item.id, 40))

        rejected = platform.exchange.reject_request(request.id, owner, reason="Changed my mind")

        assert rejected.status == RequestStatus.REJECTED
        assert rejected.rejection_reason == "Changed my mind"
        assert platform.ledger.get_balance(requester).current_balance == 100
        assert platform.registry.get_item(item.id).status == ItemStatus.APPROVED

    def test_cannot_approve_rejected_request(self, platform, make_user, list_item):
        owner = make_user()
        requester = make_user(points=100)
        item = list_item(owner)
        request = platform.exchange.create_request(requester, points_request(item.id, 40))
        platform.exchange.reject_request(request.id, owner)

        with pytest.raises(AlreadySettledError):
            platform.exchange.approve_request(request.id, owner)
        with pytest.raises(AlreadySettledError):
            platform.exchange.reject_request(request.id, owner)

    @pytest.mark.parametrize("action", ["approve_request", "reject_request"])
    def test_only_owner_can_decide(self, platform, make_user, list_item, action):
        owner = make_user()
        requester = make_user(points=100)
        item = list_item(owner)
        request = platform.exchange.create_request(requester, points_request(item.id, 40))

        with pytest.raises(UnauthorizedError):
            getattr(platform.exchange, action)(request.id, requester)

        assert platform.exchange.get_request(request.id).status == RequestStatus.PENDING

    def test_missing_request(self, platform, make_user):
        with pytest.raises(NotFoundError):
            platform.exchange.approve_request(uuid4(), make_user())


class TestListRequests:
    def test_incoming_and_outgoing(self, platform, make_user, list_item):
        owner = make_user()
        requester = make_user(points=100)
        item = list_item(owner)
        request = platform.exchange.create_request(requester, points_request(item.id, 40))

        incoming = platform.exchange.list_requests(owner, RequestDirection.INCOMING)
        outgoing = platform.exchange.list_requests(requester, RequestDirection.OUTGOING)

        assert [r.id for r in incoming] == [request.id]
        assert [r.id for r in outgoing] == [request.id]
        assert platform.exchange.list_requests(owner, RequestDirection.OUTGOING) == []


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
