"""
Invite component unit tests.

Tests for issuance, validation, redemption, revocation, listing and cleanup.
"""

from __future__ import annotations

import itertools
import threading
from collections.abc import Callable
from datetime import timedelta
from pathlib import Path
from uuid import UUID

import pytest

from src.adapters.clock import FixedClock
from src.adapters.memory import InMemoryAccountRepo, InMemoryInviteCodeRepo, InMemoryStore
from src.components.codegen import is_well_formed
from src.components.invite import (
    CleanupInput,
    InviteService,
    IssueInviteInput,
    ListInvitesInput,
    RedeemInviteInput,
    RevokeInviteInput,
    StatisticsInput,
    ValidateInviteInput,
    create_invite_service,
    run,
    run_issue,
    run_redeem,
    run_validate,
)
from src.domain.entities import Account, InviteCode
from src.domain.errors import (
    AlreadyFinalizedError,
    AlreadyLinkedError,
    AlreadyUsedError,
    ConflictError,
    DeadlineExceededError,
    ExpiredError,
    GenerationFailedError,
    NotFoundError,
    ValidationError,
)
from src.rules.loader import load_rules

# --- Test Doubles ---


class SequenceGenerator:
    """Returns queued codes in order, then repeats the last one."""

    def __init__(self, *codes: str) -> None:
        self._codes = list(codes)

    def generate(self) -> str:
        if len(self._codes) > 1:
            return self._codes.pop(0)
        return self._codes[0]


class RecordingCache:
    def __init__(self) -> None:
        self.invalidated: list[int] = []

    def invalidate(self, identity_id: int) -> None:
        self.invalidated.append(identity_id)


# --- Fixtures ---


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def repo(store: InMemoryStore) -> InMemoryInviteCodeRepo:
    return InMemoryInviteCodeRepo(store)


@pytest.fixture
def accounts(store: InMemoryStore) -> InMemoryAccountRepo:
    return InMemoryAccountRepo(store)


@pytest.fixture
def new_account(accounts: InMemoryAccountRepo) -> Callable[[], UUID]:
    """Factory for saved, unlinked accounts to redeem into."""
    seq = itertools.count(1)

    def make() -> UUID:
        n = next(seq)
        account = Account(
            username=f"member{n}", email=f"member{n}@example.com", password_hash="h"
        )
        return accounts.save(account).id

    return make


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock()


@pytest.fixture
def cache() -> RecordingCache:
    return RecordingCache()


@pytest.fixture
def service(
    repo: InMemoryInviteCodeRepo,
    accounts: InMemoryAccountRepo,
    clock: FixedClock,
    cache: RecordingCache,
) -> InviteService:
    return create_invite_service(repo, time_port=clock, accounts=accounts, role_cache=cache)


# --- Issue ---


class TestIssue:
    def test_issue_creates_pending_code(
        self, service: InviteService, clock: FixedClock
    ) -> None:
        invite = service.issue(42, "alice")

        assert invite.id is not None
        assert is_well_formed(invite.code)
        assert invite.owner_identity_id == 42
        assert invite.owner_display_name == "alice"
        assert invite.created_at == clock.now_utc()
        assert invite.expires_at == clock.now_utc() + timedelta(hours=24)
        assert invite.status_at(clock.now_utc()) == "pending"

    def test_issue_is_idempotent_while_pending(
        self, service: InviteService, clock: FixedClock
    ) -> None:
        first = service.issue(42, "alice")
        clock.advance(timedelta(hours=1))
        second = service.issue(42, "alice")

        assert second.code == first.code
        assert second.id == first.id

    def test_issue_after_expiry_creates_new_code(
        self, service: InviteService, clock: FixedClock
    ) -> None:
        first = service.issue(42, "alice")
        clock.advance(timedelta(hours=25))
        second = service.issue(42, "alice")

        assert second.code != first.code
        assert len(service.history(42)) == 2

    def test_issue_rejects_linked_identity(
        self, service: InviteService, accounts: InMemoryAccountRepo
    ) -> None:
        accounts.save(
            Account(username="bob", email="bob@example.com", password_hash="x", identity_id=7)
        )
        with pytest.raises(AlreadyLinkedError):
            service.issue(7, "bob")

    @pytest.mark.parametrize("name", ["", "   ", "x" * 101])
    def test_issue_rejects_bad_display_name(self, service: InviteService, name: str) -> None:
        with pytest.raises(ValidationError):
            service.issue(1, name)

    def test_issue_rejects_non_positive_lifetime(self, service: InviteService) -> None:
        with pytest.raises(ValidationError):
            service.issue(1, "alice", lifetime_hours=0)

    def test_issue_retries_on_collision(
        self, repo: InMemoryInviteCodeRepo, clock: FixedClock
    ) -> None:
        gen = SequenceGenerator("AAAA-BBBB-CCCC", "AAAA-BBBB-CCCC", "DDDD-EEEE-FFFF")
        svc = InviteService(repo, time_port=clock, generator=gen)

        first = svc.issue(1, "one")
        second = svc.issue(2, "two")

        assert first.code == "AAAA-BBBB-CCCC"
        assert second.code == "DDDD-EEEE-FFFF"

    def test_issue_gives_up_after_max_attempts(
        self, repo: InMemoryInviteCodeRepo, clock: FixedClock
    ) -> None:
        svc = InviteService(repo, time_port=clock, generator=SequenceGenerator("AAAA-BBBB-CCCC"))
        svc.issue(1, "one")

        with pytest.raises(GenerationFailedError):
            svc.issue(2, "two")

    def test_code_never_reissued_after_cleanup(
        self, repo: InMemoryInviteCodeRepo, clock: FixedClock
    ) -> None:
        gen = SequenceGenerator("AAAA-BBBB-CCCC", "AAAA-BBBB-CCCC", "GGGG-HHHH-JJJJ")
        svc = InviteService(repo, time_port=clock, generator=gen)
        svc.issue(1, "one")
        clock.advance(timedelta(days=30))
        assert svc.cleanup(7) == 1

        # Row is gone but the code string stays reserved
        assert svc.issue(2, "two").code == "GGGG-HHHH-JJJJ"

    def test_concurrent_issue_distinct_identities_yields_unique_codes(
        self, service: InviteService
    ) -> None:
        results: list[InviteCode] = []
        lock = threading.Lock()

        def worker(identity_id: int) -> None:
            invite = service.issue(identity_id, f"user{identity_id}")
            with lock:
                results.append(invite)

        threads = [threading.Thread(target=worker, args=(i,)) for i in range(1, 51)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(results) == 50
        assert len({r.code for r in results}) == 50

    def test_concurrent_issue_same_identity_yields_one_code(
        self, service: InviteService
    ) -> None:
        results: list[str] = []
        lock = threading.Lock()

        def worker() -> None:
            invite = service.issue(9, "same")
            with lock:
                results.append(invite.code)

        threads = [threading.Thread(target=worker) for _ in range(20)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(set(results)) == 1
        assert len(service.list_active()) == 1


# --- Validate / Redeem ---


class TestRedeem:
    def test_validate_does_not_consume(self, service: InviteService) -> None:
        invite = service.issue(1, "alice")

        checked = service.validate(invite.code)

        assert checked.code == invite.code
        assert service.validate(invite.code).is_used is False

    def test_validate_normalizes_input(self, service: InviteService) -> None:
        invite = service.issue(1, "alice")
        raw = invite.code.replace("-", "").lower()

        assert service.validate(f"  {raw} ").code == invite.code

    def test_validate_unknown_code(self, service: InviteService) -> None:
        with pytest.raises(NotFoundError):
            service.validate("ZZZZ-ZZZZ-ZZZZ")

    def test_validate_blank_code(self, service: InviteService) -> None:
        with pytest.raises(NotFoundError):
            service.validate("   ")

    def test_redeem_marks_used_and_invalidates_cache(
        self,
        service: InviteService,
        clock: FixedClock,
        cache: RecordingCache,
        new_account: Callable[[], UUID],
    ) -> None:
        invite = service.issue(5, "carol")
        account_id = new_account()

        redeemed = service.redeem(invite.code, account_id)

        assert redeemed.is_used is True
        assert redeemed.used_at == clock.now_utc()
        assert redeemed.redeemed_by_account_id == account_id
        assert cache.invalidated == [5]
        assert service.active_code(5) is None

    def test_second_redeem_reports_already_used(
        self, service: InviteService, new_account: Callable[[], UUID]
    ) -> None:
        invite = service.issue(5, "carol")
        service.redeem(invite.code, new_account())

        with pytest.raises(AlreadyUsedError):
            service.redeem(invite.code, new_account())

    def test_redeem_after_expiry(
        self, service: InviteService, clock: FixedClock, new_account: Callable[[], UUID]
    ) -> None:
        invite = service.issue(5, "carol")
        clock.advance(timedelta(hours=25))

        with pytest.raises(ExpiredError):
            service.redeem(invite.code, new_account())

        assert service.history(5)[0].status_at(clock.now_utc()) == "expired"

    def test_redeem_at_exact_expiry_is_expired(
        self, service: InviteService, clock: FixedClock
    ) -> None:
        invite = service.issue(5, "carol")
        clock.set(invite.expires_at)

        with pytest.raises(ExpiredError):
            service.validate(invite.code)

    def test_lost_race_reports_conflict(
        self, repo: InMemoryInviteCodeRepo, clock: FixedClock, new_account: Callable[[], UUID]
    ) -> None:
        svc = InviteService(repo, time_port=clock)
        invite = svc.issue(5, "carol")
        assert invite.id is not None
        # Another caller wins between the pre-check and the conditional write
        original = repo.mark_used
        rival = new_account()

        def racing_mark_used(code_id, account_id, used_at):  # type: ignore[no-untyped-def]
            original(code_id, rival, used_at)
            return original(code_id, account_id, used_at)

        repo.mark_used = racing_mark_used  # type: ignore[method-assign]

        with pytest.raises(ConflictError):
            svc.redeem(invite.code, new_account())

    def test_concurrent_redeem_has_one_winner(
        self, service: InviteService, new_account: Callable[[], UUID]
    ) -> None:
        invite = service.issue(5, "carol")
        winners: list[str] = []
        losers: list[Exception] = []
        lock = threading.Lock()

        def worker(account_id: UUID) -> None:
            try:
                service.redeem(invite.code, account_id)
                with lock:
                    winners.append("won")
            except (AlreadyUsedError, ConflictError) as e:
                with lock:
                    losers.append(e)

        threads = [threading.Thread(target=worker, args=(new_account(),)) for _ in range(16)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(winners) == 1
        assert len(losers) == 15

    def test_expired_deadline_raises_before_store_call(
        self, service: InviteService
    ) -> None:
        with pytest.raises(DeadlineExceededError):
            service.validate("AAAA-BBBB-CCCC", timeout=0)


# --- Revoke ---


class TestRevoke:
    def test_revoke_pending(self, service: InviteService, clock: FixedClock) -> None:
        invite = service.issue(3, "dave")

        revoked = service.revoke(invite.code)

        assert revoked.expires_at == clock.now_utc()
        assert revoked.revoked_at == clock.now_utc()
        assert revoked.status_at(clock.now_utc()) == "expired"
        with pytest.raises(ExpiredError):
            service.validate(invite.code)

    def test_revoke_used_is_refused(
        self, service: InviteService, new_account: Callable[[], UUID]
    ) -> None:
        invite = service.issue(3, "dave")
        used = service.redeem(invite.code, new_account())

        with pytest.raises(AlreadyFinalizedError):
            service.revoke(invite.code)

        assert service.history(3)[0].used_at == used.used_at

    def test_revoke_unknown(self, service: InviteService) -> None:
        with pytest.raises(NotFoundError):
            service.revoke("ZZZZ-ZZZZ-ZZZZ")

    def test_revoke_allows_fresh_issue(self, service: InviteService) -> None:
        first = service.issue(3, "dave")
        service.revoke(first.code)

        assert service.issue(3, "dave").code != first.code


# --- Queries ---


class TestQueries:
    def test_statistics(
        self, service: InviteService, clock: FixedClock, new_account: Callable[[], UUID]
    ) -> None:
        a = service.issue(1, "a")
        service.issue(2, "b")
        c = service.issue(3, "c")
        service.redeem(a.code, new_account())
        service.revoke(c.code)

        stats = service.statistics()

        assert stats.pending_count == 1
        assert stats.used_count == 1
        assert stats.expired_count == 1
        assert stats.revoked_count == 1
        assert stats.total == 3

    def test_page_newest_first_with_filters(
        self, service: InviteService, clock: FixedClock, new_account: Callable[[], UUID]
    ) -> None:
        for i in range(1, 6):
            service.issue(i, f"user{i}")
            clock.advance(timedelta(minutes=1))
        used = service.history(2)[0]
        service.redeem(used.code, new_account())

        page = service.page(1, 2)
        assert page.total_count == 5
        assert page.total_pages == 3
        assert [r.owner_identity_id for r in page.items] == [5, 4]

        active = service.page(1, 10, status_filter="active")
        assert active.total_count == 4

        redeemed = service.page(1, 10, status_filter="used")
        assert [r.owner_identity_id for r in redeemed.items] == [2]

        searched = service.page(1, 10, search_term="USER3")
        assert [r.owner_identity_id for r in searched.items] == [3]

    @pytest.mark.parametrize(
        "page,size,status",
        [(0, 10, None), (1, 0, None), (1, 101, None), (1, 10, "bogus")],
    )
    def test_page_rejects_bad_arguments(
        self, service: InviteService, page: int, size: int, status: str | None
    ) -> None:
        with pytest.raises(ValidationError):
            service.page(page, size, status_filter=status)

    def test_cleanup_deletes_exact_count(
        self, service: InviteService, clock: FixedClock
    ) -> None:
        service.issue(1, "old")
        service.issue(2, "old2")
        clock.advance(timedelta(days=10))
        service.issue(3, "new")

        assert service.cleanup(7) == 2
        assert service.cleanup(7) == 0
        assert [r.owner_identity_id for r in service.list_active()] == [3]

    def test_cleanup_rejects_non_positive_days(self, service: InviteService) -> None:
        with pytest.raises(ValidationError):
            service.cleanup(0)


# --- Component Entry Points ---


class TestComponentEntryPoints:
    def test_run_issue_and_redeem(
        self, repo: InMemoryInviteCodeRepo, clock: FixedClock, new_account: Callable[[], UUID]
    ) -> None:
        rules = load_rules(Path("rules.yaml").resolve())

        issued = run_issue(
            IssueInviteInput(identity_id=11, display_name="erin"),
            repo=repo,
            time_port=clock,
            rules=rules,
        )
        assert issued.success is True
        assert issued.invite is not None

        redeemed = run_redeem(
            RedeemInviteInput(code=issued.invite.code, account_id=new_account()),
            repo=repo,
            time_port=clock,
        )
        assert redeemed.success is True

        again = run_redeem(
            RedeemInviteInput(code=issued.invite.code, account_id=new_account()),
            repo=repo,
            time_port=clock,
        )
        assert again.success is False
        assert again.errors[0].code == "already_used"
        assert again.errors[0].invite_code == issued.invite.code

    def test_run_validate_unknown_code(
        self, repo: InMemoryInviteCodeRepo, clock: FixedClock
    ) -> None:
        result = run_validate(
            ValidateInviteInput(code="ZZZZ-ZZZZ-ZZZZ"), repo=repo, time_port=clock
        )

        assert result.success is False
        assert result.invite is None
        assert result.errors[0].code == "not_found"

    def test_run_dispatch(self, repo: InMemoryInviteCodeRepo, clock: FixedClock) -> None:
        issued = run(IssueInviteInput(identity_id=1, display_name="x"), repo=repo, time_port=clock)
        assert issued.success is True

        stats = run(StatisticsInput(), repo=repo, time_port=clock)
        assert stats.success is True
        assert stats.statistics is not None  # type: ignore[union-attr]
        assert stats.statistics.pending_count == 1  # type: ignore[union-attr]

        page = run(ListInvitesInput(status_filter="nope"), repo=repo, time_port=clock)
        assert page.success is False

        revoked = run(RevokeInviteInput(code=issued.invite.code), repo=repo, time_port=clock)  # type: ignore[union-attr]
        assert revoked.success is True

        cleaned = run(CleanupInput(days_old=7), repo=repo, time_port=clock)
        assert cleaned.success is True
        assert cleaned.deleted == 0  # type: ignore[union-attr]

    def test_run_unknown_input(self, repo: InMemoryInviteCodeRepo) -> None:
        with pytest.raises(ValueError):
            run("nope", repo=repo)  # type: ignore[arg-type]
