"""In-memory doubles for the tenant store, the billing authority and time."""

from __future__ import annotations

import threading
import uuid
from datetime import datetime, timedelta, timezone

from tenancy.domain.billing import BillingSnapshot, SubscriptionStatus
from tenancy.domain.errors import BillingUnavailable, ProvisioningConflict, StoreUnavailable
from tenancy.domain.tenant import Role, Team, User


class FakeTenantRepository:
    """In-memory repository enforcing the unique external identity constraint.

    With ``read_barrier`` set, each thread's first lookup waits for every other
    thread to finish its own lookup, forcing all of them down the create path.
    """

    def __init__(self, *, read_barrier: threading.Barrier | None = None) -> None:
        self.teams: dict[str, Team] = {}
        self.users: dict[str, User] = {}
        self.conflicts = 0
        self.unavailable = False
        self._read_barrier = read_barrier
        self._local = threading.local()
        self._lock = threading.Lock()

    def _check_available(self) -> None:
        if self.unavailable:
            raise StoreUnavailable("tenant store unreachable")

    def find_user_by_external_id(self, external_id: str) -> User | None:
        self._check_available()
        with self._lock:
            user = self.users.get(external_id)
        if self._read_barrier is not None and not getattr(self._local, "waited", False):
            self._local.waited = True
            self._read_barrier.wait(timeout=5)
        return user

    def create_team_with_admin(
        self,
        *,
        external_id: str,
        email: str,
        display_name: str | None,
        team_name: str,
        plan: str,
    ):
        self._check_available()
        now = datetime.now(timezone.utc)
        with self._lock:
            if external_id in self.users:
                self.conflicts += 1
                raise ProvisioningConflict(external_id)
            team = Team(team_id=str(uuid.uuid4()), name=team_name, plan=plan, created_at=now)
            user = User(
                user_id=str(uuid.uuid4()),
                external_id=external_id,
                email=email,
                team_id=team.team_id,
                role=Role.admin,
                created_at=now,
                name=display_name,
            )
            self.teams[team.team_id] = team
            self.users[external_id] = user
        return team, user

    def add_member(self, team_id: str, external_id: str, email: str) -> User:
        user = User(
            user_id=str(uuid.uuid4()),
            external_id=external_id,
            email=email,
            team_id=team_id,
            role=Role.member,
            created_at=datetime.now(timezone.utc),
        )
        self.users[external_id] = user
        return user

    def get_team(self, team_id: str) -> Team | None:
        self._check_available()
        return self.teams.get(team_id)

    def rename_team(self, team_id: str, name: str) -> Team | None:
        self._check_available()
        team = self.teams.get(team_id)
        if team is not None:
            team.name = name
        return team

    def update_plan(self, team_id: str, plan: str) -> Team | None:
        self._check_available()
        team = self.teams.get(team_id)
        if team is not None:
            team.plan = plan
        return team


class FakeClock:
    def __init__(self) -> None:
        self.now = datetime(2026, 1, 1, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class FakeBillingAuthority:
    """Billing authority double serving configured per-team states."""

    def __init__(self, clock: FakeClock) -> None:
        self._clock = clock
        self._states: dict[str, tuple[SubscriptionStatus | None, int, int]] = {}
        self.failing = False
        self.calls = 0

    def set_state(
        self,
        team_id: str,
        status: SubscriptionStatus | None,
        seat_count: int = 0,
        active_member_count: int = 0,
    ) -> None:
        self._states[team_id] = (status, seat_count, active_member_count)

    def fetch(self, team_id: str) -> BillingSnapshot:
        self.calls += 1
        if self.failing:
            raise BillingUnavailable("billing authority unreachable")
        status, seats, members = self._states.get(team_id, (None, 0, 0))
        return BillingSnapshot(
            status=status,
            seat_count=seats,
            active_member_count=members,
            fetched_at=self._clock(),
        )
