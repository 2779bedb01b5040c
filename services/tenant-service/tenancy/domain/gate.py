"""Access gate combining identity resolution and billing state.

The gate is a small state machine. It stays ``loading`` while either input is
unknown, transient outages included. Only an ``active`` or ``trialing``
subscription is ``granted``; a ``denied`` decision carries the redirect the
client should follow. Decisions are recomputed whenever an input changes, so
a snapshot pushed later by the billing webhook flips a denied gate back to
granted without a reload.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from threading import RLock
from typing import TYPE_CHECKING, Callable

from .billing import BillingSnapshot
from .identity import IdentityResult

if TYPE_CHECKING:
    from ..billing.synchronizer import BillingStateSynchronizer


class GateState(str, Enum):
    loading = "loading"
    denied = "denied"
    granted = "granted"


@dataclass(frozen=True, slots=True)
class GateDecision:
    state: GateState
    redirect_to: str | None = None
    reason: str | None = None


LOADING = GateDecision(GateState.loading)


def evaluate_access(
    identity: IdentityResult | None,
    snapshot: BillingSnapshot | None,
    *,
    subscribe_redirect: str = "/subscribe",
    onboarding_redirect: str = "/onboarding",
) -> GateDecision:
    """Derive the gate decision from its two inputs.

    ``None`` means the input has not loaded yet or could not be loaded.
    """
    if identity is None:
        return LOADING
    if not identity.found:
        return GateDecision(GateState.denied, onboarding_redirect, "tenant_missing")
    if snapshot is None:
        return LOADING
    if snapshot.allows_access:
        return GateDecision(GateState.granted)
    return GateDecision(GateState.denied, subscribe_redirect, "subscription_inactive")


class AccessGate:
    """Reactive holder re-evaluating the decision on every input change."""

    def __init__(
        self,
        *,
        subscribe_redirect: str = "/subscribe",
        onboarding_redirect: str = "/onboarding",
        on_change: Callable[[GateDecision], None] | None = None,
    ) -> None:
        self._subscribe_redirect = subscribe_redirect
        self._onboarding_redirect = onboarding_redirect
        self._on_change = on_change
        self._identity: IdentityResult | None = None
        self._snapshot: BillingSnapshot | None = None
        self._decision = LOADING
        self._unsubscribe: Callable[[], None] | None = None
        self._lock = RLock()

    @property
    def decision(self) -> GateDecision:
        return self._decision

    def observe_identity(self, identity: IdentityResult | None) -> GateDecision:
        with self._lock:
            previous_team = self._team_id()
            self._identity = identity
            if self._team_id() != previous_team:
                self._snapshot = None
            return self._reevaluate()

    def observe_billing(self, snapshot: BillingSnapshot | None) -> GateDecision:
        with self._lock:
            self._snapshot = snapshot
            return self._reevaluate()

    def bind(self, synchronizer: "BillingStateSynchronizer", team_id: str) -> None:
        """Follow snapshot updates the synchronizer stores for ``team_id``.

        Pushes are dropped once the observed identity belongs to another team.
        """
        self.close()
        self._unsubscribe = synchronizer.subscribe(team_id, self._on_pushed_snapshot)

    def close(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    def _on_pushed_snapshot(self, team_id: str, snapshot: BillingSnapshot) -> None:
        with self._lock:
            if team_id != self._team_id():
                return
            self._snapshot = snapshot
            self._reevaluate()

    def _team_id(self) -> str | None:
        if self._identity is None or self._identity.user is None:
            return None
        return self._identity.user.team_id

    def _reevaluate(self) -> GateDecision:
        decision = evaluate_access(
            self._identity,
            self._snapshot,
            subscribe_redirect=self._subscribe_redirect,
            onboarding_redirect=self._onboarding_redirect,
        )
        changed = decision != self._decision
        self._decision = decision
        if changed and self._on_change is not None:
            self._on_change(decision)
        return decision
