"""In-memory collaborators for engine tests."""

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any

from questcycle.engine.clock import Clock
from questcycle.models import NotificationKind, Reward


class FrozenClock(Clock):
    """Clock whose "now" only moves when a test moves it."""

    def __init__(self, current: datetime, zone=None):
        super().__init__(zone)
        self.current = current

    def now(self) -> datetime:
        return self.current

    def advance(self, **delta: float) -> datetime:
        self.current = self.current + timedelta(**delta)
        return self.current

    def set(self, *args: int) -> datetime:
        self.current = datetime(*args, tzinfo=timezone.utc)
        return self.current


@dataclass
class SentNotification:
    player_id: str
    kind: NotificationKind
    payload: dict[str, Any]


@dataclass
class RecordingNotificationSink:
    """Captures notifications; ``reachable`` controls the reply."""

    sent: list[SentNotification] = field(default_factory=list)
    reachable: bool = True

    async def notify(self, player_id: str, kind: NotificationKind, payload: dict[str, Any]) -> bool:
        self.sent.append(SentNotification(player_id, kind, payload))
        return self.reachable

    def of_kind(self, kind: NotificationKind) -> list[SentNotification]:
        return [n for n in self.sent if n.kind == kind]


@dataclass
class RecordingRewardGranter:
    granted: list[tuple[str, Reward]] = field(default_factory=list)

    async def grant(self, player_id: str, reward: Reward) -> None:
        self.granted.append((player_id, reward))


class FakeEconomy:
    """Balances in a dict; withdrawals fail once a balance would go negative."""

    def __init__(self, balances: dict[str, float] | None = None, enabled: bool = True):
        self.balances = dict(balances or {})
        self.withdrawals: list[tuple[str, float]] = []
        self._enabled = enabled

    @property
    def enabled(self) -> bool:
        return self._enabled

    async def get_balance(self, player_id: str) -> float:
        return self.balances.get(player_id, 0.0)

    async def withdraw(self, player_id: str, amount: float) -> bool:
        balance = self.balances.get(player_id, 0.0)
        if balance < amount:
            return False
        self.balances[player_id] = balance - amount
        self.withdrawals.append((player_id, amount))
        return True
