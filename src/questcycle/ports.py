"""
Ports (interfaces) to the collaborators around the engine.

The engine depends on these Protocols, not on concrete implementations, so the
game server glue (reward payout, economy, player messaging) stays swappable
and tests can use in-memory fakes. Defaults for running standalone are below.
"""

import logging
from typing import Any, Optional, Protocol

import httpx

from questcycle.models import NotificationKind, Reward

logger = logging.getLogger(__name__)


class RewardGranter(Protocol):
    """Pays out a reward; the engine treats its contents as opaque."""

    async def grant(self, player_id: str, reward: Reward) -> None: ...


class Economy(Protocol):
    """Balance checks and withdrawals for paid rerolls."""

    @property
    def enabled(self) -> bool: ...

    async def get_balance(self, player_id: str) -> float: ...

    async def withdraw(self, player_id: str, amount: float) -> bool: ...


class NotificationSink(Protocol):
    """Pushes an event to a player. Returns False when the player is unreachable."""

    async def notify(
        self, player_id: str, kind: NotificationKind, payload: dict[str, Any]
    ) -> bool: ...


class LoggingNotificationSink:
    """Writes notifications to the log; every player counts as reachable."""

    async def notify(self, player_id: str, kind: NotificationKind, payload: dict[str, Any]) -> bool:
        logger.info(f"Notify {player_id} [{kind.value}]: {payload}")
        return True


class WebhookNotificationSink:
    """POSTs notifications to the game server.

    A 404 or 410 reply means the player is no longer online there. Transport
    failures are logged and the player is assumed reachable.
    """

    def __init__(
        self,
        url: str,
        timeout: float = 5.0,
        api_key: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._url = url
        headers = {"Content-Type": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        self._client = httpx.AsyncClient(timeout=timeout, headers=headers, transport=transport)

    async def notify(self, player_id: str, kind: NotificationKind, payload: dict[str, Any]) -> bool:
        body = {"player_id": player_id, "kind": kind.value, "payload": payload}
        try:
            response = await self._client.post(self._url, json=body)
        except httpx.HTTPError as exc:
            logger.warning(f"Notification webhook failed for {player_id}: {exc}")
            return True
        if response.status_code in (404, 410):
            return False
        if response.is_error:
            logger.warning(
                f"Notification webhook returned {response.status_code} for {player_id}"
            )
        return True

    async def aclose(self) -> None:
        await self._client.aclose()


class LoggingRewardGranter:
    async def grant(self, player_id: str, reward: Reward) -> None:
        logger.info(f"Grant reward to {player_id}: {reward.model_dump()}")


class DisabledEconomy:
    """No economy: reroll costs are not enforced."""

    @property
    def enabled(self) -> bool:
        return False

    async def get_balance(self, player_id: str) -> float:
        return 0.0

    async def withdraw(self, player_id: str, amount: float) -> bool:
        return False
