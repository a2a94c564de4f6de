"""Formats and dispatches player notifications."""

import logging
from typing import Any

from questcycle.engine.cache import PlayerTaskCache
from questcycle.engine.messages import MessageCatalog
from questcycle.models import NotificationKind
from questcycle.observability.metrics import MetricsRegistry
from questcycle.ports import NotificationSink

logger = logging.getLogger("questcycle.notifier")


class Notifier:
    """Adds the localized text to each payload and forgets unreachable players."""

    def __init__(
        self,
        sink: NotificationSink,
        messages: MessageCatalog,
        cache: PlayerTaskCache,
        metrics: MetricsRegistry,
    ):
        self._sink = sink
        self._messages = messages
        self._cache = cache
        self._metrics = metrics

    async def send(self, player_id: str, kind: NotificationKind, **values: Any) -> bool:
        payload = dict(values)
        payload["message"] = self._messages.format(f"notify.{kind.value}", **values)
        try:
            reachable = await self._sink.notify(player_id, kind, payload)
        except Exception as exc:
            logger.error(f"Notification {kind.value} to {player_id} failed: {exc}", exc_info=True)
            return True
        self._metrics.inc_counter(f"notifications.{kind.value}")
        if not reachable:
            logger.info(f"Player {player_id} unreachable, dropping cached tasks")
            self._cache.drop_player(player_id)
        return reachable
