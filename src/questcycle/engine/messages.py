"""Player-facing message templates."""

import json
import logging
from pathlib import Path
from typing import Any, Mapping, Optional

logger = logging.getLogger("questcycle.messages")

DEFAULT_MESSAGES: dict[str, str] = {
    "ok": "Done.",
    "error.generic": "Something went wrong, please try again later.",
    "error.persistence": "The task service is busy, please try again shortly.",
    "error.unknown_category": "Unknown task category.",
    "error.category_disabled": "Tasks in {category} are currently disabled.",
    "error.not_found": "That task no longer exists.",
    "error.template_not_found": "No task called {task} exists.",
    "error.conflict": "That task changed in the meantime, please try again.",
    "reroll.success": "Rerolled {category}: {generated} new task(s).",
    "reroll.disabled": "Rerolling is disabled for {category}.",
    "reroll.quota_exceeded": "You have used all {limit} rerolls for {category} this cycle.",
    "reroll.insufficient_funds": "You need {cost} to reroll {category}.",
    "reroll.nothing_to_reroll": "All your {category} tasks are already completed.",
    "reroll.no_templates": "There are no tasks available for {category}.",
    "claim.success": "Reward claimed for {task}.",
    "claim.not_completed": "{task} is not completed yet.",
    "claim.already_claimed": "The reward for {task} was already claimed.",
    "assign.success": "Assigned {task} in {category}.",
    "assign.already_active": "{task} is already active.",
    "assign.category_full": "{category} already has the maximum number of tasks.",
    "remove.success": "Removed {task} from {category}.",
    "notify.completed": "Task completed: {task}. Claim your reward!",
    "notify.auto_claimed": "Task completed: {task}. Reward granted.",
    "notify.milestone": "{task} is {percent}% done.",
    "notify.refreshed": "New tasks are available in: {categories}.",
    "notify.category_complete": "All {category} tasks completed!",
    "notify.reward_claimed": "Reward claimed for {task}.",
    "notify.task_assigned": "New task: {task}.",
}


class _SafeDict(dict):
    def __missing__(self, key: str) -> str:
        return "{" + key + "}"


class MessageCatalog:
    """English defaults, optionally overridden from a flat JSON object."""

    def __init__(self, overrides: Optional[Mapping[str, str]] = None):
        self._messages = dict(DEFAULT_MESSAGES)
        if overrides:
            self._messages.update(overrides)

    @classmethod
    def from_file(cls, path: Optional[Path]) -> "MessageCatalog":
        if path is None:
            return cls()
        data = json.loads(Path(path).read_text(encoding="utf-8"))
        if not isinstance(data, dict):
            raise ValueError(f"Message file {path} must contain a JSON object")
        logger.info(f"Loaded {len(data)} message overrides from {path}")
        return cls({str(k): str(v) for k, v in data.items()})

    def format(self, key: str, **values: Any) -> str:
        template = self._messages.get(key)
        if template is None:
            logger.warning(f"Missing message key: {key}")
            template = self._messages["error.generic"]
        return template.format_map(_SafeDict(values))
