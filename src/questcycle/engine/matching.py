"""Target selector predicates.

A template's targets are OR-matched against the selector carried by a
progress event; an empty target list accepts every selector. How a single
target compares depends on the task type.
"""

import re
from typing import Any, Mapping, Optional

from questcycle.models import TaskTemplate, TaskType

DEFAULT_NAMESPACE = "minecraft"

_SYNONYMS = {
    "cocoa": "cocoa_bean",
    "cocoa_beans": "cocoa_bean",
}

# Ids that end in "s" but are not plurals.
_IRREGULAR_PLURALS = frozenset(
    {
        "cactus",
        "chorus",
        "bamboo",
        "sugar_cane",
        "chorus_plant",
        "chorus_flower",
        "kelp",
        "seagrass",
        "tall_seagrass",
        "vines",
        "cave_vines",
        "weeping_vines",
        "twisting_vines",
    }
)

_CONDITION_RE = re.compile(r"^\s*([^<>=+?]+?)\s*(>=|<=|>|<|=|\+)\s*(.*?)\s*$")


def normalize_block_id(value: str) -> str:
    """``Minecraft:Carrots`` -> ``minecraft:carrot``; namespace defaults to minecraft."""
    normalized = value.strip().lower()
    namespace, _, ident = normalized.rpartition(":")
    namespace = namespace or DEFAULT_NAMESPACE
    ident = _SYNONYMS.get(ident, ident)
    if ident.endswith("s") and ident not in _IRREGULAR_PLURALS:
        ident = ident[:-1]
    return f"{namespace}:{ident}"


def target_matches(task_type: TaskType, target: str, selector: str) -> bool:
    """Compare one configured target with an event selector."""
    if target.strip().lower() == selector.strip().lower():
        return True
    if task_type is TaskType.CHAT:
        return target.strip().lower() in selector.lower()
    if task_type is TaskType.COMMAND:
        command = selector.strip().lower().lstrip("/")
        return command.startswith(target.strip().lower().lstrip("/"))
    if task_type in (TaskType.BREAK, TaskType.HARVEST):
        return normalize_block_id(target) == normalize_block_id(selector)
    return False


def _lookup(attributes: Mapping[str, Any], path: str) -> tuple[bool, Any]:
    current: Any = attributes
    for part in path.split("."):
        if not isinstance(current, Mapping) or part not in current:
            return False, None
        current = current[part]
    return True, current


def _as_number(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def condition_matches(condition: str, attributes: Mapping[str, Any]) -> bool:
    """Evaluate one refinement such as ``enchanted=true``, ``level>=3`` or ``custom_name+exists``."""
    if condition.endswith("+exists"):
        found, _ = _lookup(attributes, condition[: -len("+exists")].strip())
        return found
    if condition.endswith("?"):
        found, _ = _lookup(attributes, condition[:-1].strip())
        return found

    match = _CONDITION_RE.match(condition)
    if not match:
        found, _ = _lookup(attributes, condition.strip())
        return found
    path, operator, expected = match.groups()
    found, actual = _lookup(attributes, path)
    if not found or actual is None:
        return False

    if operator in ("=", "+"):
        actual_num, expected_num = _as_number(actual), _as_number(expected)
        if actual_num is not None and expected_num is not None:
            return actual_num == expected_num
        return str(actual).lower() == expected.lower()

    actual_num, expected_num = _as_number(actual), _as_number(expected)
    if actual_num is None or expected_num is None:
        return False
    if operator == ">=":
        return actual_num >= expected_num
    if operator == "<=":
        return actual_num <= expected_num
    if operator == ">":
        return actual_num > expected_num
    return actual_num < expected_num


def template_accepts(
    template: TaskTemplate,
    task_type: TaskType,
    selector: str,
    attributes: Optional[Mapping[str, Any]] = None,
) -> bool:
    """Type must match, any target must accept the selector, all refinements must hold.

    Refinements only apply when the event carries attributes.
    """
    if template.type is not task_type:
        return False
    if template.targets and not any(
        target_matches(task_type, target, selector) for target in template.targets
    ):
        return False
    if attributes is not None and template.match_conditions:
        return all(condition_matches(c, attributes) for c in template.match_conditions)
    return True
