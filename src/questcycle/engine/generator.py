"""Weighted random task selection."""

import logging
import random
from typing import Iterable, Optional, Sequence

from questcycle.engine.catalog import TaskCatalog
from questcycle.models import TaskTemplate

logger = logging.getLogger("questcycle.generator")


def select_weighted(
    candidates: Sequence[TaskTemplate],
    count: int,
    rng: Optional[random.Random] = None,
) -> list[TaskTemplate]:
    """Weighted sampling without replacement.

    Draw uniformly in ``[0, total)``, take the first candidate whose running
    weight exceeds the draw, remove it and repeat. Stops early once the
    remaining weight is zero, so zero-weight templates are never chosen.
    """
    rng = rng or random.Random()
    pool = list(candidates)
    selected: list[TaskTemplate] = []

    while len(selected) < count and pool:
        total = sum(t.weight for t in pool)
        if total <= 0:
            break
        draw = rng.random() * total
        cumulative = 0
        for index, template in enumerate(pool):
            cumulative += template.weight
            if cumulative > draw:
                selected.append(pool.pop(index))
                break
    return selected


class TaskGenerator:
    """Picks new templates for a player's category from the catalog."""

    def __init__(self, catalog: TaskCatalog, rng: Optional[random.Random] = None):
        self._catalog = catalog
        self._rng = rng or random.Random()

    def candidates(self, category: str, exclude_keys: Iterable[str] = ()) -> list[TaskTemplate]:
        excluded = set(exclude_keys)
        return [t for t in self._catalog.by_category(category) if t.key not in excluded]

    def pick(
        self, category: str, count: int, exclude_keys: Iterable[str] = ()
    ) -> list[TaskTemplate]:
        if count <= 0:
            return []
        pool = self.candidates(category, exclude_keys)
        if len(pool) < count:
            logger.warning(
                f"Category '{category}' has {len(pool)} eligible templates, "
                f"fewer than the {count} requested"
            )
        return select_weighted(pool, count, self._rng)
