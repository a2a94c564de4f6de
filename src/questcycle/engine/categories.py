"""Lookup of configured category policies."""

from typing import Iterable, Optional

from questcycle.engine.errors import ValidationError
from questcycle.models import CategoryPolicy


class CategoryRegistry:
    """Immutable set of categories, keyed by id in configuration order."""

    def __init__(self, categories: Iterable[CategoryPolicy]):
        self._categories: dict[str, CategoryPolicy] = {}
        for category in categories:
            if category.id in self._categories:
                raise ValidationError(f"Duplicate category id: {category.id}", "DUPLICATE_CATEGORY")
            self._categories[category.id] = category

    def get(self, category_id: str) -> Optional[CategoryPolicy]:
        return self._categories.get(category_id)

    def require(self, category_id: str) -> CategoryPolicy:
        category = self._categories.get(category_id)
        if category is None:
            raise ValidationError(f"Unknown category: {category_id}", "UNKNOWN_CATEGORY")
        return category

    def require_enabled(self, category_id: str) -> CategoryPolicy:
        category = self.require(category_id)
        if not category.enabled:
            raise ValidationError(f"Category disabled: {category_id}", "CATEGORY_DISABLED")
        return category

    def enabled(self) -> list[CategoryPolicy]:
        return [category for category in self._categories.values() if category.enabled]

    def all(self) -> list[CategoryPolicy]:
        return list(self._categories.values())

    def display_name(self, category_id: str) -> str:
        category = self._categories.get(category_id)
        return category.display_name if category else category_id

    def __contains__(self, category_id: object) -> bool:
        return category_id in self._categories

    def __len__(self) -> int:
        return len(self._categories)
