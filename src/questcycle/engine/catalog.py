"""Versioned, read-mostly cache of task templates."""

import logging
from types import MappingProxyType
from typing import Any, Iterable, Mapping, Optional, Union

import pydantic

from questcycle.db.repositories import TemplateRepository
from questcycle.engine.categories import CategoryRegistry
from questcycle.engine.clock import Clock
from questcycle.engine.errors import NotFoundError, ValidationError
from questcycle.engine.queue import PersistenceQueue
from questcycle.models import CatalogSyncReport, TaskTemplate
from questcycle.models.template import parse_template

logger = logging.getLogger("questcycle.catalog")

TemplateInput = Union[TaskTemplate, dict[str, Any]]


class TaskCatalog:
    """``key -> TaskTemplate``, reconciled from the store and never authoritative.

    The map is immutable and replaced as a whole, so reads never wait on a
    load or sync in progress.
    """

    def __init__(
        self,
        queue: PersistenceQueue,
        clock: Clock,
        categories: Optional[CategoryRegistry] = None,
    ):
        self._queue = queue
        self._clock = clock
        self._categories = categories
        self._templates: Mapping[str, TaskTemplate] = MappingProxyType({})

    def get(self, key: str) -> Optional[TaskTemplate]:
        return self._templates.get(key)

    def require(self, key: str) -> TaskTemplate:
        template = self._templates.get(key)
        if template is None:
            raise NotFoundError("Template", key)
        return template

    def all(self) -> list[TaskTemplate]:
        return list(self._templates.values())

    def by_category(self, category: str) -> list[TaskTemplate]:
        return [t for t in self._templates.values() if t.category == category]

    def __contains__(self, key: object) -> bool:
        return key in self._templates

    def __len__(self) -> int:
        return len(self._templates)

    def _swap(self, templates: Iterable[TaskTemplate]) -> None:
        self._templates = MappingProxyType({t.key: t for t in templates if t.enabled})

    async def load(self) -> int:
        """Replace the map with every enabled template in the store."""
        templates = await self._queue.run(
            "catalog.load", lambda session: TemplateRepository(session).list_enabled()
        )
        self._swap(templates)
        logger.info(f"Loaded {len(self._templates)} task templates")
        return len(self._templates)

    async def reload(self) -> int:
        return await self.load()

    async def sync(self) -> CatalogSyncReport:
        """Delta sync: compare versions, fetch only what changed."""
        remote = await self._queue.run(
            "catalog.versions", lambda session: TemplateRepository(session).list_versions()
        )
        local = self._templates
        report = CatalogSyncReport(
            added=sorted(key for key in remote if key not in local),
            updated=sorted(
                key for key, version in remote.items()
                if key in local and local[key].version != version
            ),
            removed=sorted(key for key in local if key not in remote),
        )
        if not report.changed:
            return report

        changed = report.added + report.updated
        fetched = await self._queue.run(
            "catalog.fetch_changed",
            lambda session: TemplateRepository(session).get_many(changed),
        )
        merged = {key: t for key, t in local.items() if key in remote and key not in changed}
        for template in fetched:
            merged[template.key] = template
        self._swap(merged.values())
        logger.info(
            f"Catalog sync: {len(report.added)} added, {len(report.updated)} updated, "
            f"{len(report.removed)} removed"
        )
        return report

    async def import_templates(self, records: Iterable[TemplateInput]) -> list[TaskTemplate]:
        """Validate and store templates (bumping versions), then reload."""
        templates = [self._validate(record) for record in records]
        if not templates:
            return []
        keys = [t.key for t in templates]
        if len(set(keys)) != len(keys):
            raise ValidationError("Duplicate template keys in import", "DUPLICATE_TEMPLATE")

        async def _store(session) -> list[TaskTemplate]:
            repo = TemplateRepository(session)
            now = self._clock.now()
            return [t.with_version(await repo.upsert(t, now)) for t in templates]

        stored = await self._queue.run("catalog.import", _store)
        logger.info(f"Imported {len(stored)} task templates")
        await self.reload()
        return stored

    async def delete_template(self, key: str) -> None:
        """Soft-delete: the template is disabled in the store, then reloaded away."""
        disabled = await self._queue.run(
            "catalog.delete",
            lambda session: TemplateRepository(session).disable(key, self._clock.now()),
        )
        if not disabled:
            raise NotFoundError("Template", key)
        logger.info(f"Disabled task template {key}")
        await self.reload()

    async def list_templates(self, include_disabled: bool = False) -> list[TaskTemplate]:
        """Admin listing straight from the store."""
        if include_disabled:
            return await self._queue.run(
                "catalog.list_all", lambda session: TemplateRepository(session).list_all()
            )
        return sorted(self.all(), key=lambda t: t.key)

    def _validate(self, record: TemplateInput) -> TaskTemplate:
        if isinstance(record, TaskTemplate):
            template = record
        else:
            try:
                template = parse_template(record)
            except (pydantic.ValidationError, KeyError, ValueError) as exc:
                raise ValidationError(f"Invalid template: {exc}", "INVALID_TEMPLATE") from exc
        if self._categories is not None and template.category not in self._categories:
            raise ValidationError(
                f"Template {template.key} references unknown category {template.category}",
                "UNKNOWN_CATEGORY",
            )
        return template
