"""
Template catalog: import, versioning, delta sync and soft delete.
"""

import pytest

from questcycle.engine.errors import NotFoundError, ValidationError
from questcycle.models import CategoryPolicy

from .conftest import template_records


@pytest.fixture
async def catalog_engine(make_engine, daily_category):
    return await make_engine([daily_category, CategoryPolicy(id="weekly", expire_policy="weekly")])


@pytest.mark.asyncio
async def test_import_populates_catalog(catalog_engine):
    stored = await catalog_engine.import_templates(template_records("daily", 3))

    assert [t.version for t in stored] == [1, 1, 1]
    assert len(catalog_engine.catalog) == 3
    assert catalog_engine.catalog.require("daily_1").target_amount == 4


@pytest.mark.asyncio
async def test_reimport_bumps_version(catalog_engine):
    await catalog_engine.import_templates(template_records("daily", 1))
    stored = await catalog_engine.import_templates(template_records("daily", 1, target_amount=9))

    assert stored[0].version == 2
    template = catalog_engine.catalog.require("daily_0")
    assert template.version == 2
    assert template.target_amount == 9


@pytest.mark.asyncio
async def test_import_rejects_unknown_category(catalog_engine):
    with pytest.raises(ValidationError) as exc_info:
        await catalog_engine.import_templates(template_records("seasonal", 1))
    assert exc_info.value.code == "UNKNOWN_CATEGORY"
    assert len(catalog_engine.catalog) == 0


@pytest.mark.asyncio
async def test_import_rejects_invalid_and_duplicate_records(catalog_engine):
    with pytest.raises(ValidationError) as exc_info:
        await catalog_engine.import_templates([{"key": "bad", "type": "teleport"}])
    assert exc_info.value.code == "INVALID_TEMPLATE"

    duplicated = template_records("daily", 1) * 2
    with pytest.raises(ValidationError) as exc_info:
        await catalog_engine.import_templates(duplicated)
    assert exc_info.value.code == "DUPLICATE_TEMPLATE"


@pytest.mark.asyncio
async def test_import_accepts_legacy_records(catalog_engine):
    await catalog_engine.import_templates(
        [{"taskKey": "legacy_fish", "type": "FISH", "targetAmount": 3, "category": "weekly"}]
    )

    template = catalog_engine.catalog.require("legacy_fish")
    assert template.category == "weekly"
    assert template.target_amount == 3


@pytest.mark.asyncio
async def test_delete_is_soft_and_reloads(catalog_engine):
    await catalog_engine.import_templates(template_records("daily", 2))

    await catalog_engine.delete_template("daily_0")

    assert "daily_0" not in catalog_engine.catalog
    listed = await catalog_engine.list_templates(include_disabled=True)
    assert {t.key: t.enabled for t in listed} == {"daily_0": False, "daily_1": True}

    with pytest.raises(NotFoundError):
        await catalog_engine.delete_template("daily_0")


@pytest.mark.asyncio
async def test_reimport_reenables_deleted_template(catalog_engine):
    await catalog_engine.import_templates(template_records("daily", 1))
    await catalog_engine.delete_template("daily_0")
    await catalog_engine.import_templates(template_records("daily", 1))

    assert catalog_engine.catalog.require("daily_0").version == 2


@pytest.mark.asyncio
async def test_delta_sync_between_processes(make_engine, daily_category):
    """A second process sharing the store only fetches what changed."""
    writer = await make_engine([daily_category])
    reader = await make_engine([daily_category])

    await writer.import_templates(template_records("daily", 3))
    report = await reader.sync_catalog()
    assert report.added == ["daily_0", "daily_1", "daily_2"]
    assert len(reader.catalog) == 3

    unchanged = reader.catalog.require("daily_1")
    await writer.import_templates(template_records("daily", 1, weight=50))
    await writer.delete_template("daily_2")

    report = await reader.sync_catalog()
    assert report.updated == ["daily_0"]
    assert report.removed == ["daily_2"]
    assert reader.catalog.require("daily_0").weight == 50
    assert reader.catalog.require("daily_1") is unchanged
    assert "daily_2" not in reader.catalog

    report = await reader.sync_catalog()
    assert not report.changed
