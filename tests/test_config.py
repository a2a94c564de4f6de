"""
Settings validation and category loading.
"""

import json

import pytest
from pydantic import ValidationError

from questcycle.api.deps import validate_auth_config
from questcycle.config import Environment, Settings
from questcycle.models import RelativePolicy, WeeklyPolicy

SQLITE_URL = "sqlite+aiosqlite:///./test.db"


def test_rejects_unsupported_database_url():
    with pytest.raises(ValidationError):
        Settings(database_url="mysql://localhost/questcycle")


def test_rejects_out_of_range_port():
    with pytest.raises(ValidationError):
        Settings(database_url=SQLITE_URL, port=70000)


def test_default_category_when_none_configured():
    settings = Settings(database_url=SQLITE_URL, categories=[])

    categories = settings.resolved_categories()

    assert [c.id for c in categories] == ["daily"]
    assert categories[0].display_name == "Daily"


def test_categories_from_json_string():
    raw = json.dumps(
        [
            {"id": "weekly", "expire_policy": "weekly", "max_concurrent": 5},
            {"id": "event", "expire_policy": "3d", "auto_claim": True},
        ]
    )

    settings = Settings(database_url=SQLITE_URL, categories=raw)

    weekly, event = settings.resolved_categories()
    assert isinstance(weekly.expire_policy, WeeklyPolicy)
    assert weekly.max_concurrent == 5
    assert isinstance(event.expire_policy, RelativePolicy)
    assert event.auto_claim is True


def test_categories_from_file(tmp_path):
    path = tmp_path / "categories.json"
    path.write_text(json.dumps({"categories": [{"id": "monthly", "expire_policy": "monthly"}]}))

    settings = Settings(database_url=SQLITE_URL, categories_file=path)

    assert [c.id for c in settings.resolved_categories()] == ["monthly"]


def test_duplicate_category_ids_are_rejected():
    with pytest.raises(ValidationError):
        Settings(database_url=SQLITE_URL, categories=[{"id": "daily"}, {"id": "daily"}])


def test_insecure_dev_outside_development_refuses_to_start():
    settings = Settings(
        database_url=SQLITE_URL, env=Environment.PRODUCTION, allow_insecure_dev=True
    )
    with pytest.raises(RuntimeError):
        validate_auth_config(settings)


def test_secure_production_config_passes():
    settings = Settings(
        database_url=SQLITE_URL,
        env=Environment.PRODUCTION,
        allow_insecure_dev=False,
        api_key="secret",
    )
    validate_auth_config(settings)
