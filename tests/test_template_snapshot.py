"""
Template snapshots: current shape, legacy upgrade, and rejection of unknown schemas.
"""

import pytest

from questcycle.engine.errors import ValidationError
from questcycle.models import TaskTemplate, TaskType
from questcycle.models.template import SNAPSHOT_SCHEMA_VERSION, parse_template


def test_snapshot_carries_schema_version():
    template = TaskTemplate(key="fish_cod", type="fish", targets=["minecraft:cod"], target_amount=5)
    snapshot = template.to_snapshot()

    assert snapshot["schema_version"] == SNAPSHOT_SCHEMA_VERSION
    assert TaskTemplate.from_snapshot(snapshot) == template


def test_legacy_snapshot_is_upgraded():
    legacy = {
        "taskKey": "harvest_wheat",
        "name": "Harvest wheat",
        "type": "HARVEST",
        "targetItem": "minecraft:wheat",
        "targetAmount": 32,
        "weight": 5,
        "reward": {"money": 25.0, "items": [{"itemKey": "minecraft:bread", "amount": 3}]},
        "category": "daily",
        "nbtMatchConditions": ["age=7"],
        "version": 4,
    }

    template = TaskTemplate.from_snapshot(legacy)

    assert template.key == "harvest_wheat"
    assert template.type is TaskType.HARVEST
    assert template.targets == ["minecraft:wheat"]
    assert template.target_amount == 32
    assert template.match_conditions == ["age=7"]
    assert template.reward.items[0].item_key == "minecraft:bread"
    assert template.version == 4


def test_legacy_target_list_wins_over_single_target():
    template = TaskTemplate.from_snapshot(
        {
            "taskKey": "mine",
            "type": "break",
            "targetItem": "minecraft:stone",
            "targetItems": ["minecraft:granite", "minecraft:diorite"],
        }
    )
    assert template.targets == ["minecraft:granite", "minecraft:diorite"]


def test_newer_schema_is_rejected():
    with pytest.raises(ValidationError):
        TaskTemplate.from_snapshot({"schema_version": SNAPSHOT_SCHEMA_VERSION + 1, "key": "x"})


def test_parse_template_accepts_both_shapes_and_overrides_version():
    current = parse_template({"key": "kill_zombie", "type": "kill"}, version=3)
    legacy = parse_template({"taskKey": "kill_zombie", "type": "kill"})

    assert current.version == 3
    assert legacy.key == current.key
    assert legacy.version == 1


def test_description_string_is_split_into_lines():
    template = TaskTemplate(key="chat", type="chat", description="Say hi\nto everyone")
    assert template.description == ["Say hi", "to everyone"]
    assert template.display_name == "chat"
