"""Task template model and its versioned snapshot format."""

from typing import Any, Callable, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from questcycle.models.enums import TaskType

# Bump when the snapshot shape changes and register an upgrade below.
SNAPSHOT_SCHEMA_VERSION = 2


class RewardItem(BaseModel):
    """One item stack in a reward."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    item_key: str = Field(..., alias="itemKey")
    amount: int = Field(default=1, ge=1)


class Reward(BaseModel):
    """Reward spec handed to the reward collaborator as-is."""

    model_config = ConfigDict(frozen=True)

    money: float = Field(default=0.0, ge=0)
    items: list[RewardItem] = Field(default_factory=list)
    commands: list[str] = Field(default_factory=list)

    def is_empty(self) -> bool:
        return not self.money and not self.items and not self.commands


class TaskTemplate(BaseModel):
    """Catalog entry a player's active task is generated from."""

    model_config = ConfigDict(frozen=True)

    key: str = Field(..., min_length=1, description="Unique template key")
    name: str = ""
    type: TaskType
    targets: list[str] = Field(
        default_factory=list,
        description="Target selectors, OR-matched; empty matches anything of the type",
    )
    target_amount: int = Field(default=1, ge=1)
    weight: int = Field(default=10, ge=0)
    reward: Reward = Field(default_factory=Reward)
    category: str = "daily"
    description: list[str] = Field(default_factory=list)
    match_conditions: list[str] = Field(default_factory=list)
    version: int = Field(default=1, ge=1)
    enabled: bool = True

    @field_validator("type", mode="before")
    @classmethod
    def parse_type(cls, v: Any) -> TaskType:
        return TaskType.parse(v)

    @field_validator("description", mode="before")
    @classmethod
    def split_description(cls, v: Any) -> Any:
        if isinstance(v, str):
            return v.splitlines()
        return v

    @property
    def display_name(self) -> str:
        return self.name or self.key

    def with_version(self, version: int) -> "TaskTemplate":
        return self.model_copy(update={"version": version})

    def to_snapshot(self) -> dict[str, Any]:
        """Serialize into the current versioned snapshot shape."""
        data = self.model_dump(mode="json")
        data["schema_version"] = SNAPSHOT_SCHEMA_VERSION
        return data

    @classmethod
    def from_snapshot(cls, data: dict[str, Any]) -> "TaskTemplate":
        """Load a snapshot of any known schema version, upgrading as needed."""
        from questcycle.engine.errors import ValidationError

        payload = dict(data)
        schema = payload.pop("schema_version", 1)
        if schema > SNAPSHOT_SCHEMA_VERSION:
            raise ValidationError(
                f"Template snapshot schema {schema} is newer than supported "
                f"{SNAPSHOT_SCHEMA_VERSION}"
            )
        while schema < SNAPSHOT_SCHEMA_VERSION:
            payload = _UPGRADES[schema](payload)
            schema += 1
        return cls.model_validate(payload)


def _upgrade_v1(data: dict[str, Any]) -> dict[str, Any]:
    """camelCase records with a single ``targetItem`` and NBT conditions."""
    targets: list[str] = []
    if data.get("targetItems"):
        targets = list(data["targetItems"])
    elif data.get("targetItem"):
        targets = [data["targetItem"]]

    reward = data.get("reward") or {}
    upgraded: dict[str, Any] = {
        "key": data["taskKey"],
        "name": data.get("name") or data["taskKey"],
        "type": data["type"],
        "targets": targets,
        "target_amount": data.get("targetAmount", 1),
        "weight": data.get("weight", 10),
        "reward": {
            "money": reward.get("money", 0.0),
            "items": reward.get("items") or [],
            "commands": reward.get("commands") or [],
        },
        "category": data.get("category") or "daily",
        "description": data.get("description") or [],
        "match_conditions": data.get("nbtMatchConditions") or [],
        "version": data.get("version", 1),
    }
    if "enabled" in data:
        upgraded["enabled"] = data["enabled"]
    return upgraded


_UPGRADES: dict[int, Callable[[dict[str, Any]], dict[str, Any]]] = {
    1: _upgrade_v1,
}


def parse_template(data: dict[str, Any], version: Optional[int] = None) -> TaskTemplate:
    """Parse an admin import record, accepting either snapshot schema."""
    if "taskKey" in data and "schema_version" not in data:
        template = TaskTemplate.from_snapshot({**data, "schema_version": 1})
    elif "schema_version" in data:
        template = TaskTemplate.from_snapshot(data)
    else:
        template = TaskTemplate.model_validate(data)
    if version is not None:
        template = template.with_version(version)
    return template
