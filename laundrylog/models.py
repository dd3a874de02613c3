from datetime import datetime, timezone

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_serializer, field_validator


class MachineRecord(BaseModel):
    # Lines written before the rename use "dorm" / "machine".
    model_config = ConfigDict(frozen=True)

    location: str = Field(min_length=1, validation_alias=AliasChoices("location", "dorm"))
    machine_id: str = Field(
        min_length=1,
        validation_alias=AliasChoices("machineId", "machine_id", "machine"),
        serialization_alias="machineId",
    )
    type: str = Field(min_length=1)
    status: str = Field(min_length=1)
    time_remaining: str | None = Field(
        default=None,
        validation_alias=AliasChoices("timeRemaining", "time_remaining"),
        serialization_alias="timeRemaining",
    )


class SampleEntry(BaseModel):
    timestamp: datetime
    machines: list[MachineRecord]

    @field_validator("timestamp")
    @classmethod
    def normalize_timestamp(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    @field_serializer("timestamp")
    def serialize_timestamp(self, value: datetime) -> str:
        return format_ts(value)

    def to_line(self) -> str:
        return self.model_dump_json(by_alias=True) + "\n"


class Snapshot(BaseModel):
    machines: list[MachineRecord] = []
    last_updated: datetime | None = Field(default=None, serialization_alias="lastUpdated")

    @field_serializer("last_updated")
    def serialize_last_updated(self, value: datetime | None) -> str | None:
        return format_ts(value) if value is not None else None

    def to_response(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


class ExternalHealth(BaseModel):
    ok: bool
    status: int | None = None
    bytes: int | None = None
    error: str | None = None


def format_ts(value: datetime) -> str:
    """UTC ISO-8601 with millisecond precision and a ``Z`` suffix."""
    return value.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")
