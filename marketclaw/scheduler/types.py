"""Scheduler types (Pydantic models with camelCase JSON aliases)."""

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

JobType = Literal["post", "reminder", "task", "heartbeat"]

# ScheduledJob fields a patch may change but never clear
_NON_NULLABLE = frozenset({"name", "one_shot", "type", "enabled", "payload"})


class JobPayload(BaseModel):
    """Opaque data handed verbatim to the execution callback."""

    channel: str | None = None  # telegram, twitter, linkedin
    content: str | None = None  # post content or reminder message
    product_id: str | None = Field(None, alias="productId")
    campaign_id: str | None = Field(None, alias="campaignId")
    action: str | None = None
    metadata: dict[str, Any] | None = None

    model_config = ConfigDict(populate_by_name=True, extra="allow")


class CalendarSyncState(BaseModel):
    """Identity of the mirrored calendar event and the last sync outcome."""

    enabled: bool = True
    event_id: str | None = Field(None, alias="eventId")
    calendar_id: str | None = Field(None, alias="calendarId")
    last_synced_at: int | None = Field(None, alias="lastSyncedAt")
    sync_error: str | None = Field(None, alias="syncError")

    model_config = ConfigDict(populate_by_name=True)


class ScheduledJob(BaseModel):
    """A persisted, time-triggered unit of work."""

    id: str
    name: str
    description: str | None = None
    cron_expression: str | None = Field(None, alias="cronExpression")
    execute_at: int | None = Field(None, alias="executeAt")
    one_shot: bool = Field(False, alias="oneShot")
    delete_after_run: bool | None = Field(None, alias="deleteAfterRun")  # unset = purge one-shots
    type: JobType = "task"
    enabled: bool = True
    payload: JobPayload = Field(default_factory=JobPayload)
    last_run: int | None = Field(None, alias="lastRun")
    next_run: int | None = Field(None, alias="nextRun")
    run_count: int = Field(0, alias="runCount", ge=0)
    created_at: int = Field(0, alias="createdAt")
    updated_at: int = Field(0, alias="updatedAt")
    calendar_sync: CalendarSyncState | None = Field(None, alias="calendarSync")
    timezone: str | None = None

    model_config = ConfigDict(populate_by_name=True, validate_assignment=True)

    @property
    def is_recurring(self) -> bool:
        return not self.one_shot and bool(self.cron_expression)

    def to_record(self) -> dict[str, Any]:
        """Serialise for the job file (camelCase, unset optionals omitted).

        Only the known payload fields are pruned; extra keys and metadata
        are written exactly as given, ``None`` values included.
        """
        record = self.model_dump(mode="json", by_alias=True, exclude_none=True)
        payload = self.payload.model_dump(mode="json", by_alias=True)
        for name, field in JobPayload.model_fields.items():
            key = field.alias or name
            if key in payload and payload[key] is None:
                del payload[key]
        record["payload"] = payload
        return record


class JobPatch(BaseModel):
    """Partial update for a job; only explicitly set fields are applied."""

    name: str | None = None
    description: str | None = None
    cron_expression: str | None = Field(None, alias="cronExpression")
    execute_at: int | None = Field(None, alias="executeAt")
    one_shot: bool | None = Field(None, alias="oneShot")
    delete_after_run: bool | None = Field(None, alias="deleteAfterRun")
    type: JobType | None = None
    enabled: bool | None = None
    payload: JobPayload | None = None
    calendar_sync: CalendarSyncState | None = Field(None, alias="calendarSync")
    timezone: str | None = None

    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    @model_validator(mode="after")
    def _reject_null_required(self) -> "JobPatch":
        nulled = sorted(
            name for name in self.model_fields_set & _NON_NULLABLE if getattr(self, name) is None
        )
        if nulled:
            raise ValueError(f"fields cannot be cleared: {', '.join(nulled)}")
        return self

    def changes(self) -> dict[str, Any]:
        return {name: getattr(self, name) for name in self.model_fields_set}


class CalendarSyncResult(BaseModel):
    """Outcome of one calendar operation."""

    success: bool
    event_id: str | None = Field(None, alias="eventId")
    error: str | None = None

    model_config = ConfigDict(populate_by_name=True)


class CalendarSyncOptions(BaseModel):
    """Caller-supplied context used to resolve calendar and timezone."""

    member_timezone: str | None = None
    product_calendar_id: str | None = None
