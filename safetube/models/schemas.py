from pydantic import BaseModel, field_validator

from safetube.database_schema import SOURCE_TYPES


# ---------------------------------------------------------------------------
# Schema versioning
# ---------------------------------------------------------------------------


class SchemaVersion(BaseModel):
    """The single row of ``schema_version``."""

    version: int
    phase: str
    updated_at: str


class SchemaValidationResult(BaseModel):
    is_valid: bool
    errors: list[str] = []
    missing_tables: list[str] = []
    missing_indexes: list[str] = []
    foreign_key_violations: list[dict] = []
    phase: str | None = None
    phase_matches: bool = False


# ---------------------------------------------------------------------------
# Migration summaries
# ---------------------------------------------------------------------------


class UnitStatus(BaseModel):
    """Outcome of one migration unit."""

    unit_name: str
    status: str = "pending"
    records_processed: int = 0
    start_time: str | None = None
    end_time: str | None = None
    error: str | None = None

    @field_validator("status")
    @classmethod
    def status_must_be_known(cls, v: str) -> str:
        if v not in {"pending", "in_progress", "completed", "failed"}:
            raise ValueError(f"Unknown unit status: {v}")
        return v


class PhaseSummary(BaseModel):
    """Aggregate outcome of a migration phase."""

    phase: str
    status: str = "in_progress"
    start_time: str
    end_time: str | None = None
    unit_statuses: list[UnitStatus] = []
    total_records_processed: int = 0
    total_errors: int = 0
    backup_path: str | None = None


class TableCount(BaseModel):
    expected: int
    actual: int


class IntegrityResult(BaseModel):
    is_valid: bool
    errors: list[str] = []
    counts: dict[str, TableCount] = {}


# ---------------------------------------------------------------------------
# Entity records
# ---------------------------------------------------------------------------


class SourceRecord(BaseModel):
    """A content source as stored in ``sources``."""

    id: str
    type: str
    title: str
    url: str | None = None
    thumbnail: str | None = None
    channel_id: str | None = None
    path: str | None = None
    sort_preference: str | None = None
    position: int | None = None
    total_videos: int | None = None
    max_depth: int | None = None

    @field_validator("type")
    @classmethod
    def type_must_be_known(cls, v: str) -> str:
        if v not in SOURCE_TYPES:
            raise ValueError(f"Unknown source type: {v}")
        return v


class VideoRecord(BaseModel):
    id: str
    title: str = ""
    source_id: str
    published_at: str | None = None
    thumbnail: str | None = None
    duration: int | None = None
    url: str | None = None
    is_available: bool = True
    description: str | None = None


class TimeLimitPatch(BaseModel):
    """Partial update of the time-limit policy.

    Only fields explicitly set on the instance are written; the column list
    is derived from the field names.
    """

    monday: int | None = None
    tuesday: int | None = None
    wednesday: int | None = None
    thursday: int | None = None
    friday: int | None = None
    saturday: int | None = None
    sunday: int | None = None
    warning_threshold_minutes: int | None = None
    countdown_warning_seconds: int | None = None
    audio_warning_seconds: int | None = None
    time_up_message: str | None = None
    use_system_beep: bool | None = None
    custom_beep_sound: str | None = None

    @field_validator(
        "monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday"
    )
    @classmethod
    def minutes_not_negative(cls, v: int | None) -> int:
        # Runs only for values passed in; an omitted day stays unset
        if v is None:
            raise ValueError("Daily limit cannot be null")
        if v < 0:
            raise ValueError("Daily limit cannot be negative")
        return v
