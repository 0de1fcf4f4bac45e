"""Dataclass domain models with strict validation and canonical serialization."""

from __future__ import annotations

import json
import math
from collections.abc import Mapping
from dataclasses import dataclass, field, fields, is_dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, NoReturn, TypeVar, cast

from wark.constants import DEFAULT_MAX_RETRIES, PRIORITY_RANK
from wark.domain import ids as domain_ids

try:
    from datetime import UTC
except ImportError:
    UTC = timezone.utc  # noqa: UP017

if TYPE_CHECKING:
    from enum import StrEnum
else:
    try:
        from enum import StrEnum
    except ImportError:

        class StrEnum(str, Enum):
            """Compatibility fallback for Python < 3.11."""


JSONScalar = str | int | float | bool | None
JSONValue = JSONScalar | list["JSONValue"] | dict[str, "JSONValue"]

TModel = TypeVar("TModel", bound="CanonicalModel")
TEnum = TypeVar("TEnum", bound=Enum)

_MAX_TITLE = 500
_MAX_TEXT = 65536
_MAX_JSON_DEPTH = 16
_MAX_JSON_COLLECTION = 512


class TicketStatus(StrEnum):
    CREATED = "created"
    READY = "ready"
    BLOCKED = "blocked"
    IN_PROGRESS = "in_progress"
    NEEDS_HUMAN = "needs_human"
    REVIEW = "review"
    DONE = "done"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES: frozenset[TicketStatus] = frozenset({TicketStatus.DONE, TicketStatus.CANCELLED})
OPEN_STATUSES: frozenset[TicketStatus] = frozenset(set(TicketStatus) - TERMINAL_STATUSES)


class Resolution(StrEnum):
    COMPLETED = "completed"
    WONT_DO = "wont_do"
    DUPLICATE = "duplicate"
    INVALID = "invalid"
    OBSOLETE = "obsolete"

    @property
    def is_successful(self) -> bool:
        return self is Resolution.COMPLETED


class Priority(StrEnum):
    HIGHEST = "highest"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    LOWEST = "lowest"

    @property
    def rank(self) -> int:
        return PRIORITY_RANK[self.value]


class Complexity(StrEnum):
    TRIVIAL = "trivial"
    SMALL = "small"
    MEDIUM = "medium"
    LARGE = "large"
    XLARGE = "xlarge"


class ClaimStatus(StrEnum):
    ACTIVE = "active"
    COMPLETED = "completed"
    EXPIRED = "expired"
    RELEASED = "released"


class ActorType(StrEnum):
    HUMAN = "human"
    AGENT = "agent"
    SYSTEM = "system"


class Action(StrEnum):
    CREATED = "created"
    CLAIMED = "claimed"
    RELEASED = "released"
    EXPIRED = "expired"
    COMPLETED = "completed"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    CLOSED = "closed"
    CANCELLED = "cancelled"
    REOPENED = "reopened"
    DEPENDENCY_ADDED = "dependency_added"
    DEPENDENCY_REMOVED = "dependency_removed"
    BLOCKED = "blocked"
    UNBLOCKED = "unblocked"
    FLAGGED = "flagged"
    ESCALATED = "escalated"
    HUMAN_RESPONDED = "human_responded"
    FIELD_CHANGED = "field_changed"
    COMMENT = "comment"
    TASK_ADDED = "task_added"
    TASK_COMPLETED = "task_completed"
    MILESTONE_CHANGED = "milestone_changed"


class MilestoneStatus(StrEnum):
    OPEN = "open"
    ACHIEVED = "achieved"
    ABANDONED = "abandoned"


class MessageType(StrEnum):
    QUESTION = "question"
    DECISION = "decision"
    ESCALATION = "escalation"
    INFO = "info"


class FlagReason(StrEnum):
    IRRECONCILABLE_CONFLICT = "irreconcilable_conflict"
    UNCLEAR_REQUIREMENTS = "unclear_requirements"
    DECISION_NEEDED = "decision_needed"
    ACCESS_REQUIRED = "access_required"
    BLOCKED_EXTERNAL = "blocked_external"
    RISK_ASSESSMENT = "risk_assessment"
    OUT_OF_SCOPE = "out_of_scope"
    MAX_RETRIES_EXCEEDED = "max_retries_exceeded"
    OTHER = "other"

    @classmethod
    def parse(cls, raw: str) -> FlagReason:
        """Accept ``Decision-Needed``, `` decision_needed `` and similar spellings."""
        if isinstance(raw, cls):
            return raw
        if not isinstance(raw, str):
            _fail("FlagReason", f"expected string, got {type(raw).__name__}")
        normalized = raw.strip().lower().replace("-", "_")
        return _as_enum(cls, normalized, "FlagReason")

    @property
    def message_type(self) -> MessageType:
        if self is FlagReason.DECISION_NEEDED:
            return MessageType.DECISION
        if self in {FlagReason.RISK_ASSESSMENT, FlagReason.IRRECONCILABLE_CONFLICT}:
            return MessageType.ESCALATION
        return MessageType.QUESTION


class CanonicalModel:
    """Mixin for canonical dict/json serialization."""

    def to_dict(self) -> dict[str, JSONValue]:
        serialized = _serialize_value(self, self.__class__.__name__)
        if not isinstance(serialized, dict):
            _fail(self.__class__.__name__, "serialized model must be an object")
        return serialized

    def to_json(self) -> str:
        return _canonical_json(self.to_dict())

    @classmethod
    def from_json(cls: type[TModel], raw: str) -> TModel:
        if not isinstance(raw, str):
            _fail(cls.__name__, f"expected JSON string, got {type(raw).__name__}")
        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError as exc:
            _fail(cls.__name__, f"invalid JSON: {exc}")
        if not isinstance(parsed, dict):
            _fail(cls.__name__, "JSON root must be an object")
        return cls.from_dict(parsed)

    @classmethod
    def from_dict(cls: type[TModel], data: Mapping[str, object]) -> TModel:
        parsed = _expect_object(data, cls.__name__, known={item.name for item in fields(cls)})  # type: ignore[arg-type]
        return _construct(cls, parsed)


def _fail(path: str, message: str) -> NoReturn:
    raise ValueError(f"{path}: {message}")


def _construct(cls: type[TModel], parsed: dict[str, object]) -> TModel:
    try:
        return cls(**parsed)
    except TypeError as exc:
        _fail(cls.__name__, str(exc))


def _canonical_json(value: JSONValue) -> str:
    return json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def _expect_object(value: object, path: str, *, known: set[str]) -> dict[str, object]:
    if not isinstance(value, Mapping):
        _fail(path, f"expected object, got {type(value).__name__}")

    parsed: dict[str, object] = {}
    for key, item in value.items():
        if not isinstance(key, str):
            _fail(path, f"object keys must be strings, got {type(key).__name__}")
        parsed[key] = item

    unknown = sorted(key for key in parsed if key not in known)
    if unknown:
        _fail(path, f"unexpected fields: {unknown}")
    return parsed


def _as_str(
    value: object,
    path: str,
    *,
    min_len: int = 1,
    max_len: int = _MAX_TEXT,
    strip: bool = True,
) -> str:
    if not isinstance(value, str):
        _fail(path, f"expected string, got {type(value).__name__}")
    normalized = value.strip() if strip else value
    if len(normalized) < min_len:
        _fail(path, f"must be at least {min_len} character(s)")
    if len(normalized) > max_len:
        _fail(path, f"must be <= {max_len} characters")
    return normalized


def _as_optional_str(value: object, path: str, *, max_len: int = _MAX_TEXT) -> str | None:
    if value is None:
        return None
    return _as_str(value, path, max_len=max_len)


def _as_int(value: object, path: str, *, minimum: int | None = None) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        _fail(path, f"expected integer, got {type(value).__name__}")
    if minimum is not None and value < minimum:
        _fail(path, f"must be >= {minimum}")
    return value


def _as_datetime(value: object, path: str) -> datetime:
    parsed: datetime
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str):
        text = value[:-1] + "+00:00" if value.endswith("Z") else value
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError as exc:
            _fail(path, f"invalid ISO-8601 datetime: {value!r} ({exc})")
    else:
        _fail(path, f"expected datetime or ISO-8601 string, got {type(value).__name__}")

    if parsed.tzinfo is None or parsed.utcoffset() is None:
        _fail(path, "datetime must be timezone-aware UTC")
    return parsed.astimezone(UTC)


def _as_optional_datetime(value: object, path: str) -> datetime | None:
    if value is None:
        return None
    return _as_datetime(value, path)


def _datetime_to_iso8601z(value: datetime) -> str:
    normalized = _as_datetime(value, "datetime")
    return normalized.isoformat(timespec="microseconds").replace("+00:00", "Z")


def _as_enum(enum_type: type[TEnum], value: object, path: str) -> TEnum:
    if isinstance(value, enum_type):
        return value
    if not isinstance(value, str):
        _fail(path, f"expected string enum value, got {type(value).__name__}")
    try:
        return enum_type(value)
    except ValueError:
        allowed = ", ".join(sorted(item.value for item in enum_type))
        _fail(path, f"invalid value {value!r}; expected one of: {allowed}")


def _as_optional_enum(enum_type: type[TEnum], value: object, path: str) -> TEnum | None:
    if value is None:
        return None
    return _as_enum(enum_type, value, path)


def _as_json_value(value: object, path: str, *, depth: int = 0) -> JSONValue:
    if depth > _MAX_JSON_DEPTH:
        _fail(path, f"JSON nesting exceeds max depth {_MAX_JSON_DEPTH}")

    if value is None or isinstance(value, bool):
        return value
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if not math.isfinite(value):
            _fail(path, "float values must be finite")
        return value
    if isinstance(value, str):
        return value
    if isinstance(value, Enum):
        return _as_json_value(value.value, path, depth=depth)
    if isinstance(value, datetime):
        return _datetime_to_iso8601z(value)
    if isinstance(value, (list, tuple)):
        if len(value) > _MAX_JSON_COLLECTION:
            _fail(path, f"list length exceeds {_MAX_JSON_COLLECTION}")
        return [
            _as_json_value(item, f"{path}[{idx}]", depth=depth + 1)
            for idx, item in enumerate(value)
        ]
    if isinstance(value, Mapping):
        if len(value) > _MAX_JSON_COLLECTION:
            _fail(path, f"object size exceeds {_MAX_JSON_COLLECTION}")
        parsed: dict[str, JSONValue] = {}
        for key, item in value.items():
            if not isinstance(key, str):
                _fail(path, f"object key must be string, got {type(key).__name__}")
            parsed[key] = _as_json_value(item, f"{path}.{key}", depth=depth + 1)
        return parsed

    _fail(path, f"value is not JSON-serializable ({type(value).__name__})")


def _as_json_object(value: object, path: str) -> dict[str, JSONValue]:
    parsed = _as_json_value(value, path)
    if not isinstance(parsed, dict):
        _fail(path, "expected JSON object")
    return parsed


def _serialize_value(value: object, path: str) -> JSONValue:
    if value is None or isinstance(value, bool):
        return cast("JSONValue", value)
    if isinstance(value, Enum):
        raw = value.value
        if not isinstance(raw, str):
            _fail(path, "enum value must be string")
        return raw
    if isinstance(value, (int, str)):
        return value
    if isinstance(value, float):
        if not math.isfinite(value):
            _fail(path, "float values must be finite")
        return value
    if isinstance(value, datetime):
        return _datetime_to_iso8601z(value)
    if isinstance(value, (tuple, list)):
        return [_serialize_value(item, f"{path}[]") for item in value]
    if isinstance(value, Mapping):
        out: dict[str, JSONValue] = {}
        for key, item in value.items():
            if not isinstance(key, str):
                _fail(path, "dict keys must be strings")
            out[key] = _serialize_value(item, f"{path}.{key}")
        return out
    if is_dataclass(value):
        out_obj: dict[str, JSONValue] = {}
        for dataclass_field in fields(value):
            out_obj[dataclass_field.name] = _serialize_value(
                getattr(value, dataclass_field.name),
                f"{path}.{dataclass_field.name}",
            )
        return out_obj

    _fail(path, f"cannot serialize value of type {type(value).__name__}")


@dataclass(slots=True)
class Project(CanonicalModel):
    id: str
    key: str
    name: str
    created_at: datetime
    updated_at: datetime
    description: str = ""

    def __post_init__(self) -> None:
        self.id = _as_str(self.id, "Project.id")
        try:
            self.key = domain_ids.normalize_project_key(self.key)
        except ValueError as exc:
            _fail("Project.key", str(exc))
        self.name = _as_str(self.name, "Project.name", max_len=_MAX_TITLE)
        self.description = _as_str(self.description, "Project.description", min_len=0)
        self.created_at = _as_datetime(self.created_at, "Project.created_at")
        self.updated_at = _as_datetime(self.updated_at, "Project.updated_at")


@dataclass(slots=True)
class Ticket(CanonicalModel):
    """A unit of work. ``status`` and ``resolution`` are kept mutually consistent."""

    id: str
    project_id: str
    project_key: str
    number: int
    title: str
    created_at: datetime
    updated_at: datetime
    description: str = ""
    status: TicketStatus = TicketStatus.CREATED
    priority: Priority = Priority.MEDIUM
    complexity: Complexity = Complexity.MEDIUM
    resolution: Resolution | None = None
    human_flag_reason: str | None = None
    flagged_from: TicketStatus | None = None
    branch_name: str | None = None
    retry_count: int = 0
    max_retries: int = DEFAULT_MAX_RETRIES
    parent_ticket_id: str | None = None
    completed_at: datetime | None = None
    milestone_id: str | None = None

    def __post_init__(self) -> None:
        self.id = _as_str(self.id, "Ticket.id")
        self.project_id = _as_str(self.project_id, "Ticket.project_id")
        try:
            self.project_key = domain_ids.normalize_project_key(self.project_key)
        except ValueError as exc:
            _fail("Ticket.project_key", str(exc))
        self.number = _as_int(self.number, "Ticket.number", minimum=1)
        self.title = _as_str(self.title, "Ticket.title", max_len=_MAX_TITLE)
        self.description = _as_str(self.description, "Ticket.description", min_len=0, strip=False)
        self.status = _as_enum(TicketStatus, self.status, "Ticket.status")
        self.priority = _as_enum(Priority, self.priority, "Ticket.priority")
        self.complexity = _as_enum(Complexity, self.complexity, "Ticket.complexity")
        self.resolution = _as_optional_enum(Resolution, self.resolution, "Ticket.resolution")
        self.human_flag_reason = _as_optional_str(self.human_flag_reason, "Ticket.human_flag_reason")
        self.flagged_from = _as_optional_enum(TicketStatus, self.flagged_from, "Ticket.flagged_from")
        self.branch_name = _as_optional_str(self.branch_name, "Ticket.branch_name", max_len=255)
        self.retry_count = _as_int(self.retry_count, "Ticket.retry_count", minimum=0)
        self.max_retries = _as_int(self.max_retries, "Ticket.max_retries", minimum=0)
        self.parent_ticket_id = _as_optional_str(self.parent_ticket_id, "Ticket.parent_ticket_id")
        if self.parent_ticket_id == self.id:
            _fail("Ticket.parent_ticket_id", "a ticket cannot be its own parent")
        self.created_at = _as_datetime(self.created_at, "Ticket.created_at")
        self.updated_at = _as_datetime(self.updated_at, "Ticket.updated_at")
        self.completed_at = _as_optional_datetime(self.completed_at, "Ticket.completed_at")
        self.milestone_id = _as_optional_str(self.milestone_id, "Ticket.milestone_id")

        if self.status.is_terminal:
            if self.resolution is None:
                _fail("Ticket.resolution", f"required when status is {self.status.value}")
            if self.status is TicketStatus.DONE and self.resolution is not Resolution.COMPLETED:
                _fail("Ticket.resolution", "done tickets must be resolved as completed")
            if self.status is TicketStatus.CANCELLED and self.resolution is Resolution.COMPLETED:
                _fail("Ticket.resolution", "cancelled tickets cannot be resolved as completed")
        elif self.resolution is not None:
            _fail("Ticket.resolution", f"must be empty while status is {self.status.value}")

    @property
    def key(self) -> str:
        return domain_ids.format_ticket_key(self.project_key, self.number)

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @property
    def is_successfully_closed(self) -> bool:
        return self.status is TicketStatus.DONE and self.resolution is Resolution.COMPLETED

    def to_dict(self) -> dict[str, JSONValue]:
        payload = CanonicalModel.to_dict(self)
        payload["key"] = self.key
        return payload

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> Ticket:
        trimmed = {key: value for key, value in data.items() if key != "key"}
        parsed = _expect_object(trimmed, "Ticket", known={item.name for item in fields(cls)})
        return _construct(cls, parsed)


@dataclass(slots=True)
class Claim(CanonicalModel):
    """Time-bounded lease binding one worker to one ticket."""

    id: str
    ticket_id: str
    worker_id: str
    claimed_at: datetime
    expires_at: datetime
    status: ClaimStatus = ClaimStatus.ACTIVE
    released_at: datetime | None = None

    def __post_init__(self) -> None:
        self.id = _as_str(self.id, "Claim.id")
        try:
            domain_ids.validate_claim_id(self.id)
        except ValueError as exc:
            _fail("Claim.id", str(exc))
        self.ticket_id = _as_str(self.ticket_id, "Claim.ticket_id")
        self.worker_id = _as_str(self.worker_id, "Claim.worker_id", max_len=255)
        self.claimed_at = _as_datetime(self.claimed_at, "Claim.claimed_at")
        self.expires_at = _as_datetime(self.expires_at, "Claim.expires_at")
        if self.expires_at <= self.claimed_at:
            _fail("Claim.expires_at", "must be after Claim.claimed_at")
        self.status = _as_enum(ClaimStatus, self.status, "Claim.status")
        self.released_at = _as_optional_datetime(self.released_at, "Claim.released_at")
        if self.status is ClaimStatus.ACTIVE and self.released_at is not None:
            _fail("Claim.released_at", "must be empty while the claim is active")
        if self.status is not ClaimStatus.ACTIVE and self.released_at is None:
            _fail("Claim.released_at", f"required when status is {self.status.value}")

    @property
    def is_active(self) -> bool:
        return self.status is ClaimStatus.ACTIVE

    def is_expired(self, now: datetime) -> bool:
        return self.is_active and self.expires_at < now

    def remaining_seconds(self, now: datetime) -> float:
        return max(0.0, (self.expires_at - now).total_seconds())


@dataclass(slots=True)
class Dependency(CanonicalModel):
    """Directed edge: ``ticket_id`` cannot proceed until ``depends_on_id`` succeeds."""

    ticket_id: str
    depends_on_id: str
    created_at: datetime

    def __post_init__(self) -> None:
        self.ticket_id = _as_str(self.ticket_id, "Dependency.ticket_id")
        self.depends_on_id = _as_str(self.depends_on_id, "Dependency.depends_on_id")
        if self.ticket_id == self.depends_on_id:
            _fail("Dependency", "a ticket cannot depend on itself")
        self.created_at = _as_datetime(self.created_at, "Dependency.created_at")


@dataclass(slots=True)
class ActivityEntry(CanonicalModel):
    id: str
    ticket_id: str
    action: Action
    actor_type: ActorType
    created_at: datetime
    actor_id: str | None = None
    summary: str = ""
    details: dict[str, JSONValue] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.id = _as_str(self.id, "ActivityEntry.id")
        self.ticket_id = _as_str(self.ticket_id, "ActivityEntry.ticket_id")
        self.action = _as_enum(Action, self.action, "ActivityEntry.action")
        self.actor_type = _as_enum(ActorType, self.actor_type, "ActivityEntry.actor_type")
        self.created_at = _as_datetime(self.created_at, "ActivityEntry.created_at")
        self.actor_id = _as_optional_str(self.actor_id, "ActivityEntry.actor_id", max_len=255)
        self.summary = _as_str(self.summary, "ActivityEntry.summary", min_len=0)
        self.details = _as_json_object(self.details, "ActivityEntry.details")


@dataclass(slots=True)
class InboxMessage(CanonicalModel):
    id: str
    ticket_id: str
    message_type: MessageType
    content: str
    created_at: datetime
    from_agent: str | None = None
    response: str | None = None
    responded_at: datetime | None = None

    def __post_init__(self) -> None:
        self.id = _as_str(self.id, "InboxMessage.id")
        self.ticket_id = _as_str(self.ticket_id, "InboxMessage.ticket_id")
        self.message_type = _as_enum(MessageType, self.message_type, "InboxMessage.message_type")
        self.content = _as_str(self.content, "InboxMessage.content")
        self.created_at = _as_datetime(self.created_at, "InboxMessage.created_at")
        self.from_agent = _as_optional_str(self.from_agent, "InboxMessage.from_agent", max_len=255)
        self.response = _as_optional_str(self.response, "InboxMessage.response")
        self.responded_at = _as_optional_datetime(self.responded_at, "InboxMessage.responded_at")
        if (self.response is None) != (self.responded_at is None):
            _fail("InboxMessage.responded_at", "must be set together with response")

    @property
    def is_pending(self) -> bool:
        return self.response is None


@dataclass(slots=True)
class Milestone(CanonicalModel):
    """A named target inside one project that tickets can be grouped under."""

    id: str
    project_id: str
    key: str
    name: str
    created_at: datetime
    updated_at: datetime
    goal: str = ""
    target_date: datetime | None = None
    status: MilestoneStatus = MilestoneStatus.OPEN

    def __post_init__(self) -> None:
        self.id = _as_str(self.id, "Milestone.id")
        self.project_id = _as_str(self.project_id, "Milestone.project_id")
        try:
            self.key = domain_ids.normalize_milestone_key(self.key)
        except ValueError as exc:
            _fail("Milestone.key", str(exc))
        self.name = _as_str(self.name, "Milestone.name", max_len=_MAX_TITLE)
        self.goal = _as_str(self.goal, "Milestone.goal", min_len=0)
        self.target_date = _as_optional_datetime(self.target_date, "Milestone.target_date")
        self.status = _as_enum(MilestoneStatus, self.status, "Milestone.status")
        self.created_at = _as_datetime(self.created_at, "Milestone.created_at")
        self.updated_at = _as_datetime(self.updated_at, "Milestone.updated_at")


@dataclass(slots=True)
class TicketTask(CanonicalModel):
    """One checklist step of a ticket; ``position`` is 1-based and dense per ticket."""

    id: str
    ticket_id: str
    position: int
    description: str
    created_at: datetime
    updated_at: datetime
    complete: bool = False

    def __post_init__(self) -> None:
        self.id = _as_str(self.id, "TicketTask.id")
        self.ticket_id = _as_str(self.ticket_id, "TicketTask.ticket_id")
        self.position = _as_int(self.position, "TicketTask.position", minimum=1)
        self.description = _as_str(self.description, "TicketTask.description", max_len=_MAX_TITLE)
        if not isinstance(self.complete, bool):
            _fail("TicketTask.complete", f"expected bool, got {type(self.complete).__name__}")
        self.created_at = _as_datetime(self.created_at, "TicketTask.created_at")
        self.updated_at = _as_datetime(self.updated_at, "TicketTask.updated_at")


def iso8601z(value: datetime) -> str:
    """Render an aware datetime as ``YYYY-MM-DDTHH:MM:SS.ffffffZ``."""
    return _datetime_to_iso8601z(value)


def parse_datetime(value: object, path: str = "datetime") -> datetime:
    return _as_datetime(value, path)


def utc_now() -> datetime:
    return datetime.now(UTC)


__all__ = [
    "Action",
    "ActivityEntry",
    "ActorType",
    "CanonicalModel",
    "Claim",
    "ClaimStatus",
    "Complexity",
    "Dependency",
    "FlagReason",
    "InboxMessage",
    "JSONValue",
    "MessageType",
    "Milestone",
    "MilestoneStatus",
    "OPEN_STATUSES",
    "Priority",
    "Project",
    "Resolution",
    "TERMINAL_STATUSES",
    "Ticket",
    "TicketStatus",
    "TicketTask",
    "iso8601z",
    "parse_datetime",
    "utc_now",
]
