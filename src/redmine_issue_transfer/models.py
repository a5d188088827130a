"""Data models shared by the reader, mapper, writer and orchestrator.

Source issues stay loosely structured (plain dicts as decoded from the
source API); everything the engine owns is modelled here.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Literal
from urllib.parse import urlparse

from .endpoint import resolve_endpoint

SourceIssue = dict[str, Any]
"""An issue record exactly as returned by the source API (read-only)."""


class ReferenceKind(Enum):
    """Source reference entities that are looked up by ID."""

    TRACKER = "tracker"
    STATUS = "status"
    PRIORITY = "priority"


class ErrorPolicy(Enum):
    """What to do when a single item (issue, link, attachment, note) fails."""

    CONTINUE = "continue"
    ABORT = "abort"


def _require_positive(name: str, value: int) -> None:
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        msg = f"{name} must be a positive integer, got {value!r}"
        raise ValueError(msg)


@dataclass(frozen=True)
class TransferConfig:
    """Validated connection parameters for one transfer.

    The numeric IDs select which source issues qualify (``source_version_id``)
    and where they land in the target (project, version, default assignee).
    """

    source_url: str
    source_api_key: str
    source_version_id: int
    target_project_id: int
    target_version_id: int
    fallback_assignee_id: int

    def __post_init__(self) -> None:
        parsed = urlparse(self.source_url)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            msg = f"source_url must be an http(s) URL, got {self.source_url!r}"
            raise ValueError(msg)
        if not self.source_api_key:
            msg = "source_api_key must not be empty"
            raise ValueError(msg)
        for name in ("source_version_id", "target_project_id", "target_version_id", "fallback_assignee_id"):
            _require_positive(name, getattr(self, name))
        # Frozen dataclass: normalise through object.__setattr__
        object.__setattr__(self, "source_url", self.source_url.rstrip("/"))


@dataclass(frozen=True)
class TargetSettings:
    """Ambient identity of the target system (host setting, protocol and caller's key)."""

    host_name: str
    protocol: Literal["http", "https"] = "https"
    api_key: str = ""

    @property
    def base_url(self) -> str:
        endpoint = resolve_endpoint(self.host_name, secure=self.protocol == "https")
        default_port = 443 if self.protocol == "https" else 80
        if endpoint.port == default_port:
            return f"{self.protocol}://{endpoint.host}"
        return f"{self.protocol}://{endpoint.host}:{endpoint.port}"


@dataclass(frozen=True)
class TransferOptions:
    """Tunables for a run. Defaults reproduce the skip-and-log behaviour."""

    error_policy: ErrorPolicy = ErrorPolicy.CONTINUE
    map_users: bool = False
    page_size: int = 100
    timeout: tuple[float, float] = (30.0, 60.0)  # (connect, read) seconds
    max_retries: int = 2
    backoff_seconds: float = 1.0


@dataclass
class MappingCaches:
    """Source ID -> resolved target ID, one dict per classification field."""

    trackers: dict[int, int | None] = field(default_factory=dict)
    statuses: dict[int, int | None] = field(default_factory=dict)
    priorities: dict[int, int | None] = field(default_factory=dict)
    users: dict[int, int | None] = field(default_factory=dict)


@dataclass
class ReferenceDataCache:
    """Source reference records fetched lazily, at most once per ID."""

    trackers: dict[int, dict[str, Any]] = field(default_factory=dict)
    statuses: dict[int, dict[str, Any]] = field(default_factory=dict)
    priorities: dict[int, dict[str, Any]] = field(default_factory=dict)

    def for_kind(self, kind: ReferenceKind) -> dict[int, dict[str, Any]]:
        if kind is ReferenceKind.TRACKER:
            return self.trackers
        if kind is ReferenceKind.STATUS:
            return self.statuses
        return self.priorities


@dataclass(frozen=True)
class Classification:
    """Target IDs resolved for one source issue."""

    tracker_id: int | None = None
    status_id: int | None = None
    priority_id: int | None = None
    category_id: int | None = None
    assigned_to_id: int | None = None


@dataclass(frozen=True)
class ParentChildRelation:
    """A created child waiting for its parent link (recorded while creating issues)."""

    child_target_id: int
    source_parent_id: int


class UploadErrorKind(Enum):
    """Distinguishable causes of a failed blob upload."""

    AUTH = "authentication failed"
    BAD_REQUEST = "bad request"
    NOT_ACCEPTABLE = "not acceptable"
    TOO_LARGE = "file too large"
    SERVER_ERROR = "server error"
    UNEXPECTED_STATUS = "unexpected status"
    INVALID_JSON = "invalid JSON response"
    MISSING_TOKEN = "no token in response"
    NETWORK = "network error"


@dataclass(frozen=True)
class UploadResult:
    """Outcome of POST /uploads.json: either a token or a classified error."""

    token: str | None = None
    error_kind: UploadErrorKind | None = None
    error: str = ""

    @property
    def success(self) -> bool:
        return self.token is not None


@dataclass
class TransferStats:
    """Counters collected during a run."""

    issues_created: int = 0
    parents_linked: int = 0
    attachments_transferred: int = 0
    notes_added: int = 0
    item_failures: list[str] = field(default_factory=list)


@dataclass
class TransferResult:
    """Result of a full run: success with a count, or failure with an error."""

    success: bool
    count: int = 0
    error: str | None = None
    stats: TransferStats = field(default_factory=TransferStats)

    def as_dict(self) -> dict[str, Any]:
        """Render the invocation contract: ``{success, count}`` or ``{success, error}``."""
        if self.success:
            return {"success": True, "count": self.count}
        return {"success": False, "error": self.error or ""}
