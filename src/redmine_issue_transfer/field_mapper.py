"""
Translation of source classification values (tracker, status, priority,
category, assignee) into target-system IDs.
"""

from __future__ import annotations

import logging
import re
from typing import TYPE_CHECKING, Any, Final

import requests

from .models import Classification, MappingCaches, ReferenceKind
from .redmine_utils import describe_failure

if TYPE_CHECKING:
    from collections.abc import Sequence

    from .models import SourceIssue
    from .redmine_utils import RedmineClient
    from .source import SourceReader

logger: logging.Logger = logging.getLogger(__name__)

KeywordTable = tuple[tuple[str, tuple[str, ...]], ...]

# (concept, keywords) pairs, tried in order. Keywords are compared against
# normalised names (lowercase, no spaces, hyphens or underscores); Russian
# entries are stems so that inflected forms still match.
TRACKER_KEYWORDS: Final[KeywordTable] = (
    ("bug", ("bug", "ошибка")),
    ("task", ("task", "задача")),
    ("feature", ("feature", "требование")),
    ("request", ("request", "запрос")),
    ("build", ("build", "сборка")),
    ("process", ("process", "процесс")),
)

STATUS_KEYWORDS: Final[KeywordTable] = (
    ("new", ("new", "нов")),
    ("in_progress", ("inprogress", "вработе")),
    ("done", ("done", "готов", "выполнен")),
    ("closed", ("closed", "закрыт")),
    ("on_hold", ("onhold", "приостановлен", "отложен")),
    ("testing", ("testing", "тестирован")),
    ("completed", ("completed", "завершен")),
    ("waiting", ("waiting", "ожидан")),
)

PRIORITY_KEYWORDS: Final[KeywordTable] = (
    ("low", ("low", "низк")),
    ("normal", ("normal", "нормальн")),
    ("high", ("high", "высок")),
    ("immediate", ("immediate", "немедлен")),
)

DEFAULT_TRACKER_ID: Final[int] = 1
DEFAULT_PRIORITY_ID: Final[int] = 2  # seeded "Normal"

_SEPARATORS = re.compile(r"[\s_\-]+")


def normalize_name(name: str) -> str:
    return _SEPARATORS.sub("", name.strip().lower())


def match_keyword(source_name: str, candidates: Sequence[dict[str, Any]], table: KeywordTable) -> dict[str, Any] | None:
    """First candidate sharing a keyword concept with ``source_name``.

    Concepts are tried in table order; within a concept the first candidate
    (in target order) whose name contains one of its keywords wins.
    """
    source = normalize_name(source_name)
    for concept, keywords in table:
        if not any(keyword in source for keyword in keywords):
            continue
        for candidate in candidates:
            target = normalize_name(candidate.get("name", ""))
            if any(keyword in target for keyword in keywords):
                logger.debug(f"Keyword match ({concept}): {source_name} -> {candidate.get('name')}")
                return candidate
    return None


def resolve_by_name(
    source_name: str, candidates: Sequence[dict[str, Any]], table: KeywordTable
) -> dict[str, Any] | None:
    """Exact name, then case-insensitive name, then keyword heuristic. None if nothing matches."""
    for candidate in candidates:
        if candidate.get("name") == source_name:
            return candidate

    lowered = source_name.casefold()
    for candidate in candidates:
        if str(candidate.get("name", "")).casefold() == lowered:
            return candidate

    return match_keyword(source_name, candidates, table)


class FieldMapper:
    """Resolves classification fields against the target system, memoised per run.

    Tracker, status and priority resolutions are cached per source ID, including
    fallbacks, so each source value costs one lookup no matter how often it recurs.
    Categories are looked up (and created when missing) on every call.
    """

    def __init__(
        self,
        target: RedmineClient,
        reader: SourceReader,
        *,
        project_id: int,
        fallback_assignee_id: int,
        map_users: bool = False,
        caches: MappingCaches | None = None,
    ) -> None:
        self._target: RedmineClient = target
        self._reader: SourceReader = reader
        self._project_id: int = project_id
        self._fallback_assignee_id: int = fallback_assignee_id
        self._map_users: bool = map_users
        self.caches: MappingCaches = caches if caches is not None else MappingCaches()

    def _list(self, path: str, key: str, params: dict[str, Any] | None = None) -> list[dict[str, Any]]:
        """Candidate records from the target; empty (logged) on failure."""
        try:
            response = self._target.get(path, params=params)
            if response.status_code != 200:
                logger.warning(describe_failure(f"Listing target {key}", response))
                return []
            return response.json().get(key) or []
        except (requests.RequestException, ValueError) as e:
            logger.error(f"Error listing target {key}: {self._target.redact(str(e))}")
            return []

    def _project_trackers(self) -> list[dict[str, Any]]:
        try:
            response = self._target.get(f"/projects/{self._project_id}.json", params={"include": "trackers"})
            if response.status_code != 200:
                logger.warning(describe_failure(f"Fetching target project {self._project_id}", response))
                return []
            return (response.json().get("project") or {}).get("trackers") or []
        except (requests.RequestException, ValueError) as e:
            logger.error(f"Error fetching target project {self._project_id}: {self._target.redact(str(e))}")
            return []

    def classify(self, source_issue: SourceIssue) -> Classification:
        """Resolve every classification field of a source issue."""
        return Classification(
            tracker_id=self.map_tracker(source_issue.get("tracker")),
            status_id=self.map_status((source_issue.get("status") or {}).get("id")),
            priority_id=self.map_priority((source_issue.get("priority") or {}).get("id")),
            category_id=self.map_category(source_issue.get("category")),
            assigned_to_id=self.map_assignee(source_issue.get("assigned_to")),
        )

    def map_tracker(self, source_tracker: dict[str, Any] | None) -> int | None:
        if not source_tracker:
            return None
        source_id: int = source_tracker["id"]
        if source_id in self.caches.trackers:
            return self.caches.trackers[source_id]

        name = source_tracker.get("name") or self._reader.fetch_reference_entity(ReferenceKind.TRACKER, source_id)["name"]
        candidates = self._project_trackers()
        target = resolve_by_name(name, candidates, TRACKER_KEYWORDS)
        if target is None:
            target = candidates[0] if candidates else next(iter(self._list("/trackers.json", "trackers")), None)

        if target is None:
            logger.warning(f"No tracker found for {name}, using tracker {DEFAULT_TRACKER_ID}")
            resolved = DEFAULT_TRACKER_ID
        else:
            logger.info(f"Mapped tracker: {name} -> {target.get('name')}")
            resolved = target["id"]
        self.caches.trackers[source_id] = resolved
        return resolved

    def map_status(self, source_status_id: int | None) -> int | None:
        if source_status_id is None:
            return None
        if source_status_id in self.caches.statuses:
            return self.caches.statuses[source_status_id]

        name = self._reader.fetch_reference_entity(ReferenceKind.STATUS, source_status_id)["name"]
        candidates = self._list("/issue_statuses.json", "issue_statuses")
        target = resolve_by_name(name, candidates, STATUS_KEYWORDS)
        if target is None:
            target = next((s for s in candidates if s.get("is_default")), None)
        if target is None and candidates:
            target = candidates[0]

        resolved = target["id"] if target else None
        logger.info(f"Mapped status: {name} -> {target.get('name') if target else None}")
        self.caches.statuses[source_status_id] = resolved
        return resolved

    def map_priority(self, source_priority_id: int | None) -> int | None:
        if source_priority_id is None:
            return None
        if source_priority_id in self.caches.priorities:
            return self.caches.priorities[source_priority_id]

        name = self._reader.fetch_reference_entity(ReferenceKind.PRIORITY, source_priority_id)["name"]
        candidates = self._list("/enumerations/issue_priorities.json", "issue_priorities")
        target = resolve_by_name(name, candidates, PRIORITY_KEYWORDS)
        if target is None and candidates:
            target = candidates[0]

        if target is None:
            logger.warning(f"No priority found for {name}, using priority {DEFAULT_PRIORITY_ID}")
            resolved = DEFAULT_PRIORITY_ID
        else:
            logger.info(f"Mapped priority: {name} -> {target.get('name')}")
            resolved = target["id"]
        self.caches.priorities[source_priority_id] = resolved
        return resolved

    def map_category(self, source_category: dict[str, Any] | None) -> int | None:
        """Find the project category with the same name, creating it if absent. Not cached."""
        if not source_category or not source_category.get("name"):
            return None
        name: str = source_category["name"]
        path = f"/projects/{self._project_id}/issue_categories.json"

        existing = next((c for c in self._list(path, "issue_categories") if c.get("name") == name), None)
        if existing is not None:
            return existing["id"]

        try:
            response = self._target.post(path, json={"issue_category": {"name": name}})
            if response.status_code != 201:
                logger.error(describe_failure(f"Creating category '{name}'", response))
                return None
            created = response.json()["issue_category"]
        except (requests.RequestException, ValueError, KeyError) as e:
            logger.error(f"Error creating category '{name}': {self._target.redact(str(e))}")
            return None

        logger.info(f"Created category '{name}' in target project {self._project_id}")
        return created["id"]

    def map_assignee(self, source_user: dict[str, Any] | None) -> int | None:
        """Assignee for a created issue: the fallback assignee unless user mapping is enabled."""
        if not self._map_users:
            return self._fallback_assignee_id
        return self.map_user(source_user)

    def map_user(self, source_user: dict[str, Any] | None) -> int | None:
        """Exact login match, else the fallback assignee if it exists, else None."""
        if not source_user:
            return None
        source_id: int = source_user["id"]
        if source_id in self.caches.users:
            return self.caches.users[source_id]

        login = source_user.get("login")
        if login:
            users = self._list("/users.json", "users", params={"name": login})
            match = next((u for u in users if u.get("login") == login), None)
            if match is not None:
                self.caches.users[source_id] = match["id"]
                return match["id"]

        try:
            response = self._target.get(f"/users/{self._fallback_assignee_id}.json")
        except requests.RequestException as e:
            logger.error(f"Error checking fallback assignee: {self._target.redact(str(e))}")
            return None
        if response.status_code == 200:
            self.caches.users[source_id] = self._fallback_assignee_id
            return self._fallback_assignee_id

        logger.warning(f"No target user for source user {source_id} and fallback assignee is missing")
        return None
