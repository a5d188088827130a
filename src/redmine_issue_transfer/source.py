"""Read issues, reference data, attachments and journals from the source Redmine."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Final

import requests

from .exceptions import SourceFetchError
from .models import ReferenceDataCache, ReferenceKind
from .redmine_utils import describe_failure

if TYPE_CHECKING:
    from .models import SourceIssue
    from .redmine_utils import RedmineClient

logger: logging.Logger = logging.getLogger(__name__)

ISSUE_INCLUDES: Final[str] = "attachments,relations,children,journals"

_REFERENCE_ENDPOINTS: Final[dict[ReferenceKind, tuple[str, str]]] = {
    # kind -> (path template, response key)
    ReferenceKind.TRACKER: ("/trackers/{id}.json", "tracker"),
    ReferenceKind.STATUS: ("/issue_statuses/{id}.json", "issue_status"),
    ReferenceKind.PRIORITY: ("/enumerations/issue_priorities.json", "issue_priorities"),
}

_PLACEHOLDER_NAMES: Final[dict[ReferenceKind, str]] = {
    ReferenceKind.TRACKER: "Tracker",
    ReferenceKind.STATUS: "Status",
    ReferenceKind.PRIORITY: "Priority",
}


def placeholder_reference(kind: ReferenceKind, entity_id: int) -> dict[str, Any]:
    """Stand-in record for a reference entity that could not be fetched."""
    return {"id": entity_id, "name": f"{_PLACEHOLDER_NAMES[kind]} {entity_id}"}


class SourceReader:
    """Read-only access to the source system."""

    _client: RedmineClient
    _version_id: int
    _page_size: int
    references: ReferenceDataCache

    def __init__(
        self,
        client: RedmineClient,
        version_id: int,
        *,
        page_size: int = 100,
        references: ReferenceDataCache | None = None,
    ) -> None:
        self._client = client
        self._version_id = version_id
        self._page_size = page_size
        self.references = references if references is not None else ReferenceDataCache()

    def fetch_all_issues(self) -> list[SourceIssue]:
        """Fetch every issue in the configured version, page by page, in API order.

        Raises:
            SourceFetchError: If any page cannot be fetched or decoded
        """
        issues: list[SourceIssue] = []
        offset = 0
        while True:
            page = self._fetch_page(offset)
            if not page:
                break
            issues.extend(page)
            offset += self._page_size
            if len(page) < self._page_size:
                break

        logger.info(f"Fetched {len(issues)} issues from source version {self._version_id}")
        return issues

    def _fetch_page(self, offset: int) -> list[SourceIssue]:
        params = {
            "fixed_version_id": self._version_id,
            "limit": self._page_size,
            "offset": offset,
            "include": ISSUE_INCLUDES,
        }
        try:
            response = self._client.get("/issues.json", params=params)
        except requests.RequestException as e:
            msg = f"Failed to fetch issues at offset {offset}: {self._client.redact(str(e))}"
            raise SourceFetchError(msg) from e

        if response.status_code != 200:
            msg = f"Failed to fetch issues: {response.status_code} - {response.text[:500]}"
            raise SourceFetchError(msg)

        try:
            data = response.json()
        except ValueError as e:
            msg = f"Failed to fetch issues at offset {offset}: invalid JSON in response"
            raise SourceFetchError(msg) from e

        return data.get("issues") or []

    def fetch_reference_entity(self, kind: ReferenceKind, entity_id: int) -> dict[str, Any]:
        """Return the source tracker/status/priority record for ``entity_id``.

        Looked up at most once per ID; failures and unknown IDs are cached as a
        placeholder so callers always get a record with a name.
        """
        cache = self.references.for_kind(kind)
        if entity_id in cache:
            return cache[entity_id]

        record = self._request_reference(kind, entity_id)
        if record is None:
            record = placeholder_reference(kind, entity_id)
        cache[entity_id] = record
        return record

    def _request_reference(self, kind: ReferenceKind, entity_id: int) -> dict[str, Any] | None:
        path_template, key = _REFERENCE_ENDPOINTS[kind]
        try:
            response = self._client.get(path_template.format(id=entity_id))
            if response.status_code != 200:
                logger.warning(describe_failure(f"Fetching source {kind.value} {entity_id}", response))
                return None
            payload = response.json().get(key)
        except (requests.RequestException, ValueError) as e:
            logger.error(f"Error fetching source {kind.value} {entity_id}: {self._client.redact(str(e))}")
            return None

        if kind is ReferenceKind.PRIORITY:
            # Priorities are only listed as a whole
            return next((p for p in payload or [] if p.get("id") == entity_id), None)
        return payload

    def _fetch_issue_field(self, issue_id: int, include: str) -> list[dict[str, Any]]:
        try:
            response = self._client.get(f"/issues/{issue_id}.json", params={"include": include})
            if response.status_code != 200:
                logger.error(describe_failure(f"Fetching {include} of source issue #{issue_id}", response))
                return []
            issue = response.json().get("issue") or {}
        except (requests.RequestException, ValueError) as e:
            logger.error(f"Error fetching {include} of source issue #{issue_id}: {self._client.redact(str(e))}")
            return []
        return issue.get(include) or []

    def fetch_attachments(self, issue_id: int) -> list[dict[str, Any]]:
        """Attachments of a source issue; empty on any failure."""
        attachments = self._fetch_issue_field(issue_id, "attachments")
        logger.info(f"Found {len(attachments)} attachments for source issue #{issue_id}")
        return attachments

    def fetch_journals(self, issue_id: int) -> list[dict[str, Any]]:
        """Journals of a source issue; empty on any failure."""
        return self._fetch_issue_field(issue_id, "journals")

    def download_attachment(self, content_url: str) -> bytes | None:
        """Raw bytes behind an attachment's content URL, or None (logged) on failure."""
        try:
            response = self._client.get(content_url)
        except requests.RequestException as e:
            logger.error(f"Error downloading {content_url}: {self._client.redact(str(e))}")
            return None
        if response.status_code != 200:
            logger.error(describe_failure(f"Downloading {content_url}", response))
            return None
        logger.debug(f"Downloaded {content_url}: {len(response.content)} bytes")
        return response.content
