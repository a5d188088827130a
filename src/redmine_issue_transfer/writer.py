"""Write side of a transfer: create issues, link parents, upload and attach files, add notes.

No method here raises on network, HTTP or decoding failures; each logs the
cause and returns None, False or an ``UploadResult`` carrying the error.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Final

import requests

from .issue_builder import build_note_text, sanitize_filename
from .models import UploadErrorKind, UploadResult
from .redmine_utils import describe_failure

if TYPE_CHECKING:
    from .redmine_utils import RedmineClient

logger: logging.Logger = logging.getLogger(__name__)

UPDATE_OK: Final[frozenset[int]] = frozenset({200, 204})
OCTET_STREAM: Final[str] = "application/octet-stream"

_UPLOAD_ERRORS: Final[dict[int, tuple[UploadErrorKind, str]]] = {
    400: (UploadErrorKind.BAD_REQUEST, "Bad request (400)"),
    401: (UploadErrorKind.AUTH, "Authentication failed (401): check API key and permissions"),
    403: (UploadErrorKind.AUTH, "Authentication failed (403): check API key and permissions"),
    406: (UploadErrorKind.NOT_ACCEPTABLE, "Server rejected request (406): check server configuration and headers"),
    413: (UploadErrorKind.TOO_LARGE, "File too large (413): check server file size limits"),
    500: (UploadErrorKind.SERVER_ERROR, "Server error (500)"),
}


class RecordWriter:
    """Target-system writes, authenticated as the calling user."""

    _client: RedmineClient

    def __init__(self, client: RedmineClient) -> None:
        self._client = client

    def _update_issue(self, issue_id: int, fields: dict[str, Any], action: str) -> bool:
        try:
            response = self._client.put(f"/issues/{issue_id}.json", json={"issue": fields})
        except requests.RequestException as e:
            logger.error(f"Error while {action} on issue #{issue_id}: {self._client.redact(str(e))}")
            return False
        if response.status_code in UPDATE_OK:
            return True
        logger.error(describe_failure(f"{action.capitalize()} on issue #{issue_id}", response))
        return False

    def create_issue(self, payload: dict[str, Any]) -> int | None:
        """POST a new issue; returns its target ID on 201, else None."""
        try:
            response = self._client.post("/issues.json", json=payload)
        except requests.RequestException as e:
            logger.error(f"Error creating issue: {self._client.redact(str(e))}")
            return None

        if response.status_code != 201:
            logger.error(describe_failure("Creating issue", response))
            return None

        try:
            return int(response.json()["issue"]["id"])
        except (ValueError, KeyError, TypeError) as e:
            logger.error(f"Created issue but could not read its ID (invalid JSON): {e}")
            return None

    def set_parent(self, child_id: int, parent_id: int) -> bool:
        if self._update_issue(child_id, {"parent_issue_id": parent_id}, "setting parent"):
            logger.info(f"Set parent of issue #{child_id} to #{parent_id}")
            return True
        return False

    def upload_blob(self, content: bytes, filename: str) -> UploadResult:
        """Upload raw bytes and return the one-time token.

        The body is always sent as ``application/octet-stream``; the real content
        type is supplied later when the token is attached to an issue.
        """
        safe_name = sanitize_filename(filename)
        logger.debug(f"Uploading {safe_name}: {len(content)} bytes")
        try:
            response = self._client.post(
                "/uploads.json",
                data=content,
                params={"filename": safe_name},
                headers={"Content-Type": OCTET_STREAM, "Accept": "application/json"},
            )
        except requests.Timeout as e:
            logger.error(f"Timeout uploading {safe_name}: {e}")
            return UploadResult(error_kind=UploadErrorKind.NETWORK, error=f"Timeout during upload: {e}")
        except requests.RequestException as e:
            error = self._client.redact(str(e))
            logger.error(f"Error uploading {safe_name}: {error}")
            return UploadResult(error_kind=UploadErrorKind.NETWORK, error=error)

        if response.status_code == 201:
            return self._read_upload_token(response, safe_name)

        kind, error = _UPLOAD_ERRORS.get(
            response.status_code, (UploadErrorKind.UNEXPECTED_STATUS, f"HTTP {response.status_code}")
        )
        if kind in (UploadErrorKind.BAD_REQUEST, UploadErrorKind.SERVER_ERROR, UploadErrorKind.UNEXPECTED_STATUS):
            error = f"{error}: {response.text[:500]}"
        logger.error(f"Upload of {safe_name} failed: {error}")
        return UploadResult(error_kind=kind, error=error)

    def _read_upload_token(self, response: requests.Response, filename: str) -> UploadResult:
        try:
            token = (response.json().get("upload") or {}).get("token")
        except (ValueError, AttributeError):
            logger.error(f"Upload of {filename} returned invalid JSON: {response.text[:500]}")
            return UploadResult(error_kind=UploadErrorKind.INVALID_JSON, error="Invalid JSON response from server")
        if not token:
            logger.error(f"No token in upload response for {filename}: {response.text[:500]}")
            return UploadResult(error_kind=UploadErrorKind.MISSING_TOKEN, error="No token in response")
        logger.info(f"Obtained upload token for {filename}")
        return UploadResult(token=token)

    def attach_to_issue(
        self,
        issue_id: int,
        token: str,
        filename: str,
        content_type: str | None = None,
        description: str | None = None,
    ) -> bool:
        upload = {
            "token": token,
            "filename": filename,
            "content_type": content_type or OCTET_STREAM,
            "description": description or "",
        }
        if self._update_issue(issue_id, {"uploads": [upload]}, f"attaching {filename}"):
            logger.info(f"Attached {filename} to issue #{issue_id}")
            return True
        return False

    def append_note(self, issue_id: int, text: str, attributed_to: str | None, when: str | None) -> bool:
        """Add a note crediting the original author, posted as the calling user."""
        note = build_note_text(text, attributed_to, when)
        if self._update_issue(issue_id, {"notes": note}, "adding note"):
            logger.debug(f"Added note to issue #{issue_id}")
            return True
        return False
