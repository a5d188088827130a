"""Attachment replication from the source issue to the created target issue."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .source import SourceReader
    from .writer import RecordWriter

logger: logging.Logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SourceAttachment:
    """The parts of a source attachment record needed to replicate it."""

    attachment_id: int | None
    filename: str
    content_url: str
    content_type: str | None = None
    description: str | None = None

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> SourceAttachment:
        return cls(
            attachment_id=record.get("id"),
            filename=record.get("filename") or f"attachment-{record.get('id')}",
            content_url=record.get("content_url") or "",
            content_type=record.get("content_type"),
            description=record.get("description"),
        )


class AttachmentReplicator:
    """Downloads attachments from the source and re-attaches them in the target.

    Each attachment is independent: ``transfer`` reports failure through its
    return value and never raises for network or HTTP errors.
    """

    _reader: SourceReader
    _writer: RecordWriter

    def __init__(self, reader: SourceReader, writer: RecordWriter) -> None:
        self._reader = reader
        self._writer = writer

    def transfer(self, record: dict[str, Any], target_issue_id: int) -> bool:
        """Replicate one attachment onto ``target_issue_id``.

        Args:
            record: Attachment record as listed on the source issue
            target_issue_id: ID of the already created target issue

        Returns:
            True if the file ended up attached to the target issue
        """
        attachment = SourceAttachment.from_record(record)
        logger.info(f"Processing attachment {attachment.filename} (ID: {attachment.attachment_id})")

        if not attachment.content_url:
            logger.error(f"No content URL for attachment {attachment.filename}")
            return False

        content = self._reader.download_attachment(attachment.content_url)
        if content is None:
            return False

        upload = self._writer.upload_blob(content, attachment.filename)
        if not upload.success or upload.token is None:
            error_kind = upload.error_kind.value if upload.error_kind else "unknown"
            logger.error(f"Failed to upload {attachment.filename} ({error_kind}): {upload.error}")
            return False

        return self._writer.attach_to_issue(
            target_issue_id,
            upload.token,
            attachment.filename,
            attachment.content_type,
            attachment.description,
        )
