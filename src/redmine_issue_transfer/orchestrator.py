"""Transfer orchestrator that drives one run from source to target.

The TransferOrchestrator owns all per-run state: the mapping caches (via its
FieldMapper), the reference-data cache (via its SourceReader), the
source -> target issue ID map and the pending parent-child relations.

Transfer Flow
-------------
Fetching
    - Page through the source issues of the configured version
    - Any failure here ends the run with an error result

Creating
    For each source issue, in source order:
        a. Resolve tracker, status, priority, category and assignee
        b. Create the target issue (without a parent)
        c. Record source ID -> target ID
        d. If the source issue has a parent, record the relation

Linking hierarchy
    - Runs only after every issue has been created, so a child created
      before its parent is still linked correctly
    - Relations whose parent was never created are dropped

Replicating attachments and notes
    For each created issue:
        a. Download each attachment, upload it, attach the token
        b. Replay each journal with notes as a target note

Error Handling
--------------
Item-level failures (an issue that is not created, a parent link, an
attachment or a note) are logged and recorded in TransferStats. Under
ErrorPolicy.CONTINUE the run carries on; under ErrorPolicy.ABORT the first
one ends the run. The reported count is the number of issues created,
regardless of later link, attachment or note failures.

Nothing is rolled back: a failed or interrupted run leaves the issues it
created in place, and a re-run creates them again.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import TYPE_CHECKING, Any

from . import redmine_utils as rmu
from .attachments import AttachmentReplicator
from .exceptions import ItemTransferError, TransferError
from .field_mapper import FieldMapper
from .issue_builder import build_issue_payload
from .models import ErrorPolicy, TransferOptions, TransferResult, TransferStats
from .relationships import parent_relation, resolve_parent_links
from .source import SourceReader
from .writer import RecordWriter

if TYPE_CHECKING:
    import requests

    from .models import ParentChildRelation, SourceIssue, TargetSettings, TransferConfig

logger = logging.getLogger(__name__)


class TransferPhase(Enum):
    PENDING = "pending"
    FETCHING = "fetching"
    CREATING = "creating"
    LINKING_HIERARCHY = "linking hierarchy"
    REPLICATING = "replicating attachments and notes"
    DONE = "done"
    FAILED = "failed"


class TransferOrchestrator:
    """Runs one transfer. Not reusable and not safe to share between threads.

    Usage:
        orchestrator = TransferOrchestrator.from_settings(config, target_settings)
        result = orchestrator.run()
    """

    _config: TransferConfig
    _reader: SourceReader
    _mapper: FieldMapper
    _writer: RecordWriter
    _attachments: AttachmentReplicator
    _options: TransferOptions

    def __init__(
        self,
        config: TransferConfig,
        reader: SourceReader,
        mapper: FieldMapper,
        writer: RecordWriter,
        *,
        options: TransferOptions | None = None,
    ) -> None:
        self._config = config
        self._reader = reader
        self._mapper = mapper
        self._writer = writer
        self._attachments = AttachmentReplicator(reader, writer)
        self._options = options or TransferOptions()

        self.phase: TransferPhase = TransferPhase.PENDING
        self.created_issues: dict[int, int] = {}
        self.relations: list[ParentChildRelation] = []
        self.stats: TransferStats = TransferStats()

    @classmethod
    def from_settings(
        cls,
        config: TransferConfig,
        target: TargetSettings,
        options: TransferOptions | None = None,
        *,
        source_session: requests.Session | None = None,
        target_session: requests.Session | None = None,
    ) -> TransferOrchestrator:
        """Wire up reader, mapper and writer for a config and the caller's target identity."""
        options = options or TransferOptions()
        source_client = rmu.get_source_client(config, options, session=source_session)
        target_client = rmu.get_target_client(target, options, session=target_session)

        reader = SourceReader(source_client, config.source_version_id, page_size=options.page_size)
        mapper = FieldMapper(
            target_client,
            reader,
            project_id=config.target_project_id,
            fallback_assignee_id=config.fallback_assignee_id,
            map_users=options.map_users,
        )
        return cls(config, reader, mapper, RecordWriter(target_client), options=options)

    def run(self) -> TransferResult:
        """Execute the transfer and summarise it. Never raises for transfer failures."""
        if self.phase is not TransferPhase.PENDING:
            msg = "A TransferOrchestrator can only run once; create a new one"
            raise TransferError(msg)

        logger.info(f"Starting transfer from {self._config.source_url} (version {self._config.source_version_id})")
        try:
            self.phase = TransferPhase.FETCHING
            issues = self._reader.fetch_all_issues()

            self.phase = TransferPhase.CREATING
            self._create_issues(issues)

            self.phase = TransferPhase.LINKING_HIERARCHY
            self._link_hierarchy()

            self.phase = TransferPhase.REPLICATING
            self._replicate_attachments_and_notes(issues)
        except Exception as e:  # noqa: BLE001 - any escape ends the run as a failure result
            logger.exception(f"Transfer failed while {self.phase.value}")
            self.phase = TransferPhase.FAILED
            return TransferResult(success=False, count=self.stats.issues_created, error=str(e), stats=self.stats)

        self.phase = TransferPhase.DONE
        logger.info(
            f"Transfer completed: {self.stats.issues_created} issues, {self.stats.parents_linked} parent links, "
            f"{self.stats.attachments_transferred} attachments, {self.stats.notes_added} notes, "
            f"{len(self.stats.item_failures)} item failures"
        )
        return TransferResult(success=True, count=self.stats.issues_created, stats=self.stats)

    def _item_failed(self, message: str) -> None:
        logger.error(message)
        self.stats.item_failures.append(message)
        if self._options.error_policy is ErrorPolicy.ABORT:
            raise ItemTransferError(message)

    def _create_issues(self, issues: list[SourceIssue]) -> None:
        for source_issue in issues:
            source_id: int = source_issue["id"]
            payload = build_issue_payload(source_issue, self._config, self._mapper.classify(source_issue))
            target_id = self._writer.create_issue(payload)
            if target_id is None:
                self._item_failed(f"Source issue #{source_id} was not created")
                continue

            self.created_issues[source_id] = target_id
            self.stats.issues_created += 1
            logger.info(f"Created target issue #{target_id} from source issue #{source_id}")

            relation = parent_relation(source_issue, target_id)
            if relation is not None:
                self.relations.append(relation)

    def _link_hierarchy(self) -> None:
        links = resolve_parent_links(self.relations, self.created_issues)
        if links:
            logger.info(f"Processing {len(links)} parent-child relationships...")
        for child_id, parent_id in links:
            if self._writer.set_parent(child_id, parent_id):
                self.stats.parents_linked += 1
            else:
                self._item_failed(f"Could not set parent of issue #{child_id} to #{parent_id}")
        self.relations.clear()

    def _replicate_attachments_and_notes(self, issues: list[SourceIssue]) -> None:
        for source_issue in issues:
            source_id: int = source_issue["id"]
            target_id = self.created_issues.get(source_id)
            if target_id is None:
                continue
            self._replicate_attachments(source_id, target_id)
            self._replicate_journals(source_id, target_id)

    def _replicate_attachments(self, source_id: int, target_id: int) -> None:
        logger.info(f"Transferring attachments from source issue #{source_id} to target issue #{target_id}")
        for record in self._reader.fetch_attachments(source_id):
            if self._attachments.transfer(record, target_id):
                self.stats.attachments_transferred += 1
            else:
                filename = record.get("filename", record.get("id"))
                self._item_failed(f"Attachment {filename} of source issue #{source_id} was not transferred")

    def _replicate_journals(self, source_id: int, target_id: int) -> None:
        for journal in self._reader.fetch_journals(source_id):
            notes: str = journal.get("notes") or ""
            if not notes.strip():
                continue
            author: dict[str, Any] = journal.get("user") or {}
            if self._writer.append_note(target_id, notes, author.get("name"), journal.get("created_on")):
                self.stats.notes_added += 1
            else:
                self._item_failed(f"Journal {journal.get('id')} of source issue #{source_id} was not replayed")


def transfer_issues(
    config: TransferConfig,
    target: TargetSettings,
    options: TransferOptions | None = None,
) -> TransferResult:
    """Transfer every issue of ``config.source_version_id`` into the target project.

    Returns:
        TransferResult: ``success`` with the number of created issues, or
        failure with the error that ended the run
    """
    return TransferOrchestrator.from_settings(config, target, options).run()
