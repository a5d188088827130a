"""Parent/child relationship bookkeeping between the create and link passes."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from .models import ParentChildRelation

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping

    from .models import SourceIssue

logger: logging.Logger = logging.getLogger(__name__)


def parent_relation(source_issue: SourceIssue, child_target_id: int) -> ParentChildRelation | None:
    """Relation to record for a just-created issue, if its source has a parent."""
    parent = source_issue.get("parent") or {}
    source_parent_id = parent.get("id")
    if source_parent_id is None:
        return None
    return ParentChildRelation(child_target_id=child_target_id, source_parent_id=source_parent_id)


def resolve_parent_links(
    relations: Iterable[ParentChildRelation],
    created_issues: Mapping[int, int],
) -> list[tuple[int, int]]:
    """Translate recorded relations into (child target ID, parent target ID) pairs.

    Must only be called once every issue has been created: a parent that is
    missing from ``created_issues`` at that point was never created, and its
    relations are dropped.

    Args:
        relations: Relations recorded while creating issues
        created_issues: Source issue ID -> target issue ID

    Returns:
        Links to apply, in the order the relations were recorded
    """
    links: list[tuple[int, int]] = []
    for relation in relations:
        target_parent_id = created_issues.get(relation.source_parent_id)
        if target_parent_id is None:
            logger.info(
                f"Parent #{relation.source_parent_id} of target issue #{relation.child_target_id} "
                "was not transferred; leaving it without a parent"
            )
            continue
        links.append((relation.child_target_id, target_parent_id))

    logger.debug(f"Resolved {len(links)} of the recorded parent-child relations")
    return links
