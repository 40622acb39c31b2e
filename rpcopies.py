#!/usr/bin/env python3
"""
Consistency group lookup and copy selection

GroupDirectory talks to the gateway; classify_copies and resolve_copy are
pure functions over Copy records and the configured Identifiers.
"""

import logging
from typing import List, Optional

from rpconfig import Identifiers
from rpmodels import (
    Copy,
    GroupNotFoundError,
    ReplicationGroup,
    ResolutionError,
    SelectionIntent,
)

logger = logging.getLogger(__name__)


class GroupDirectory:
    def __init__(self, client) -> None:
        self.client = client

    def list_groups(self) -> List[ReplicationGroup]:
        """All consistency groups in API order, names resolved, copies not loaded"""
        groups = []
        for group_id in self.client.list_groups():
            groups.append(
                ReplicationGroup(id=group_id, name=self.client.get_group_name(group_id))
            )
        return groups

    def list_group_names(self) -> List[str]:
        return [g.name for g in self.list_groups()]

    def find_group(self, group_name: str) -> ReplicationGroup:
        """
        Look up a consistency group by its display name.

        Raises:
            GroupNotFoundError: No group carries this name
        """
        for group in self.list_groups():
            if group.name == group_name:
                return group
        raise GroupNotFoundError(group_name)

    def get_copies(self, group_id: int) -> List[Copy]:
        return self.client.get_group_copies(group_id)

    def load_group(self, group: ReplicationGroup) -> ReplicationGroup:
        """Fresh snapshot of the group including its copies"""
        return ReplicationGroup(id=group.id, name=group.name, copies=self.get_copies(group.id))

    def administered_group_ids(self) -> List[int]:
        return self.client.list_user_administered_groups()

    def filter_administered(self, groups: List[ReplicationGroup]) -> List[ReplicationGroup]:
        """Restrict groups to those the authenticated user may administer"""
        allowed = set(self.administered_group_ids())
        kept = [g for g in groups if g.id in allowed]
        excluded = [g.name for g in groups if g.id not in allowed]
        if excluded:
            logger.info(f"Excluding {len(excluded)} group(s) not administered by user: {excluded}")
        return kept


def classify_copies(copies: List[Copy], identifiers: Identifiers) -> List[Copy]:
    """
    Order copies for display and selection: production first, test last.

    Stable partition into three buckets (production, neither production nor
    test, test); API order is kept within each bucket. A copy matching both
    the production and test rules lands in the production bucket.
    """
    production, middle, test = [], [], []
    for copy in copies:
        if identifiers.production.matches(copy.name):
            production.append(copy)
        elif identifiers.test.matches(copy.name):
            test.append(copy)
        else:
            middle.append(copy)
    return production + middle + test


def eligible_copies(copies: List[Copy], identifiers: Identifiers) -> List[Copy]:
    return [c for c in copies if not identifiers.production.matches(c.name)]


def resolve_copy(
    copies: List[Copy], intent: SelectionIntent, identifiers: Identifiers
) -> Copy:
    """
    Pick the single non-production copy the intent refers to.

    An exact name must match a copy name exactly. A role token matches by
    the dr or test rule; for the dr role, copies that also match the test
    rule are passed over so a loose dr expression never selects a test copy.

    Raises:
        ResolutionError: Nothing eligible matched, lists every candidate name
    """
    candidates = eligible_copies(copies, identifiers)

    selected: Optional[Copy] = None
    if intent.copy_name:
        selected = next((c for c in candidates if c.name == intent.copy_name), None)
    else:
        rule = identifiers.for_role(intent.role)
        for copy in candidates:
            if not rule.matches(copy.name):
                continue
            if intent.role != SelectionIntent.TEST and identifiers.test.matches(copy.name):
                logger.debug(f"Skipping {copy.name}: also matches the test copy rule")
                continue
            selected = copy
            break

    if selected is None:
        raise ResolutionError(str(intent), [c.name for c in candidates])
    return selected
