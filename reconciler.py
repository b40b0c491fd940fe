"""
Reconcile Keycloak group memberships against Google Workspace.

The diff itself is computed with diffsync: both sides of one user are loaded
into a MembershipAdapter and the Keycloak side is synced from the Google side. The
GroupMembership create/delete hooks queue the operations instead of touching
Keycloak, and apply_reconciliation() executes them one user at a time.
"""

import logging
from typing import Dict, Iterable, List, Mapping, Optional, Set

from diffsync import Adapter

from group_directory import GroupDirectory
from models import (
    ADD_MEMBERSHIP,
    REMOVE_MEMBERSHIP,
    GroupMembership,
    MembershipSnapshot,
    OperationResult,
    Reconciliation,
)


logger = logging.getLogger(__name__)


class MembershipAdapter(Adapter):
    """
    DiffSync adapter holding (username, group name) memberships.
    Operations queued by sync_from() are collected in pending_operations.
    """

    membership = GroupMembership
    top_level = ["membership"]

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.pending_operations: list = []

    def load(self, memberships: Optional[Mapping[str, Iterable[str]]] = None):
        """Load memberships given as username -> group names."""
        count = 0
        for username, group_names in (memberships or {}).items():
            for group_name in group_names:
                self.add(GroupMembership(user_username=username, group_name=group_name, adapter=self))
                count += 1
        logger.debug(f"Loaded {count} memberships into {self.name}")


def reconcile(username: str, managed_snapshot: Iterable[str], source_set: Iterable[str]) -> Reconciliation:
    """
    Groups to remove (managed but not in source) and to add (source but not managed).

    Every user is diffed on a fresh pair of adapters: diffsync joins the
    identifiers of a membership into one key with "__", so memberships of
    different users must never share a store.
    """
    keycloak = MembershipAdapter(name="keycloak")
    keycloak.load({username: set(managed_snapshot)})

    google = MembershipAdapter(name="google")
    google.load({username: set(source_set)})

    keycloak.sync_from(google)

    to_remove: Set[str] = set()
    to_add: Set[str] = set()
    for operation, _, group_name in keycloak.pending_operations:
        if operation == 'create':
            to_add.add(group_name)
        elif operation == 'delete':
            to_remove.add(group_name)

    return Reconciliation(to_remove=frozenset(to_remove), to_add=frozenset(to_add))


def plan_memberships(managed_by_user: Mapping[str, Iterable[str]],
                     source_by_user: Mapping[str, Iterable[str]]) -> Dict[str, Reconciliation]:
    """
    Compute the reconciliation of every user of a cycle.

    Only pass users whose data is complete on both sides: a user missing from
    ``source_by_user`` would lose every managed membership.
    """
    usernames = set(managed_by_user) | set(source_by_user)
    return {
        username: reconcile(username, managed_by_user.get(username, ()), source_by_user.get(username, ()))
        for username in usernames
    }


def apply_reconciliation(client, directory: GroupDirectory, snapshot: MembershipSnapshot,
                         reconciliation: Reconciliation) -> List[OperationResult]:
    """
    Execute the removals and additions of one user.
    Each call is independent: a failure is logged, recorded and processing continues.
    """
    identity = snapshot.identity
    results: List[OperationResult] = []

    # Deletions: only groups of the managed subtree can be in to_remove
    for group_name in sorted(reconciliation.to_remove):
        group = snapshot.managed[group_name]
        logger.debug(f"Deleting user {identity.username} from group {group.path}")
        try:
            client.remove_membership(identity, group)
        except Exception as e:
            logger.error(f"Failed deleting user {identity.username} from group {group_name}: {e}")
            results.append(OperationResult(REMOVE_MEMBERSHIP, identity.username, group_name, str(e)))
            continue
        results.append(OperationResult(REMOVE_MEMBERSHIP, identity.username, group_name))

    # Additions: missing groups are created under the synced parent first
    for group_name in sorted(reconciliation.to_add):
        group = directory.ensure_child(group_name)
        if group is None:
            # Adding a membership to a group that does not exist would fail too
            logger.warning(f"Skipping membership {identity.username} -> {group_name}: group unavailable")
            results.append(OperationResult(ADD_MEMBERSHIP, identity.username, group_name,
                                           "group could not be created"))
            continue

        logger.debug(f"Adding user {identity.username} to group {group.path}")
        try:
            client.add_membership(identity, group)
        except Exception as e:
            logger.error(f"Failed adding user {identity.username} to group {group_name}: {e}")
            results.append(OperationResult(ADD_MEMBERSHIP, identity.username, group_name, str(e)))
            continue
        results.append(OperationResult(ADD_MEMBERSHIP, identity.username, group_name))

    return results
