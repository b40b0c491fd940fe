"""
Data models for Google Workspace to Keycloak sync
"""

import time
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, List, Optional

from diffsync import DiffSyncModel


class GroupMembership(DiffSyncModel):
    """
    DiffSync model representing a group membership.
    A membership is a relationship between a user (identified by username) and a group.
    """
    _modelname = "membership"
    _identifiers = ("user_username", "group_name")
    _attributes = ()

    user_username: str
    group_name: str

    @classmethod
    def create(cls, adapter, ids, attrs):
        """Queue the creation of this membership in the target adapter."""
        membership = cls(**ids, **attrs)
        membership.adapter = adapter

        if hasattr(adapter, 'pending_operations'):
            adapter.pending_operations.append(('create', membership.user_username, membership.group_name))

        # diffsync adds the returned object to the adapter's store
        return membership

    def delete(self) -> Optional["GroupMembership"]:
        """Queue the removal of this membership from the target adapter."""
        if hasattr(self.adapter, 'pending_operations'):
            self.adapter.pending_operations.append(('delete', self.user_username, self.group_name))

        return self


@dataclass(frozen=True)
class Identity:
    """A Keycloak user. Read-only from the sync's point of view."""
    id: str
    username: str


@dataclass(frozen=True)
class Group:
    """A Keycloak group. ``id`` is None for a group that was never created."""
    name: str
    path: str
    id: Optional[str] = None


@dataclass(frozen=True)
class Reconciliation:
    """Group names to remove from and add to one user's managed memberships."""
    to_remove: FrozenSet[str] = frozenset()
    to_add: FrozenSet[str] = frozenset()

    @property
    def is_noop(self) -> bool:
        return not self.to_remove and not self.to_add


@dataclass
class MembershipSnapshot:
    """Current Keycloak memberships of one user, keyed by group name."""
    identity: Identity
    groups: Dict[str, Group] = field(default_factory=dict)
    managed: Dict[str, Group] = field(default_factory=dict)

    @property
    def managed_names(self) -> FrozenSet[str]:
        return frozenset(self.managed)


@dataclass(frozen=True)
class OperationResult:
    """Outcome of one entity-scoped operation."""
    action: str
    username: Optional[str] = None
    group: Optional[str] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


# Actions recorded in OperationResult.action
FETCH_USER_GROUPS = "fetch-user-groups"
FETCH_SOURCE_GROUPS = "fetch-source-groups"
CREATE_GROUP = "create-group"
ADD_MEMBERSHIP = "add-membership"
REMOVE_MEMBERSHIP = "remove-membership"


@dataclass
class CycleReport:
    """Aggregated outcome of one reconcile cycle."""
    started_at: float = field(default_factory=time.monotonic)
    finished_at: Optional[float] = None
    aborted: Optional[str] = None
    results: List[OperationResult] = field(default_factory=list)
    reconciled_users: int = 0
    dry_run: bool = False

    def extend(self, results):
        self.results.extend(results)

    def finish(self):
        self.finished_at = time.monotonic()
        return self

    @property
    def duration(self) -> float:
        end = self.finished_at if self.finished_at is not None else time.monotonic()
        return end - self.started_at

    @property
    def failures(self) -> List[OperationResult]:
        return [r for r in self.results if not r.ok]

    @property
    def skipped_users(self) -> List[str]:
        return sorted({
            r.username for r in self.failures
            if r.action in (FETCH_USER_GROUPS, FETCH_SOURCE_GROUPS)
        })

    def count(self, action: str, ok: bool = True) -> int:
        return sum(1 for r in self.results if r.action == action and r.ok == ok)
