"""
Per-user snapshots of current Keycloak group memberships
"""

import logging
from typing import Dict, List, Tuple

from group_directory import GroupDirectory
from models import FETCH_USER_GROUPS, MembershipSnapshot, OperationResult


logger = logging.getLogger(__name__)


def build_snapshots(client, directory: GroupDirectory) -> Tuple[Dict[str, MembershipSnapshot], List[OperationResult]]:
    """
    Snapshot the group memberships of every Keycloak user.

    Listing the users is all-or-nothing and its errors propagate. A user whose
    groups cannot be fetched is logged and left out of the snapshots, so no
    membership of that user is added or removed this cycle.
    """
    snapshots: Dict[str, MembershipSnapshot] = {}
    failures: List[OperationResult] = []

    users = client.list_users()
    logger.info(f"Loaded {len(users)} users from Keycloak")

    for user in users:
        try:
            groups = client.list_user_groups(user)
        except Exception as e:
            logger.error(f"Failed getting groups of user {user.username}, ignoring user: {e}")
            failures.append(OperationResult(FETCH_USER_GROUPS, username=user.username, error=str(e)))
            continue

        snapshot = MembershipSnapshot(identity=user)
        for group in groups:
            snapshot.groups[group.name] = group
            if directory.is_managed_path(group.path):
                snapshot.managed[group.name] = group

        snapshots[user.username] = snapshot
        logger.debug(f"User {user.username} holds {len(snapshot.groups)} groups, "
                     f"{len(snapshot.managed)} managed")

    return snapshots, failures
