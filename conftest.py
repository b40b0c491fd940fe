"""
In-memory stand-ins for Keycloak and Google Workspace shared by the tests
"""

import itertools
from typing import Dict, List, Optional, Set

import pytest

from config import Settings
from models import Group, Identity


class FakeSession:
    def __init__(self):
        self.fail_login = False
        self.logins = 0

    def ensure_token(self):
        if self.fail_login:
            raise ConnectionError("token endpoint unreachable")
        self.logins += 1


class FakeKeycloak:
    """Keycloak realm kept in memory, with switches to make calls fail."""

    def __init__(self):
        self.session = FakeSession()
        self._ids = itertools.count(1)
        self.groups: Dict[str, Group] = {}
        self.users: List[Identity] = []
        self.memberships: Dict[str, Set[str]] = {}

        self.fail_list_users = False
        self.fail_children = False
        self.fail_find = False
        self.fail_user_groups: Set[str] = set()
        self.fail_create: Set[str] = set()
        self.fail_add: Set[tuple] = set()
        self.fail_remove: Set[tuple] = set()

        self.create_calls: List[str] = []
        self.add_calls: List[tuple] = []
        self.remove_calls: List[tuple] = []

    # Setup helpers

    def add_user(self, username: str) -> Identity:
        identity = Identity(id=f"u-{username}", username=username)
        self.users.append(identity)
        self.memberships[identity.id] = set()
        return identity

    def add_group(self, path: str) -> Group:
        name = path.rsplit("/", 1)[-1]
        group = Group(name=name, path=path, id=f"g{next(self._ids)}")
        self.groups[group.id] = group
        return group

    def group_by_path(self, path: str) -> Optional[Group]:
        for group in self.groups.values():
            if group.path == path:
                return group
        return None

    def join(self, username: str, path: str):
        group = self.group_by_path(path) or self.add_group(path)
        self.memberships[self.user(username).id].add(group.id)

    def user(self, username: str) -> Identity:
        return next(u for u in self.users if u.username == username)

    def paths_of(self, username: str) -> Set[str]:
        return {self.groups[gid].path for gid in self.memberships[self.user(username).id]}

    # KeycloakClient interface

    def list_users(self):
        if self.fail_list_users:
            raise ConnectionError("cannot list users")
        return list(self.users)

    def list_group_children(self, group):
        if self.fail_children:
            raise ConnectionError("cannot list children")
        prefix = group.path + "/"
        return [g for g in self.groups.values()
                if g.path.startswith(prefix) and "/" not in g.path[len(prefix):]]

    def list_user_groups(self, identity):
        if identity.username in self.fail_user_groups:
            raise ConnectionError(f"cannot list groups of {identity.username}")
        return [self.groups[gid] for gid in sorted(self.memberships[identity.id])]

    def find_group_exact(self, name):
        if self.fail_find:
            raise ConnectionError("cannot search groups")
        return self.group_by_path(f"/{name}")

    def create_group(self, name, parent=None):
        self.create_calls.append(name)
        if name in self.fail_create:
            raise ConnectionError(f"cannot create {name}")
        path = f"{parent.path if parent else ''}/{name}"
        return self.add_group(path)

    def add_membership(self, identity, group):
        self.add_calls.append((identity.username, group.name))
        if (identity.username, group.name) in self.fail_add:
            raise ConnectionError("add failed")
        self.memberships[identity.id].add(group.id)

    def remove_membership(self, identity, group):
        self.remove_calls.append((identity.username, group.name))
        if (identity.username, group.name) in self.fail_remove:
            raise ConnectionError("remove failed")
        self.memberships[identity.id].discard(group.id)


class FakeGoogle:
    """Google Workspace group memberships keyed by username."""

    def __init__(self, groups: Optional[Dict[str, List[str]]] = None):
        self.groups: Dict[str, List[str]] = dict(groups or {})
        self.failing: Set[str] = set()
        self.calls: List[tuple] = []

    def list_source_groups_for_identity(self, domain, username):
        self.calls.append((domain, username))
        if username in self.failing:
            raise ConnectionError(f"Google lookup failed for {username}")
        return list(self.groups.get(username, []))


@pytest.fixture
def keycloak():
    return FakeKeycloak()


@pytest.fixture
def google():
    return FakeGoogle()


@pytest.fixture
def settings():
    return Settings(
        gsuite_credentials="credentials.json",
        gsuite_domain="example.com",
        keycloak_uri="https://sso.example.com",
        keycloak_realm="corp",
        keycloak_client_id="sync",
        keycloak_client_secret="secret",
        synced_parent_group="workspace",
    )
