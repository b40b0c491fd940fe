"""
Keycloak admin REST client
"""

import logging
import time
from typing import Any, Callable, Dict, List, Optional

import oauthlib.oauth2
import oauthlib.oauth2.rfc6749.errors
import requests
import requests_oauthlib

from models import Group, Identity
from pagination import DEFAULT_PAGE_SIZE, collect_pages


logger = logging.getLogger(__name__)

# Refresh the access token this many seconds before it actually expires
TOKEN_LEEWAY = 30.0


class KeycloakSession:
    """
    Authenticated session against the Keycloak admin API.
    Uses the client credentials grant of a service account client. The
    grant has no refresh token, so an expired token is fetched again.
    """

    def __init__(self, uri: str, realm: str, client_id: str, client_secret: str,
                 oauth: Optional[requests_oauthlib.OAuth2Session] = None,
                 clock: Callable[[], float] = time.time,
                 timeout: float = 30.0):
        self.base_url = uri.rstrip('/')
        self.realm = realm
        self.client_id = client_id
        self.client_secret = client_secret
        self.oauth = oauth or requests_oauthlib.OAuth2Session(
            client=oauthlib.oauth2.BackendApplicationClient(client_id=client_id))
        self.clock = clock
        self.timeout = timeout

    @property
    def token_url(self) -> str:
        return f"{self.base_url}/realms/{self.realm}/protocol/openid-connect/token"

    @property
    def admin_url(self) -> str:
        return f"{self.base_url}/admin/realms/{self.realm}"

    @property
    def access_token(self) -> Optional[str]:
        return (self.oauth.token or {}).get("access_token")

    def token_expired(self) -> bool:
        if self.access_token is None:
            return True
        # oauthlib stores the absolute expiry next to expires_in
        expires_at = self.oauth.token.get("expires_at")
        return expires_at is not None and self.clock() >= float(expires_at) - TOKEN_LEEWAY

    def login(self):
        """Request a fresh access token."""
        logger.debug(f"Requesting Keycloak access token for client {self.client_id}")
        self.oauth.fetch_token(
            token_url=self.token_url,
            client_id=self.client_id,
            client_secret=self.client_secret,
            timeout=self.timeout,
        )
        logger.info(f"Signed in to Keycloak realm {self.realm}")

    def ensure_token(self):
        """Refresh the access token when it is missing or about to expire."""
        if self.token_expired():
            self.login()

    def request(self, method: str, path: str, **kwargs) -> requests.Response:
        self.ensure_token()

        url = f"{self.admin_url}{path}"
        try:
            response = self.oauth.request(method, url, timeout=self.timeout, **kwargs)
        except oauthlib.oauth2.rfc6749.errors.TokenExpiredError:
            logger.info("Keycloak access token expired, requesting a new one")
            self.login()
            response = self.oauth.request(method, url, timeout=self.timeout, **kwargs)

        response.raise_for_status()
        return response

    def close(self):
        self.oauth.close()


class KeycloakClient:
    """
    Group and membership operations on a Keycloak realm.
    Every method raises requests.RequestException when the call fails.
    """

    def __init__(self, session: KeycloakSession, page_size: int = DEFAULT_PAGE_SIZE,
                 dry_run: bool = False):
        self.session = session
        self.page_size = page_size
        self.dry_run = dry_run

    def _get_json(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        return self.session.request("GET", path, params=params).json()

    def _paged(self, path: str, params: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        def fetch_page(first: int, max_results: int):
            page_params = dict(params or {})
            page_params.update({"first": first, "max": max_results})
            return self._get_json(path, page_params)

        return collect_pages(fetch_page, self.page_size)

    @staticmethod
    def _to_group(data: Dict[str, Any], parent_path: Optional[str] = None) -> Group:
        name = data["name"]
        path = data.get("path") or f"{parent_path or ''}/{name}"
        return Group(name=name, path=path, id=data.get("id"))

    @staticmethod
    def _created_id(response: requests.Response) -> Optional[str]:
        location = response.headers.get("Location")
        if location:
            return location.rstrip('/').rsplit('/', 1)[-1]
        if response.content:
            return response.json().get("id")
        return None

    def list_users(self) -> List[Identity]:
        users = self._paged("/users", {"briefRepresentation": "true"})
        return [Identity(id=u["id"], username=u["username"]) for u in users]

    def list_group_children(self, group: Group) -> List[Group]:
        children = self._paged(f"/groups/{group.id}/children", {"briefRepresentation": "true"})
        return [self._to_group(child, group.path) for child in children]

    def list_user_groups(self, identity: Identity) -> List[Group]:
        groups = self._paged(f"/users/{identity.id}/groups", {"briefRepresentation": "true"})
        return [self._to_group(g) for g in groups]

    def find_group_exact(self, name: str) -> Optional[Group]:
        """Look up a top level group by exact name, without descending into subgroups."""
        # The search also returns top level groups that only have a matching
        # subgroup, sorted by name, so every page has to be checked
        results = self._paged("/groups", {
            "search": name,
            "exact": "true",
            "briefRepresentation": "true",
        })

        for data in results:
            group = self._to_group(data)
            if group.name == name and group.path == f"/{name}":
                return group

        return None

    def create_group(self, name: str, parent: Optional[Group] = None) -> Group:
        """Create a top level group, or a child of ``parent`` when given."""
        parent_path = parent.path if parent else ""
        path = f"{parent_path}/{name}"

        if self.dry_run:
            logger.info(f"[DRY RUN] Would create group: {path}")
            return Group(name=name, path=path)

        endpoint = f"/groups/{parent.id}/children" if parent else "/groups"
        response = self.session.request("POST", endpoint, json={"name": name})

        group = Group(name=name, path=path, id=self._created_id(response))
        logger.info(f"Created group: {path}")
        return group

    def add_membership(self, identity: Identity, group: Group):
        if self.dry_run:
            logger.info(f"[DRY RUN] Would add: {identity.username} member {group.path}")
            return

        self.session.request("PUT", f"/users/{identity.id}/groups/{group.id}")
        logger.info(f"Added membership: {identity.username} member {group.path}")

    def remove_membership(self, identity: Identity, group: Group):
        if self.dry_run:
            logger.info(f"[DRY RUN] Would remove: {identity.username} member {group.path}")
            return

        self.session.request("DELETE", f"/users/{identity.id}/groups/{group.id}")
        logger.info(f"Removed membership: {identity.username} member {group.path}")
