"""
Index of the managed Keycloak subtree: the synced parent group and its children
"""

import logging
import threading
from typing import Dict, List, Optional

from models import CREATE_GROUP, Group, OperationResult


logger = logging.getLogger(__name__)

PATH_SEPARATOR = "/"


class GroupDirectory:
    """
    Managed parent group plus a name -> group map of its direct children.

    Rebuilt at the start of every cycle. Missing children are created lazily by
    ensure_child() and cached, so each name is created at most once per cycle.
    """

    def __init__(self, client, parent: Group, children: Optional[Dict[str, Group]] = None):
        self.client = client
        self.parent = parent
        self.children: Dict[str, Group] = dict(children or {})
        self.results: List[OperationResult] = []
        self._failed: set = set()
        self._lock = threading.Lock()

    @classmethod
    def load(cls, client, parent_name: str) -> "GroupDirectory":
        """
        Find (or create) the parent group and enumerate its children.
        Errors propagate: the cycle cannot run without the managed subtree.
        """
        parent = client.find_group_exact(parent_name)

        # When the parent is not found, create it. It has no children yet.
        if parent is None:
            logger.info(f"Synced parent group '{parent_name}' not found, creating it")
            parent = client.create_group(parent_name)
            return cls(client, parent)

        children = {child.name: child for child in client.list_group_children(parent)}
        logger.info(f"Loaded {len(children)} child groups of {parent.path}")
        return cls(client, parent, children)

    def is_managed_path(self, path: Optional[str]) -> bool:
        """True when ``path`` lies strictly below the parent group."""
        if not path:
            return False
        return path.startswith(self.parent.path.rstrip(PATH_SEPARATOR) + PATH_SEPARATOR)

    def get(self, name: str) -> Optional[Group]:
        return self.children.get(name)

    def ensure_child(self, name: str) -> Optional[Group]:
        """
        Return the child group called ``name``, creating it when missing.
        Returns None when the group cannot be created this cycle.
        """
        with self._lock:
            group = self.children.get(name)
            if group is not None:
                return group

            if name in self._failed:
                return None

            logger.debug(f"Creating missing group in Keycloak: {name}")
            try:
                group = self.client.create_group(name, self.parent)
            except Exception as e:
                logger.error(f"Failed creating group '{name}' in Keycloak: {e}")
                self._failed.add(name)
                self.results.append(OperationResult(CREATE_GROUP, group=name, error=str(e)))
                return None

            self.children[name] = group
            self.results.append(OperationResult(CREATE_GROUP, group=name))
            return group
