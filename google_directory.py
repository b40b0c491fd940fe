"""
Google Workspace directory client (source of truth for group memberships)
"""

import logging
from typing import List, Optional

from google.oauth2 import service_account
from googleapiclient.discovery import build


logger = logging.getLogger(__name__)

SCOPES = [
    "https://www.googleapis.com/auth/admin.directory.group.readonly",
    "https://www.googleapis.com/auth/admin.directory.user.readonly",
]


class GoogleDirectory:
    """
    Reads group memberships from the Google Workspace Admin SDK.
    Group names are the group email addresses.
    """

    def __init__(self, credentials_path: str, admin_subject: Optional[str] = None, service=None):
        self.credentials_path = credentials_path
        self.admin_subject = admin_subject
        self.service = service

    def connect(self):
        """Build the directory service from the service account credentials file."""
        logger.info(f"Loading Google service account credentials: {self.credentials_path}")

        credentials = service_account.Credentials.from_service_account_file(
            self.credentials_path, scopes=SCOPES
        )
        if self.admin_subject:
            logger.info(f"Using domain-wide delegation as {self.admin_subject}")
            credentials = credentials.with_subject(self.admin_subject)

        self.service = build('admin', 'directory_v1', credentials=credentials, cache_discovery=False)
        logger.info("Successfully connected to Google Workspace")

    def list_source_groups_for_identity(self, domain: str, username: str) -> List[str]:
        """Return every group of ``username`` in ``domain``, following all result pages."""
        if self.service is None:
            self.connect()

        groups: List[str] = []
        page_token = None

        while True:
            results = self.service.groups().list(
                domain=domain,
                userKey=username,
                pageToken=page_token,
            ).execute()

            groups.extend(g["email"] for g in results.get("groups", []))

            page_token = results.get("nextPageToken")
            if not page_token:
                break

        logger.debug(f"Found {len(groups)} Google groups for {username}")
        return groups
