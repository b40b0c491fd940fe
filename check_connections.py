#!/usr/bin/env python3
"""
Verify the Keycloak and Google Workspace connections independently
"""

import argparse
import logging
import sys

import oauthlib.oauth2.rfc6749.errors
import requests
from google.auth.exceptions import GoogleAuthError
from googleapiclient.errors import HttpError

from config import ConfigError, build_parser, load_config
from google_directory import GoogleDirectory
from keycloak_client import KeycloakClient, KeycloakSession

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def check_keycloak_connection(settings):
    """Sign in to Keycloak and look up the synced parent group"""
    print("\n🔍 Testing Keycloak Connection...")

    session = KeycloakSession(
        settings.keycloak_uri,
        settings.keycloak_realm,
        settings.keycloak_client_id,
        settings.keycloak_client_secret,
    )
    client = KeycloakClient(session)

    try:
        session.login()
        print(f"✅ Signed in to Keycloak: {settings.keycloak_uri} (realm {settings.keycloak_realm})")

        parent = client.find_group_exact(settings.synced_parent_group)
        if parent is None:
            print(f"⚠️  Parent group '{settings.synced_parent_group}' does not exist yet")
            print("   (It will be created on the first sync)")
        else:
            children = client.list_group_children(parent)
            print(f"✅ Found parent group {parent.path} with {len(children)} child groups")
            for child in children[:5]:
                print(f"   - {child.name}")

        return True

    except (requests.RequestException, oauthlib.oauth2.rfc6749.errors.OAuth2Error) as e:
        print(f"❌ Keycloak connection failed: {e}")
        return False
    finally:
        session.close()


def check_google_connection(settings, username=None):
    """Load the service account and optionally list the groups of one user"""
    print("\n🔍 Testing Google Workspace Connection...")

    google = GoogleDirectory(settings.gsuite_credentials, settings.gsuite_admin_subject)

    try:
        google.connect()
        print(f"✅ Connected to Google Workspace for domain {settings.gsuite_domain}")

        if username:
            groups = google.list_source_groups_for_identity(settings.gsuite_domain, username)
            print(f"✅ Found {len(groups)} groups for {username}")
            for group in groups[:5]:
                print(f"   - {group}")

        return True

    except (GoogleAuthError, HttpError, OSError, ValueError) as e:
        print(f"❌ Google Workspace connection failed: {e}")
        return False


def build_check_parser():
    parser = argparse.ArgumentParser(add_help=False)
    parser.add_argument("--check-user", metavar="USERNAME", help="Also list the Google groups of this user")
    return parser


def main(argv=None):
    """Run all checks. An optional --check-user <username> lists that user's Google groups."""
    print("🧪 Connection Check Script")
    print("=" * 60)

    check_parser = build_check_parser()
    username = check_parser.parse_known_args(argv)[0].check_user

    try:
        settings = load_config(argv, parser=build_parser(parents=[check_parser]))
    except ConfigError as e:
        print("❌ Invalid configuration:")
        for error in e.errors:
            print(f"   - {error}")
        return 1

    keycloak_ok = check_keycloak_connection(settings)
    google_ok = check_google_connection(settings, username)

    print("\n" + "=" * 60)
    print("📊 Check Summary:")
    print(f"   Keycloak: {'✅ PASS' if keycloak_ok else '❌ FAIL'}")
    print(f"   Google Workspace: {'✅ PASS' if google_ok else '❌ FAIL'}")

    if keycloak_ok and google_ok:
        print("\n✅ All checks passed! Ready to run sync.py")
        return 0
    else:
        print("\n❌ Some checks failed. Please check your configuration.")
        return 1


if __name__ == "__main__":
    sys.exit(main())
