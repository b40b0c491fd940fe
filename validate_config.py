#!/usr/bin/env python3
"""
Check the sync configuration without contacting Google or Keycloak
"""

import sys

from config import ConfigError, Settings, load_config


def mask(secret: str) -> str:
    if len(secret) <= 4:
        return "****"
    return secret[:2] + "*" * (len(secret) - 4) + secret[-2:]


def display_config(settings: Settings):
    """Display current configuration (masking sensitive values)"""
    print("\n📋 Current Configuration:")
    print(f"   Google Credentials: {settings.gsuite_credentials}")
    print(f"   Google Domain: {settings.gsuite_domain}")
    print(f"   Google Admin Subject: {settings.gsuite_admin_subject or '(none)'}")
    print(f"   Keycloak URI: {settings.keycloak_uri}")
    print(f"   Keycloak Realm: {settings.keycloak_realm}")
    print(f"   Keycloak Client ID: {settings.keycloak_client_id}")
    print(f"   Keycloak Client Secret: {mask(settings.keycloak_client_secret)}")
    print(f"   Synced Parent Group: {settings.synced_parent_group}")
    print(f"   Reconcile Interval: {settings.reconcile_interval:g}s")
    print(f"   Log Level: {settings.log_level}")
    print(f"   Dry Run Mode: {settings.dry_run}")
    print()


def main(argv=None) -> int:
    print("🔍 Google Workspace to Keycloak Sync - Configuration Validator\n")

    try:
        settings = load_config(argv)
    except ConfigError as e:
        print("❌ Invalid configuration:")
        for error in e.errors:
            print(f"   - {error}")
        print("\n❌ Please update your flags or .env file")
        return 1

    print("✅ All required configuration is set")
    display_config(settings)
    print("✅ Configuration is valid. You can now run:")
    print("   python sync.py")
    return 0


if __name__ == "__main__":
    sys.exit(main())
