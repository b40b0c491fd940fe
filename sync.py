#!/usr/bin/env python3
"""
Google Workspace to Keycloak Group Membership Sync

Keeps the members of the groups below a synced parent group in Keycloak equal to
the group memberships in Google Workspace. Every cycle re-reads both systems,
computes the differences with diffsync and applies only those. The loop runs
until the process is terminated.
"""

import logging
import sys
import time
from typing import Callable, Dict, List, Set, Tuple

from config import ConfigError, Settings, load_config
from google_directory import GoogleDirectory
from group_directory import GroupDirectory
from keycloak_client import KeycloakClient, KeycloakSession
from models import (
    ADD_MEMBERSHIP,
    CREATE_GROUP,
    FETCH_SOURCE_GROUPS,
    REMOVE_MEMBERSHIP,
    CycleReport,
    MembershipSnapshot,
    OperationResult,
)
from reconciler import apply_reconciliation, plan_memberships
from snapshot import build_snapshots


logger = logging.getLogger(__name__)

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def fetch_source_groups(google: GoogleDirectory, domain: str,
                        snapshots: Dict[str, MembershipSnapshot]) -> Tuple[Dict[str, Set[str]], List[OperationResult]]:
    """Read the Google groups of every snapshotted user. Users that fail are left out."""
    source_by_user: Dict[str, Set[str]] = {}
    failures: List[OperationResult] = []

    for username in sorted(snapshots):
        try:
            groups = google.list_source_groups_for_identity(domain, username)
        except Exception as e:
            logger.error(f"Failed getting groups from Google for user {username}, ignoring user: {e}")
            failures.append(OperationResult(FETCH_SOURCE_GROUPS, username=username, error=str(e)))
            continue
        source_by_user[username] = set(groups)

    return source_by_user, failures


def run_cycle(keycloak: KeycloakClient, google: GoogleDirectory, settings: Settings) -> CycleReport:
    """
    Run one collect, diff and apply pass.
    Failing to authenticate or to enumerate the managed groups or the users
    aborts the cycle. Any other failure only affects the user or group involved.
    """
    report = CycleReport(dry_run=settings.dry_run)
    logger.info("Starting Google Workspace to Keycloak sync")

    try:
        keycloak.session.ensure_token()
        directory = GroupDirectory.load(keycloak, settings.synced_parent_group)
        snapshots, failures = build_snapshots(keycloak, directory)
    except Exception as e:
        logger.error(f"Reconcile cycle aborted: {e}", exc_info=True)
        report.aborted = str(e)
        return report.finish()

    report.extend(failures)

    source_by_user, failures = fetch_source_groups(google, settings.gsuite_domain, snapshots)
    report.extend(failures)

    managed_by_user = {username: snapshots[username].managed_names for username in source_by_user}
    plans = plan_memberships(managed_by_user, source_by_user)

    for username in sorted(plans):
        plan = plans[username]
        if plan.is_noop:
            logger.debug(f"User {username} already in sync")
            continue

        logger.info(f"Reconciling user groups: {username} "
                    f"(+{len(plan.to_add)} / -{len(plan.to_remove)})")
        report.extend(apply_reconciliation(keycloak, directory, snapshots[username], plan))

    report.reconciled_users = len(plans)
    report.extend(directory.results)
    return report.finish()


def log_report(report: CycleReport):
    """Summarize a cycle at its boundary."""
    if report.aborted:
        logger.error(f"Reconcile cycle aborted after {report.duration:.1f}s: {report.aborted}")
        return

    if report.dry_run:
        # Nothing was written, the counts are what a real run would do
        logger.info(
            f"[DRY RUN] Reconcile cycle finished in {report.duration:.1f}s: "
            f"{report.reconciled_users} users reconciled, "
            f"would add {report.count(ADD_MEMBERSHIP)} memberships, "
            f"would remove {report.count(REMOVE_MEMBERSHIP)}, "
            f"would create {report.count(CREATE_GROUP)} groups, "
            f"{len(report.failures)} failures"
        )
    else:
        logger.info(
            f"Reconcile cycle finished in {report.duration:.1f}s: "
            f"{report.reconciled_users} users reconciled, "
            f"{report.count(ADD_MEMBERSHIP)} memberships added, "
            f"{report.count(REMOVE_MEMBERSHIP)} removed, "
            f"{report.count(CREATE_GROUP)} groups created, "
            f"{len(report.failures)} failures"
        )
    if report.skipped_users:
        logger.warning(f"Skipped users this cycle: {', '.join(report.skipped_users)}")
    for failure in report.failures:
        logger.debug(f"Failed {failure.action}: user={failure.username} group={failure.group} error={failure.error}")


def run_forever(keycloak: KeycloakClient, google: GoogleDirectory, settings: Settings,
                sleep: Callable[[float], None] = time.sleep):
    """Reconcile, wait for the configured interval, repeat."""
    while True:
        try:
            report = run_cycle(keycloak, google, settings)
            log_report(report)
        except Exception as e:
            logger.error(f"Unexpected error during reconcile cycle: {e}", exc_info=True)

        logger.info(f"Waiting {settings.reconcile_interval:g}s for the next reconcile cycle")
        sleep(settings.reconcile_interval)


def main(argv=None) -> int:
    try:
        settings = load_config(argv)
    except ConfigError as e:
        print("Error: Invalid arguments:", file=sys.stderr)
        for error in e.errors:
            print(f"  * {error}", file=sys.stderr)
        print("\nUse --help for usage information.", file=sys.stderr)
        return 1

    logging.basicConfig(level=settings.logging_level, format=LOG_FORMAT)

    if settings.dry_run:
        logger.info("Running in DRY RUN mode - no changes will be made")

    try:
        google = GoogleDirectory(settings.gsuite_credentials, settings.gsuite_admin_subject)
        google.connect()
    except Exception as e:
        logger.error(f"Failed creating Google Workspace client: {e}", exc_info=True)
        return 1

    session = KeycloakSession(
        settings.keycloak_uri,
        settings.keycloak_realm,
        settings.keycloak_client_id,
        settings.keycloak_client_secret,
    )
    keycloak = KeycloakClient(session, dry_run=settings.dry_run)

    try:
        if settings.once:
            report = run_cycle(keycloak, google, settings)
            log_report(report)
            return 1 if report.aborted else 0

        run_forever(keycloak, google, settings)
    finally:
        session.close()


if __name__ == "__main__":
    sys.exit(main())
