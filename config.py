"""
Configuration for the Google Workspace to Keycloak sync.

Every setting can be given as a command line flag or as an environment
variable (flags win). Variables from a .env file are loaded first.
"""

import argparse
import logging
import math
import os
import re
from dataclasses import dataclass
from typing import List, Mapping, Optional, Sequence

from dotenv import load_dotenv


DEFAULT_RECONCILE_INTERVAL = 600.0

LOG_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "error": logging.ERROR,
}

_DURATION_RE = re.compile(r'^(?:(?P<h>\d+(?:\.\d+)?)h)?(?:(?P<m>\d+(?:\.\d+)?)m)?(?:(?P<s>\d+(?:\.\d+)?)s)?$')

ENVIRONMENT_HELP = """\
Environment variables (used when the flag is not given):
  GSUITE_CREDENTIALS     - Path to Google service account JSON credentials file
  GSUITE_DOMAIN          - Google Workspace domain
  GSUITE_ADMIN_SUBJECT   - Admin user to impersonate (optional)
  KEYCLOAK_URI           - Keycloak URI
  KEYCLOAK_REALM         - Keycloak realm
  KEYCLOAK_CLIENT_ID     - Keycloak client ID
  KEYCLOAK_CLIENT_SECRET - Keycloak client secret
  SYNCED_PARENT_GROUP    - Keycloak group where Google groups are synced
  RECONCILE_INTERVAL     - Delay between cycles, e.g. 10m, 90s, 1h30m
  LOG_LEVEL              - Log level (debug, info, warn, error)
  SYNC_DRY_RUN           - Set to true to log changes without applying them
"""


class ConfigError(Exception):
    """Raised with every configuration violation found."""

    def __init__(self, errors: List[str]):
        super().__init__("; ".join(errors))
        self.errors = errors


@dataclass(frozen=True)
class Settings:
    gsuite_credentials: str
    gsuite_domain: str
    keycloak_uri: str
    keycloak_realm: str
    keycloak_client_id: str
    keycloak_client_secret: str
    synced_parent_group: str
    gsuite_admin_subject: Optional[str] = None
    reconcile_interval: float = DEFAULT_RECONCILE_INTERVAL
    log_level: str = "info"
    dry_run: bool = False
    once: bool = False

    @property
    def logging_level(self) -> int:
        return LOG_LEVELS[self.log_level]


def parse_duration(value: str) -> float:
    """Parse ``10m``, ``90s``, ``1h30m`` or a plain number of seconds."""
    value = value.strip()
    try:
        seconds = float(value)
    except ValueError:
        pass
    else:
        if not math.isfinite(seconds):
            raise ValueError(f"invalid duration: {value!r}")
        return seconds

    match = _DURATION_RE.match(value)
    if not value or not match:
        raise ValueError(f"invalid duration: {value!r}")

    hours, minutes, seconds = (float(match.group(k) or 0) for k in ("h", "m", "s"))
    return hours * 3600 + minutes * 60 + seconds


def build_parser(parents: Sequence[argparse.ArgumentParser] = ()) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Sync Google Workspace group memberships into a Keycloak group subtree",
        epilog=ENVIRONMENT_HELP,
        formatter_class=argparse.RawDescriptionHelpFormatter,
        parents=list(parents),
    )
    parser.add_argument("--gsuite-credentials", help="Path to Google service account JSON credentials file (required)")
    parser.add_argument("--gsuite-domain", help="Google Workspace domain (required)")
    parser.add_argument("--gsuite-admin-subject", help="Admin user to impersonate with domain-wide delegation")
    parser.add_argument("--keycloak-uri", help="Keycloak URI (required)")
    parser.add_argument("--keycloak-realm", help="Keycloak realm (required)")
    parser.add_argument("--keycloak-client-id", help="Keycloak client ID (required)")
    parser.add_argument("--keycloak-client-secret", help="Keycloak client secret (required)")
    parser.add_argument("--synced-parent-group", help="Keycloak group where Google groups are synced (required)")
    parser.add_argument("--reconcile-interval", help="Delay between reconcile cycles (default 10m)")
    parser.add_argument("--log-level", help="Log level: debug, info, warn, error (default info)")
    parser.add_argument("--dry-run", action="store_true", default=None, help="Log changes without applying them")
    parser.add_argument("--once", action="store_true", help="Run a single reconcile cycle and exit")
    return parser


def load_config(argv: Optional[Sequence[str]] = None,
                environ: Optional[Mapping[str, str]] = None,
                parser: Optional[argparse.ArgumentParser] = None) -> Settings:
    """
    Build the settings from flags and environment.
    Raises ConfigError listing every violation, not only the first one.
    """
    if environ is None:
        load_dotenv()
        environ = os.environ

    args = (parser or build_parser()).parse_args(argv)

    def value(flag_value, env_var, default=""):
        if flag_value not in (None, ""):
            return flag_value
        return environ.get(env_var, default)

    errors: List[str] = []

    required = {
        "gsuite_credentials": ("--gsuite-credentials", "GSUITE_CREDENTIALS"),
        "gsuite_domain": ("--gsuite-domain", "GSUITE_DOMAIN"),
        "keycloak_uri": ("--keycloak-uri", "KEYCLOAK_URI"),
        "keycloak_realm": ("--keycloak-realm", "KEYCLOAK_REALM"),
        "keycloak_client_id": ("--keycloak-client-id", "KEYCLOAK_CLIENT_ID"),
        "keycloak_client_secret": ("--keycloak-client-secret", "KEYCLOAK_CLIENT_SECRET"),
        "synced_parent_group": ("--synced-parent-group", "SYNCED_PARENT_GROUP"),
    }
    values = {}
    for name, (flag, env_var) in required.items():
        values[name] = value(getattr(args, name), env_var).strip()
        if not values[name]:
            errors.append(f"{flag} is required")

    credentials = values["gsuite_credentials"]
    if credentials and not os.path.isfile(credentials):
        errors.append(f"--gsuite-credentials file does not exist: {credentials}")

    log_level = value(args.log_level, "LOG_LEVEL", "info").strip().lower()
    if log_level not in LOG_LEVELS:
        errors.append("--log-level must be one of: debug, info, warn, error")

    interval = DEFAULT_RECONCILE_INTERVAL
    raw_interval = value(args.reconcile_interval, "RECONCILE_INTERVAL")
    if raw_interval:
        try:
            interval = parse_duration(raw_interval)
        except ValueError:
            errors.append(f"--reconcile-interval is not a valid duration: {raw_interval}")
        else:
            if interval <= 0:
                errors.append("--reconcile-interval must be positive")

    if args.dry_run is not None:
        dry_run = args.dry_run
    else:
        dry_run = environ.get("SYNC_DRY_RUN", "false").lower() == "true"

    if errors:
        raise ConfigError(errors)

    return Settings(
        gsuite_admin_subject=value(args.gsuite_admin_subject, "GSUITE_ADMIN_SUBJECT").strip() or None,
        reconcile_interval=interval,
        log_level=log_level,
        dry_run=dry_run,
        once=args.once,
        **values,
    )
