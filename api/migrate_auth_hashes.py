"""
Backfill password/login-code hashes for legacy users.

Usage: python -m api.migrate_auth_hashes [--dry-run]
"""

from __future__ import annotations

import argparse
import logging
import sys

from dotenv import find_dotenv, load_dotenv

from api.config import ConfigurationError, InvalidConfiguration, MigrationConfig
from api.credential_migration import BATCH_SIZE, PAGE_SIZE, CredentialMigrationJob, MigrationAborted
from api.credential_store import open_credential_store
from api.security import SecretHasher

logger = logging.getLogger(__name__)


def positive_int(value: str) -> int:
    try:
        number = int(value)
    except ValueError:
        number = 0
    if number < 1:
        raise argparse.ArgumentTypeError(f"expected a positive integer, got {value!r}")
    return number


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Hash legacy plaintext passwords and login codes")
    parser.add_argument("--dry-run", action="store_true", help="Report intended changes without writing")
    parser.add_argument("--page-size", type=positive_int, default=PAGE_SIZE, help="Rows read per page")
    parser.add_argument("--batch-size", type=positive_int, default=BATCH_SIZE, help="Rows written per batch")
    parser.add_argument("--env-file", default=None, help="Path to a .env file (defaults to ./.env)")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=logging.INFO, format="%(message)s")
    # find_dotenv only searches the working directory when asked to
    load_dotenv(dotenv_path=args.env_file or find_dotenv(usecwd=True))

    try:
        config = MigrationConfig.from_env()
    except InvalidConfiguration as exc:
        logger.error("Invalid env var: %s", exc)
        return 1
    except ConfigurationError as exc:
        logger.error("Missing env vars. Required: %s", ", ".join(exc.missing))
        return 1

    job = CredentialMigrationJob(
        open_credential_store(config.store_url, config.store_service_key),
        SecretHasher(rounds=config.bcrypt_rounds),
        config.login_code_salt,
        page_size=args.page_size,
        batch_size=args.batch_size,
    )
    try:
        job.run(dry_run=args.dry_run)
    except MigrationAborted as exc:
        logger.error("Migration aborted: %s", exc)
        return 1
    except Exception:
        logger.exception("Fatal error")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
