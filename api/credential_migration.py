"""
One-time backfill of password/login-code hashes from the legacy plaintext columns.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from api.credential_store import STAFF_ROLES, CLIENT_ROLE, CredentialStore, CredentialStoreError
from api.security import SecretHasher, fingerprint, is_hashable, is_login_code

logger = logging.getLogger(__name__)

PAGE_SIZE = 200
BATCH_SIZE = 50


class MigrationAborted(Exception):
    """Raised on the first fetch or write error; the run can be restarted from scratch."""


@dataclass
class MigrationSummary:
    dry_run: bool
    pages_scanned: int = 0
    rows_examined: int = 0
    rows_staged: int = 0
    rows_updated: int = 0
    rows_unhashable: int = 0


@dataclass(frozen=True)
class StagedUpdate:
    identity_id: str
    fields: tuple[str, ...]
    secret: str


class CredentialMigrationJob:
    """
    Pages through identities missing a hash or fingerprint and fills them in.

    All pages are read before anything is written. The offset advances by the
    page size on every iteration, which is only sound while the filtered result
    set is not shrinking underneath it. Writes happen afterwards in sub-batches.
    Rows already carrying a value are never overwritten, so a failed run is
    simply started again.
    """

    def __init__(
        self,
        store: CredentialStore,
        hasher: SecretHasher,
        login_code_salt: str,
        *,
        page_size: int = PAGE_SIZE,
        batch_size: int = BATCH_SIZE,
    ) -> None:
        if page_size < 1 or batch_size < 1:
            raise ValueError("page_size and batch_size must be positive.")
        self.store = store
        self.hasher = hasher
        self.login_code_salt = login_code_salt
        self.page_size = page_size
        self.batch_size = batch_size

    def run(self, dry_run: bool = False) -> MigrationSummary:
        summary = MigrationSummary(dry_run=dry_run)
        logger.info("Starting migration%s...", " (DRY RUN)" if dry_run else "")

        staged = self._scan(summary)
        if dry_run:
            logger.info("Done. No changes were written (%d users would be updated).", summary.rows_staged)
            return summary

        self._apply(staged, summary)
        logger.info("Done. Total users updated: %d", summary.rows_updated)
        logger.info("After verifying logins, you can drop plaintext columns: password, login_code")
        return summary

    def _scan(self, summary: MigrationSummary) -> list[StagedUpdate]:
        staged: list[StagedUpdate] = []
        offset = 0
        while True:
            try:
                rows = self.store.fetch_pending(offset, self.page_size)
            except CredentialStoreError as exc:
                raise MigrationAborted(f"Fetch error at offset {offset}: {exc}") from exc
            if not rows:
                break

            summary.pages_scanned += 1
            summary.rows_examined += len(rows)
            page_updates = []
            for row in rows:
                update = self._stage(row, summary)
                if update is not None:
                    page_updates.append(update)

            if page_updates:
                verb = "Would update" if summary.dry_run else "Staged"
                logger.info(
                    "%s %d users in range %d-%d",
                    verb,
                    len(page_updates),
                    offset,
                    offset + self.page_size - 1,
                )
            staged.extend(page_updates)
            summary.rows_staged += len(page_updates)
            offset += self.page_size
        return staged

    def _stage(self, row: dict[str, Any], summary: MigrationSummary) -> StagedUpdate | None:
        role = row.get("role")
        if role in STAFF_ROLES:
            if row.get("password_hash"):
                return None
            password = "" if row.get("password") is None else str(row["password"])
            if not password:
                return None
            if not is_hashable(password):
                logger.warning("Skipping %s: legacy password is too long to hash", row["id"])
                summary.rows_unhashable += 1
                return None
            return StagedUpdate(row["id"], ("password_hash",), password)

        if role == CLIENT_ROLE:
            code = "" if row.get("login_code") is None else str(row["login_code"]).strip()
            if not is_login_code(code):
                return None
            fields = tuple(
                field for field in ("login_code_sha", "login_code_hash") if not row.get(field)
            )
            if fields:
                return StagedUpdate(row["id"], fields, code)
        return None

    def _patch_for(self, update: StagedUpdate) -> dict[str, str]:
        patch = {}
        for field in update.fields:
            if field == "login_code_sha":
                patch[field] = fingerprint(update.secret, self.login_code_salt)
            else:
                patch[field] = self.hasher.hash(update.secret)
        return patch

    def _apply(self, staged: list[StagedUpdate], summary: MigrationSummary) -> None:
        for start in range(0, len(staged), self.batch_size):
            for update in staged[start : start + self.batch_size]:
                try:
                    patch = self._patch_for(update)
                except ValueError as exc:
                    raise MigrationAborted(f"Hash error for {update.identity_id}: {exc}") from exc
                try:
                    self.store.update_identity(update.identity_id, patch)
                except CredentialStoreError as exc:
                    raise MigrationAborted(f"Update error for {update.identity_id}: {exc}") from exc
                summary.rows_updated += 1
            logger.info("Updated %d users so far...", summary.rows_updated)
