"""Install ledger management for codex-market."""

import logging
from pathlib import Path

from codex_market.config.parser import load_ledger, save_ledger
from codex_market.config.schemas import InstallRecord, Ledger, RemovalScope, Scope
from codex_market.utils.locking import lock_for

logger = logging.getLogger(__name__)


class InstallLedger:
    """Manages installed.json, the record of what is installed where.

    Every operation reads the file fresh. Mutations are full
    load-modify-save cycles under the write side of a lock shared by all
    ledgers in the process that point at the same file.
    """

    def __init__(self, path: Path):
        """Initialize the ledger.

        Args:
            path: Path to installed.json
        """
        self._path = path
        self._lock = lock_for(path)

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> Ledger:
        """Load the ledger from disk.

        Returns:
            The stored ledger, or an empty one if the file doesn't exist

        Raises:
            ParseError: If the file exists but is malformed
        """
        with self._lock.read():
            ledger = load_ledger(self._path)
        return ledger if ledger is not None else Ledger()

    def save(self, ledger: Ledger) -> None:
        """Overwrite the ledger file.

        Args:
            ledger: Ledger to write
        """
        with self._lock.write():
            save_ledger(self._path, ledger)

    def upsert(self, plugin_id: str, record: InstallRecord) -> None:
        """Add a record, replacing any record with the same scope and project.

        Args:
            plugin_id: Plugin identifier
            record: Record to store
        """
        with self._lock.write():
            ledger = self.load()
            records = ledger.plugins.setdefault(plugin_id, [])
            for i, existing in enumerate(records):
                if existing.matches(record.scope, record.project_path):
                    records[i] = record
                    break
            else:
                records.append(record)
            self.save(ledger)
        logger.debug("Recorded %s (%s)", plugin_id, record.location)

    def remove_by_scope(
        self,
        plugin_id: str,
        scope: RemovalScope,
        project_path: str | None = None,
    ) -> list[InstallRecord]:
        """Remove a plugin's records for a scope.

        No files are deleted; the caller cleans up using the returned records.

        Args:
            plugin_id: Plugin identifier
            scope: "all" removes every record, "global" only the global one,
                "project" only the one for ``project_path``
            project_path: Project the removal applies to (defaults to the
                current directory for project scope)

        Returns:
            The removed records (empty if nothing matched)
        """
        if scope == "project" and project_path is None:
            project_path = str(Path.cwd())

        with self._lock.write():
            ledger = self.load()
            records = ledger.plugins.get(plugin_id)
            if not records:
                return []

            if scope == "all":
                removed, kept = list(records), []
            else:
                removed = [r for r in records if r.matches(scope, project_path)]
                kept = [r for r in records if not r.matches(scope, project_path)]

            if not removed:
                return []

            if kept:
                ledger.plugins[plugin_id] = kept
            else:
                del ledger.plugins[plugin_id]
            self.save(ledger)

        logger.debug("Removed %d record(s) for %s", len(removed), plugin_id)
        return removed

    def query(
        self,
        plugin_id: str,
        scope: Scope,
        project_path: str | None = None,
    ) -> list[InstallRecord]:
        """Find a plugin's records for one scope.

        Args:
            plugin_id: Plugin identifier
            scope: "global" or "project"
            project_path: Project to match for project scope

        Returns:
            Matching records
        """
        return [r for r in self.get(plugin_id) if r.matches(scope, project_path)]

    def get(self, plugin_id: str) -> list[InstallRecord]:
        """Get every record for a plugin."""
        return list(self.load().plugins.get(plugin_id, []))

    def list(self) -> dict[str, list[InstallRecord]]:
        """Get all records, keyed by plugin identifier."""
        return dict(self.load().plugins)

    def exists(self, plugin_id: str) -> bool:
        """Check if a plugin has any records."""
        return bool(self.load().plugins.get(plugin_id))
