"""Tests for codex_market.core.ledger module."""

import json
import threading
from pathlib import Path

import pytest

from codex_market.config.parser import ParseError
from codex_market.config.schemas import InstallRecord, Ledger, PluginSource, SkillEntry
from codex_market.core.ledger import InstallLedger


def make_record(scope: str = "global", project_path: str | None = None, version: str = "1.0.0"):
    return InstallRecord(
        scope=scope,
        project_path=project_path,
        version=version,
        installed_at="2026-01-01T00:00:00+00:00",
        last_updated="2026-01-01T00:00:00+00:00",
        source=PluginSource(marketplace="acme"),
    )


@pytest.fixture
def ledger(temp_dir: Path) -> InstallLedger:
    return InstallLedger(temp_dir / "state" / "installed.json")


class TestLoadSave:
    """Tests for load() and save()."""

    def test_missing_file_is_empty(self, ledger: InstallLedger):
        """A missing ledger loads as empty."""
        assert ledger.load() == Ledger()

    def test_save_creates_parent(self, ledger: InstallLedger):
        """Saving creates the parent directory."""
        ledger.save(Ledger(plugins={"p@acme": [make_record()]}))

        assert ledger.path.exists()
        data = json.loads(ledger.path.read_text())
        assert data["version"] == 1
        assert "p@acme" in data["plugins"]

    def test_malformed_file_raises(self, ledger: InstallLedger):
        """A corrupt ledger is an error, not an empty ledger."""
        ledger.path.parent.mkdir(parents=True)
        ledger.path.write_text("{")

        with pytest.raises(ParseError):
            ledger.load()


class TestUpsert:
    """Tests for upsert()."""

    def test_adds_record(self, ledger: InstallLedger):
        ledger.upsert("p@acme", make_record())
        assert len(ledger.get("p@acme")) == 1

    def test_replaces_same_key(self, ledger: InstallLedger):
        """Same (scope, project) replaces in place."""
        ledger.upsert("p@acme", make_record(version="1.0.0"))
        ledger.upsert("p@acme", make_record(version="2.0.0"))

        records = ledger.get("p@acme")
        assert len(records) == 1
        assert records[0].version == "2.0.0"

    def test_keeps_distinct_keys(self, ledger: InstallLedger):
        """Global and each project get their own record."""
        ledger.upsert("p@acme", make_record())
        ledger.upsert("p@acme", make_record("project", "/w/a"))
        ledger.upsert("p@acme", make_record("project", "/w/b"))
        ledger.upsert("p@acme", make_record("project", "/w/a", version="2"))

        records = ledger.get("p@acme")
        assert [r.location for r in records] == ["global", "project:/w/a", "project:/w/b"]
        assert records[1].version == "2"

    def test_concurrent_upserts_keep_every_plugin(self, ledger: InstallLedger, temp_dir: Path):
        """Load-modify-save cycles from several threads don't drop records."""
        other = InstallLedger(ledger.path)

        def worker(target: InstallLedger, prefix: str):
            for i in range(10):
                target.upsert(f"{prefix}{i}@acme", make_record())

        threads = [
            threading.Thread(target=worker, args=(ledger, "a")),
            threading.Thread(target=worker, args=(other, "b")),
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=10)

        assert len(ledger.list()) == 20


class TestRemoveByScope:
    """Tests for remove_by_scope()."""

    @pytest.fixture
    def populated(self, ledger: InstallLedger) -> InstallLedger:
        ledger.upsert("p@acme", make_record())
        ledger.upsert("p@acme", make_record("project", "/w/a"))
        ledger.upsert("p@acme", make_record("project", "/w/b"))
        return ledger

    def test_all(self, populated: InstallLedger):
        """'all' removes every record and drops the plugin."""
        removed = populated.remove_by_scope("p@acme", "all")

        assert len(removed) == 3
        assert not populated.exists("p@acme")
        assert "p@acme" not in populated.load().plugins

    def test_global(self, populated: InstallLedger):
        removed = populated.remove_by_scope("p@acme", "global")

        assert [r.location for r in removed] == ["global"]
        assert len(populated.get("p@acme")) == 2

    def test_project_only_matching_path(self, populated: InstallLedger):
        """Other projects' records are untouched."""
        removed = populated.remove_by_scope("p@acme", "project", "/w/a")

        assert [r.location for r in removed] == ["project:/w/a"]
        assert [r.location for r in populated.get("p@acme")] == ["global", "project:/w/b"]

    def test_project_defaults_to_cwd(
        self, ledger: InstallLedger, project_dir: Path, monkeypatch: pytest.MonkeyPatch
    ):
        monkeypatch.chdir(project_dir)
        ledger.upsert("p@acme", make_record("project", str(Path.cwd())))

        removed = ledger.remove_by_scope("p@acme", "project")

        assert len(removed) == 1

    def test_no_match_changes_nothing(self, populated: InstallLedger):
        before = populated.path.read_text()

        assert populated.remove_by_scope("p@acme", "project", "/w/none") == []
        assert populated.remove_by_scope("missing@acme", "all") == []
        assert populated.path.read_text() == before

    def test_returns_records_with_artifacts(self, ledger: InstallLedger):
        """Removed records carry the artifact lists for cleanup."""
        record = make_record()
        record.skills.append(SkillEntry(name="fmt", path="/codex/skills/fmt"))
        ledger.upsert("p@acme", record)

        removed = ledger.remove_by_scope("p@acme", "global")

        assert removed[0].skills[0].path == "/codex/skills/fmt"


class TestQueries:
    """Tests for query(), get(), list() and exists()."""

    def test_query(self, ledger: InstallLedger):
        ledger.upsert("p@acme", make_record())
        ledger.upsert("p@acme", make_record("project", "/w/a"))

        assert len(ledger.query("p@acme", "global")) == 1
        assert len(ledger.query("p@acme", "project", "/w/a")) == 1
        assert ledger.query("p@acme", "project", "/w/b") == []

    def test_get_and_exists(self, ledger: InstallLedger):
        assert ledger.get("p@acme") == []
        assert not ledger.exists("p@acme")

        ledger.upsert("p@acme", make_record())

        assert ledger.exists("p@acme")

    def test_list(self, ledger: InstallLedger):
        ledger.upsert("a@acme", make_record())
        ledger.upsert("b@acme", make_record())

        assert sorted(ledger.list()) == ["a@acme", "b@acme"]
