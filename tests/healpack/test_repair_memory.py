"""
Tests for Repair Memory.

Verifies key normalization, upsert semantics, durability across store
instances, atomic writes, unreadable documents and fix outcome learning.
"""

import json
from unittest.mock import patch

import pytest

from healpack.exceptions import RepairMemoryError
from healpack.pattern_catalog import Fix
from healpack.repair_memory import (
    RepairMemoryStore,
    normalize_signature,
    signature_key,
)

INSTALL_FIX = Fix(name="install_package", confidence=0.9, template="Install missing package: {0}")


@pytest.fixture
def memory_path(tmp_path):
    return tmp_path / ".healpack" / "repair_memory.json"


def _record(store, key, fix=INSTALL_FIX):
    return store.record(
        key,
        fix,
        pattern_key="node_missing_module",
        category="missing-dependency",
        description="Install missing package: left-pad",
        signature="Cannot find module 'left-pad'",
    )


class TestNormalization:
    """Test volatile-substring stripping."""

    def test_strips_timestamps(self):
        a = normalize_signature("2026-01-02T03:04:05.123Z Cannot find module 'x'")
        b = normalize_signature("2026-03-09T22:11:00Z Cannot find module 'x'")
        assert a == b

    def test_strips_absolute_paths(self):
        a = normalize_signature("Error in /home/alice/app/src/index.js:12:5")
        b = normalize_signature("Error in /srv/build/app/src/index.js:80:1")
        assert a == b

    def test_keeps_file_name_of_absolute_paths(self):
        """Paths differing only in their final segment stay distinct."""
        config = signature_key("node_missing_module", "Cannot find module '/srv/app/lib/config.js'")
        database = signature_key("node_missing_module", "Cannot find module '/srv/app/lib/database.js'")
        assert config != database
        assert normalize_signature("Cannot find module '/srv/app/lib/config.js'") == (
            "Cannot find module '<path>/config.js'"
        )

    def test_keeps_file_name_of_windows_paths(self):
        assert normalize_signature(r"Cannot read C:\app\a.js") != normalize_signature(r"Cannot read C:\app\b.js")

    def test_strips_windows_paths(self):
        a = normalize_signature(r"Cannot read C:\Users\bob\app\a.js")
        b = normalize_signature(r"Cannot read D:\work\a.js")
        assert a == b

    def test_strips_memory_addresses(self):
        assert normalize_signature("segfault at 0x7ffd1234") == normalize_signature("segfault at 0xdeadbeef")

    def test_keeps_meaningful_text(self):
        """Different modules must not collapse to the same signature."""
        assert signature_key("node_missing_module", "Cannot find module 'a'") != signature_key(
            "node_missing_module", "Cannot find module 'b'"
        )

    def test_key_format(self):
        key = signature_key("node_missing_module", "Cannot find module 'left-pad'")
        prefix, digest = key.split(":")
        assert prefix == "node_missing_module"
        assert len(digest) == 16

    def test_key_deterministic(self):
        text = "Cannot find module 'left-pad'"
        assert signature_key("p", text) == signature_key("p", text)


class TestRepairMemoryStore:
    """Test store load/record/save behaviour."""

    def test_missing_file_is_empty(self, memory_path):
        store = RepairMemoryStore(memory_path)
        assert len(store) == 0
        assert store.lookup("anything") is None
        assert not memory_path.exists()

    def test_record_new_entry(self, memory_path):
        store = RepairMemoryStore(memory_path)
        entry = _record(store, "node_missing_module:abc")

        assert entry.use_count == 1
        assert entry.fix_name == "install_package"
        assert entry.first_seen_at == entry.last_used_at
        assert "node_missing_module:abc" in store
        assert memory_path.exists()

    def test_record_twice_upserts(self, memory_path):
        """Same key twice yields one entry with use_count 2."""
        store = RepairMemoryStore(memory_path)
        first = _record(store, "k")
        second = _record(store, "k")

        assert len(store) == 1
        assert second.use_count == 2
        assert second.first_seen_at == first.first_seen_at
        assert second.last_used_at >= first.last_used_at

    def test_upsert_keeps_original_fix(self, memory_path):
        """Re-recording does not overwrite the remembered fix."""
        store = RepairMemoryStore(memory_path)
        _record(store, "k")
        other = Fix(name="fix_relative_path", confidence=0.8, template="Fix path")
        entry = _record(store, "k", fix=other)
        assert entry.fix_name == "install_package"

    def test_durable_across_instances(self, memory_path):
        """A fresh store (new process) sees previously recorded entries."""
        _record(RepairMemoryStore(memory_path), "k")
        reopened = RepairMemoryStore(memory_path)
        assert reopened.lookup("k").use_count == 1

    def test_record_merges_concurrent_writer(self, memory_path):
        """Entries written by another store since load are preserved."""
        store_a = RepairMemoryStore(memory_path)
        store_b = RepairMemoryStore(memory_path)
        _record(store_a, "from-a")
        _record(store_b, "from-b")

        reopened = RepairMemoryStore(memory_path)
        assert reopened.lookup("from-a") is not None
        assert reopened.lookup("from-b") is not None

    def test_document_on_disk(self, memory_path):
        store = RepairMemoryStore(memory_path)
        _record(store, "k")
        data = json.loads(memory_path.read_text(encoding="utf-8"))
        assert data["schema_version"] == "1.1"
        assert data["entries"]["k"]["category"] == "missing-dependency"
        assert data["entries"]["k"]["signature"] == "Cannot find module 'left-pad'"

    def test_no_temp_file_left_behind(self, memory_path):
        store = RepairMemoryStore(memory_path)
        _record(store, "k")
        assert list(memory_path.parent.glob("*.tmp")) == []

    def test_failed_write_keeps_previous_document(self, memory_path):
        """A write that fails before replace leaves the old document intact."""
        store = RepairMemoryStore(memory_path)
        _record(store, "k")
        before = memory_path.read_text(encoding="utf-8")

        with patch("healpack.repair_memory.os.fsync", side_effect=OSError("disk gone")):
            with pytest.raises(RepairMemoryError):
                _record(store, "k")

        assert memory_path.read_text(encoding="utf-8") == before
        assert list(memory_path.parent.glob("*.tmp")) == []

    def test_corrupt_document_raises(self, memory_path):
        memory_path.parent.mkdir(parents=True)
        memory_path.write_text("{not json", encoding="utf-8")
        with pytest.raises(RepairMemoryError, match="unreadable"):
            RepairMemoryStore(memory_path)

    def test_invalid_entry_raises(self, memory_path):
        memory_path.parent.mkdir(parents=True)
        memory_path.write_text(
            json.dumps({"schema_version": "1.0", "entries": {"k": {"key": "k"}}}),
            encoding="utf-8",
        )
        with pytest.raises(RepairMemoryError):
            RepairMemoryStore(memory_path)

    def test_entries_and_stats(self, memory_path):
        store = RepairMemoryStore(memory_path)
        _record(store, "a")
        _record(store, "b")
        _record(store, "b")

        assert [e.key for e in store.entries()] == ["b", "a"]
        stats = store.stats()
        assert stats["total_entries"] == 2
        assert stats["total_uses"] == 3
        assert stats["by_category"] == {"missing-dependency": 2}
        assert stats["top_entries"] == ["b", "a"]

    def test_new_entry_has_no_outcomes(self, memory_path):
        entry = _record(RepairMemoryStore(memory_path), "k")
        assert (entry.successes, entry.failures, entry.deprecated) == (0, 0, False)
        assert entry.success_rate == 0.0


class TestFixOutcomes:
    """Test success/failure learning and deprecation."""

    def test_success_recorded(self, memory_path):
        store = RepairMemoryStore(memory_path)
        _record(store, "k")

        updated = store.record_outcome(["k"], success=True)

        assert [e.key for e in updated] == ["k"]
        entry = RepairMemoryStore(memory_path).lookup("k")
        assert entry.successes == 1
        assert entry.failures == 0
        assert entry.success_rate == 1.0

    def test_failure_recorded(self, memory_path):
        store = RepairMemoryStore(memory_path)
        _record(store, "k")
        store.record_outcome(["k"], success=False)

        entry = RepairMemoryStore(memory_path).lookup("k")
        assert entry.failures == 1
        assert entry.deprecated is False

    def test_duplicate_keys_counted_once(self, memory_path):
        store = RepairMemoryStore(memory_path)
        _record(store, "k")
        store.record_outcome(["k", "k"], success=True)
        assert store.lookup("k").successes == 1

    def test_unknown_keys_ignored(self, memory_path):
        store = RepairMemoryStore(memory_path)
        assert store.record_outcome(["missing"], success=True) == []
        assert not memory_path.exists()

    def test_not_deprecated_within_first_uses(self, memory_path):
        """Three failed uses are not enough evidence to give up on a fix."""
        store = RepairMemoryStore(memory_path)
        for _ in range(3):
            _record(store, "k")
            store.record_outcome(["k"], success=False)

        entry = store.lookup("k")
        assert entry.use_count == 3
        assert entry.failures == 3
        assert entry.deprecated is False

    def test_deprecated_after_repeated_failures(self, memory_path):
        store = RepairMemoryStore(memory_path)
        for _ in range(4):
            _record(store, "k")
            store.record_outcome(["k"], success=False)

        assert RepairMemoryStore(memory_path).lookup("k").deprecated is True

    def test_good_success_rate_not_deprecated(self, memory_path):
        store = RepairMemoryStore(memory_path)
        for i in range(4):
            _record(store, "k")
            store.record_outcome(["k"], success=i % 2 == 0)

        entry = store.lookup("k")
        assert entry.success_rate == 0.5
        assert entry.deprecated is False

    def test_deprecated_entry_replaced_by_other_fix(self, memory_path):
        store = RepairMemoryStore(memory_path)
        for _ in range(4):
            _record(store, "k")
        store.record_outcome(["k"], success=False)

        other = Fix(name="fix_relative_path", confidence=0.8, template="Fix path")
        entry = _record(store, "k", fix=other)

        assert entry.fix_name == "fix_relative_path"
        assert entry.use_count == 1
        assert entry.deprecated is False
        assert (entry.successes, entry.failures) == (0, 0)

    def test_outcome_stats(self, memory_path):
        store = RepairMemoryStore(memory_path)
        _record(store, "good")
        store.record_outcome(["good"], success=True)
        for _ in range(4):
            _record(store, "bad")
        store.record_outcome(["bad"], success=False)

        stats = store.stats()
        assert stats["total_successes"] == 1
        assert stats["avg_success_rate"] == pytest.approx(0.5)
        assert stats["deprecated_fixes"] == 1

    def test_empty_stats(self, memory_path):
        stats = RepairMemoryStore(memory_path).stats()
        assert stats["avg_success_rate"] == 0.0
        assert stats["deprecated_fixes"] == 0
