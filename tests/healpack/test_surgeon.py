"""
Tests for the Surgeon build-failure analyzer.

Verifies fix selection, Repair Memory learning and reuse, remediation
failures, and de-duplication within one analysis.
"""

from unittest.mock import MagicMock

import pytest

from healpack.remediation import RemediationRegistry
from healpack.repair_memory import RepairMemoryStore
from healpack.surgeon import Surgeon

MISSING_LEFT_PAD = """
> app@1.0.0 build
> node build.js

node:internal/modules/cjs/loader:1080
  throw err;
  ^

Error: Cannot find module 'left-pad'
Require stack:
- /srv/app/build.js
"""


@pytest.fixture
def memory(tmp_path):
    return RepairMemoryStore(tmp_path / ".healpack" / "repair_memory.json")


class TestSurgeonAnalyze:
    """Test analysis of captured build output."""

    def test_missing_module_learned(self, memory):
        """First failure: top-ranked fix chosen and recorded with use_count 1."""
        result = Surgeon(memory).analyze(MISSING_LEFT_PAD)

        assert result.fix_applied is True
        assert len(result.decisions) == 1
        decision = result.decisions[0]
        assert decision.category == "missing-dependency"
        assert decision.source == "catalog"
        assert decision.fix_name == "install_package"
        assert "left-pad" in decision.description

        entries = memory.entries()
        assert len(entries) == 1
        assert entries[0].use_count == 1

    def test_repeat_failure_reuses_memory(self, tmp_path):
        """Second identical failure (new process) bumps use_count, no new entry."""
        path = tmp_path / "repair_memory.json"
        Surgeon(RepairMemoryStore(path)).analyze(MISSING_LEFT_PAD)

        second = Surgeon(RepairMemoryStore(path)).analyze(MISSING_LEFT_PAD)
        assert second.fix_applied is True
        assert second.decisions[0].source == "memory"

        entries = RepairMemoryStore(path).entries()
        assert len(entries) == 1
        assert entries[0].use_count == 2

    def test_volatile_paths_share_entry(self, memory):
        """Same failure from different checkouts collapses to one entry."""
        surgeon = Surgeon(memory)
        surgeon.analyze("Error: Cannot find module '/home/a/app/lib/x.js'")
        surgeon.analyze("Error: Cannot find module '/ci/build-42/app/lib/x.js'")
        assert len(memory) == 1
        assert memory.entries()[0].use_count == 2

    def test_duplicate_lines_counted_once(self, memory):
        output = "Cannot find module 'a'\nCannot find module 'a'\nCannot find module 'b'\n"
        result = Surgeon(memory).analyze(output)
        assert len(result.matched_errors) == 2
        assert len(memory) == 2
        assert all(e.use_count == 1 for e in memory.entries())

    def test_no_match_escalates(self, memory):
        result = Surgeon(memory).analyze("Something odd happened\nexit status 2\n")
        assert result.fix_applied is False
        assert result.matched_errors == []
        assert len(memory) == 0

    def test_empty_output(self, memory):
        result = Surgeon(memory).analyze("")
        assert result.fix_applied is False

    def test_match_without_fix_escalates(self, memory):
        """Recognized but unfixable errors do not count as fixed."""
        result = Surgeon(memory).analyze("Error: ENOSPC: no space left on device, write")
        assert result.fix_applied is False
        assert len(result.matched_errors) == 1
        assert result.matched_errors[0].auto_fixable is False
        assert len(memory) == 0

    def test_mixed_output(self, memory):
        """One fixable match is enough to retry."""
        output = "ENOSPC: no space left on device\nReferenceError: fetchUser is not defined\n"
        result = Surgeon(memory).analyze(output)
        assert result.fix_applied is True
        assert [d.pattern_key for d in result.decisions] == ["reference_error"]

    def test_remediation_invoked_with_groups(self, memory, tmp_path):
        installer = MagicMock(return_value=True)
        registry = RemediationRegistry()
        registry.register("install_dependencies", installer)

        result = Surgeon(memory, remediations=registry, project_root=tmp_path).analyze(MISSING_LEFT_PAD)

        assert result.fix_applied is True
        installer.assert_called_once_with(tmp_path, ("left-pad",))

    def test_failed_remediation_not_recorded(self, memory, tmp_path):
        registry = RemediationRegistry()
        registry.register("install_dependencies", MagicMock(return_value=False))

        result = Surgeon(memory, remediations=registry, project_root=tmp_path).analyze(MISSING_LEFT_PAD)

        assert result.fix_applied is False
        assert len(memory) == 0

    def test_raising_remediation_not_recorded(self, memory, tmp_path):
        registry = RemediationRegistry()
        registry.register("install_dependencies", MagicMock(side_effect=OSError("npm missing")))

        result = Surgeon(memory, remediations=registry, project_root=tmp_path).analyze(MISSING_LEFT_PAD)

        assert result.fix_applied is False
        assert len(memory) == 0

    def test_known_fix_reapplied(self, memory, tmp_path):
        """A remembered fix with a capability runs again on reuse."""
        installer = MagicMock(return_value=True)
        registry = RemediationRegistry()
        registry.register("install_dependencies", installer)
        surgeon = Surgeon(memory, remediations=registry, project_root=tmp_path)

        surgeon.analyze(MISSING_LEFT_PAD)
        surgeon.analyze(MISSING_LEFT_PAD)

        assert installer.call_count == 2
        assert memory.entries()[0].use_count == 2

    def test_to_dict(self, memory):
        data = Surgeon(memory).analyze(MISSING_LEFT_PAD).to_dict()
        assert data["fix_applied"] is True
        assert data["matched_errors"][0]["severity"] == "critical"
        assert data["decisions"][0]["source"] == "catalog"

    def test_distinct_module_paths_kept_apart(self, memory):
        """Absolute paths differing only in file name are different failures."""
        surgeon = Surgeon(memory)
        surgeon.analyze("Error: Cannot find module '/srv/app/lib/config.js'")
        surgeon.analyze("Error: Cannot find module '/srv/app/lib/database.js'")
        assert len(memory) == 2
        assert all(e.use_count == 1 for e in memory.entries())


HEAP_OOM = "FATAL ERROR: Reached heap limit Allocation failed - JavaScript heap out of memory\n"


def _wear_out(memory, output):
    """Apply the same fix until it is eligible for deprecation, then fail it."""
    surgeon = Surgeon(memory)
    for _ in range(4):
        key = surgeon.analyze(output).decisions[0].key
    memory.record_outcome([key], success=False)
    assert memory.lookup(key).deprecated is True
    return key


class TestDeprecatedFixes:
    """Test that fixes which kept failing are not reused."""

    def test_falls_back_to_next_ranked_fix(self, memory):
        key = _wear_out(memory, MISSING_LEFT_PAD)

        result = Surgeon(memory).analyze(MISSING_LEFT_PAD)

        assert result.fix_applied is True
        decision = result.decisions[0]
        assert decision.source == "catalog"
        assert decision.fix_name == "fix_relative_path"
        entry = memory.lookup(key)
        assert entry.fix_name == "fix_relative_path"
        assert entry.deprecated is False
        assert entry.use_count == 1

    def test_replacement_is_then_reused(self, memory):
        _wear_out(memory, MISSING_LEFT_PAD)
        Surgeon(memory).analyze(MISSING_LEFT_PAD)

        result = Surgeon(memory).analyze(MISSING_LEFT_PAD)

        assert result.decisions[0].source == "memory"
        assert result.decisions[0].fix_name == "fix_relative_path"

    def test_no_alternative_escalates(self, memory):
        """A deprecated fix with nothing ranked below it is not re-applied."""
        key = _wear_out(memory, HEAP_OOM)

        result = Surgeon(memory).analyze(HEAP_OOM)

        assert result.fix_applied is False
        assert len(result.matched_errors) == 1
        entry = memory.lookup(key)
        assert entry.fix_name == "increase_heap"
        assert entry.use_count == 4
