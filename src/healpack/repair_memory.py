"""
Repair Memory: durable error-signature -> fix registry.

Each pipeline phase is a fresh process, so nothing is kept only in memory:
every write goes straight to a single JSON document on disk using an atomic
write (temp file in the same directory, fsync, replace). A reader always sees
either the previous or the fully-written new document, and a process killed
mid-write leaves the store intact.

Keys are normalized error signatures: volatile substrings (timestamps,
absolute paths, memory addresses) are stripped before hashing so that the same
logical failure collapses to one entry across runs.

Usage:
    store = RepairMemoryStore(Path(".healpack/repair_memory.json"))
    key = signature_key("node_missing_module", "Cannot find module 'left-pad'")

    if store.lookup(key) is None:
        store.record(key, fix, pattern_key="node_missing_module", ...)
"""

from __future__ import annotations

import hashlib
import json
import logging
import os
import re
from collections import Counter
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from healpack.exceptions import RepairMemoryError
from healpack.pattern_catalog import Fix

logger = logging.getLogger(__name__)

SCHEMA_VERSION = "1.1"

# A fix is deprecated once it has been used more than DEPRECATE_AFTER_USES times
# and its success rate is below DEPRECATE_BELOW_SUCCESS_RATE
DEPRECATE_AFTER_USES = 3
DEPRECATE_BELOW_SUCCESS_RATE = 0.3

# Order matters: timestamps before clock times, URLs/paths before bare numbers
_VOLATILE_PATTERNS = (
    # ISO-8601 timestamps: 2026-01-02T03:04:05.123Z / 2026-01-02 03:04:05+00:00
    (re.compile(r"\d{4}-\d{2}-\d{2}[T ]\d{2}:\d{2}:\d{2}(?:[.,]\d+)?(?:Z|[+-]\d{2}:?\d{2})?"), "<ts>"),
    (re.compile(r"\b\d{1,2}:\d{2}:\d{2}(?:\.\d+)?\b"), "<time>"),
    # Memory addresses and long hex identifiers
    (re.compile(r"\b0x[0-9a-fA-F]+\b"), "<addr>"),
    (re.compile(r"\b[0-9a-f]{12,}\b"), "<hex>"),
    # Absolute paths lose their directory prefix; the final segment is kept.
    # Windows: C:\foo\bar.js or C:/foo/bar.js
    (re.compile(r"\b[A-Za-z]:[\\/](?:[^\s'\"():\\/]+[\\/])*([^\s'\"():\\/]*)"), r"<path>/\1"),
    # POSIX (at least two segments, so "/" alone survives)
    (re.compile(r"(?<![\w.])/(?:[^\s/'\"():]+/)+([^\s/'\"():]*)"), r"<path>/\1"),
    # Trailing :line:col / (line,col) positions
    (re.compile(r":\d+:\d+\b"), ""),
    (re.compile(r"\(\d+,\d+\)"), ""),
)


def normalize_signature(text: str) -> str:
    """Strip volatile substrings so equivalent failures share one signature."""
    normalized = text.strip()
    for pattern, replacement in _VOLATILE_PATTERNS:
        normalized = pattern.sub(replacement, normalized)
    return re.sub(r"\s+", " ", normalized).strip()


def signature_key(pattern_key: str, text: str) -> str:
    """Build the repair-memory key for a matched error.

    Args:
        pattern_key: Catalog key of the matched pattern
        text: Matched error text (normalized before hashing)

    Returns:
        Key of the form ``<pattern_key>:<16 hex chars>``
    """
    digest = hashlib.sha256(normalize_signature(text).encode("utf-8")).hexdigest()[:16]
    return f"{pattern_key}:{digest}"


def _now() -> datetime:
    return datetime.now(timezone.utc)


class RepairMemoryEntry(BaseModel):
    """One learned error-signature -> fix mapping."""

    model_config = ConfigDict(extra="forbid")

    key: str
    pattern_key: str
    signature: str = Field(..., max_length=500, description="Normalized error text")
    fix_name: str
    confidence: float = Field(ge=0.0, le=1.0)
    category: str
    description: str
    first_seen_at: datetime
    last_used_at: datetime
    use_count: int = Field(ge=1)
    # Outcomes observed on the rebuild that followed an application of the fix
    successes: int = Field(default=0, ge=0)
    failures: int = Field(default=0, ge=0)
    deprecated: bool = False

    @property
    def success_rate(self) -> float:
        return self.successes / self.use_count


class RepairMemoryDocument(BaseModel):
    """On-disk document: all entries keyed by normalized signature."""

    model_config = ConfigDict(extra="forbid")

    schema_version: str = SCHEMA_VERSION
    updated_at: datetime | None = None
    entries: dict[str, RepairMemoryEntry] = Field(default_factory=dict)


class RepairMemoryStore:
    """Repository over the repair-memory document (``load`` / ``save_atomic``)."""

    def __init__(self, path: Path):
        self.path = Path(path)
        self._document = self.load()
        logger.debug(
            f"[RepairMemory] Loaded {len(self._document.entries)} entries from {self.path}"
        )

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def load(self) -> RepairMemoryDocument:
        """Read the document from disk.

        A missing file is an empty store. An unreadable document raises
        RepairMemoryError rather than being silently reset.
        """
        if not self.path.exists():
            return RepairMemoryDocument()

        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
            return RepairMemoryDocument(**data)
        except (json.JSONDecodeError, TypeError, ValidationError) as e:
            raise RepairMemoryError(f"Repair memory at {self.path} is unreadable: {e}") from e
        except OSError as e:
            raise RepairMemoryError(f"Failed to read repair memory at {self.path}: {e}") from e

    def save_atomic(self) -> None:
        """Write the document via temp file + replace."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._document.updated_at = _now()

        # Per-process temp name so overlapping runs never share a temp file
        temp_path = self.path.with_name(f"{self.path.name}.{os.getpid()}.tmp")
        try:
            with open(temp_path, "w", encoding="utf-8") as f:
                f.write(self._document.model_dump_json(indent=2))
                f.flush()
                os.fsync(f.fileno())
            temp_path.replace(self.path)
        except OSError as e:
            temp_path.unlink(missing_ok=True)
            raise RepairMemoryError(f"Failed to write repair memory at {self.path}: {e}") from e

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def lookup(self, key: str) -> RepairMemoryEntry | None:
        """Return the entry for a normalized key, if known."""
        return self._document.entries.get(key)

    def __contains__(self, key: str) -> bool:
        return key in self._document.entries

    def __len__(self) -> int:
        return len(self._document.entries)

    def entries(self) -> list[RepairMemoryEntry]:
        """All entries, most used first."""
        return sorted(
            self._document.entries.values(), key=lambda e: (-e.use_count, e.key)
        )

    def stats(self) -> dict:
        entries = self.entries()
        return {
            "total_entries": len(entries),
            "total_uses": sum(e.use_count for e in entries),
            "total_successes": sum(e.successes for e in entries),
            "avg_success_rate": (
                sum(e.success_rate for e in entries) / len(entries) if entries else 0.0
            ),
            "deprecated_fixes": sum(1 for e in entries if e.deprecated),
            "by_category": dict(Counter(e.category for e in entries)),
            "top_entries": [e.key for e in entries[:10]],
        }

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def record(
        self,
        key: str,
        fix: Fix,
        *,
        pattern_key: str,
        category: str,
        description: str,
        signature: str,
    ) -> RepairMemoryEntry:
        """Upsert a fix under ``key`` and persist immediately.

        Existing key: ``use_count`` increments and ``last_used_at`` moves.
        New key: inserted with ``use_count = 1``. A deprecated entry recorded
        with a different fix is replaced by a fresh entry for that fix.

        The document is re-read first so entries written by another pipeline
        run since this store was opened are not lost.
        """
        self._document = self.load()
        now = _now()

        existing = self._document.entries.get(key)
        if existing is not None and existing.deprecated and existing.fix_name != fix.name:
            logger.info(
                f"[RepairMemory] Replacing deprecated fix {existing.fix_name} for {key} with {fix.name}"
            )
            existing = None

        if existing is not None:
            existing.use_count += 1
            existing.last_used_at = now
            entry = existing
            logger.info(f"[RepairMemory] Reused {key} ({entry.fix_name}), use_count={entry.use_count}")
        else:
            entry = RepairMemoryEntry(
                key=key,
                pattern_key=pattern_key,
                signature=normalize_signature(signature)[:500],
                fix_name=fix.name,
                confidence=fix.confidence,
                category=category,
                description=description,
                first_seen_at=now,
                last_used_at=now,
                use_count=1,
            )
            self._document.entries[key] = entry
            logger.info(f"[RepairMemory] Learned {key} -> {fix.name} ({category})")

        self.save_atomic()
        return entry

    def record_outcome(self, keys: Iterable[str], success: bool) -> list[RepairMemoryEntry]:
        """Record whether the rebuild after applying the fixes for ``keys`` went green.

        A failure deprecates an entry used more than DEPRECATE_AFTER_USES times
        whose success rate has fallen below DEPRECATE_BELOW_SUCCESS_RATE.
        Unknown keys are ignored. One atomic write covers all keys.

        Returns:
            The updated entries
        """
        keys = list(dict.fromkeys(keys))
        if not keys:
            return []

        self._document = self.load()
        updated = []
        for key in keys:
            entry = self._document.entries.get(key)
            if entry is None:
                logger.debug(f"[RepairMemory] No entry for {key}; outcome not recorded")
                continue
            if success:
                entry.successes += 1
            else:
                entry.failures += 1
                if (
                    not entry.deprecated
                    and entry.use_count > DEPRECATE_AFTER_USES
                    and entry.success_rate < DEPRECATE_BELOW_SUCCESS_RATE
                ):
                    entry.deprecated = True
                    logger.warning(
                        f"[RepairMemory] Deprecated {key} ({entry.fix_name}): "
                        f"success rate {entry.success_rate:.2f} after {entry.use_count} uses"
                    )
            updated.append(entry)

        if updated:
            self.save_atomic()
            logger.info(
                f"[RepairMemory] Recorded {'success' if success else 'failure'} for {len(updated)} fix(es)"
            )
        return updated
