"""Known build-failure signatures and their ranked candidate fixes.

The catalog is compiled once at import time and never mutated. Patterns are
evaluated most-specific-first: lower ``priority`` wins, ties keep declaration
order. A generic signature (e.g. Node's ``Cannot find module``) must carry a
higher priority number than any precise signature it could shadow.

Fix confidences are static authorial scores, not learned values.
"""

import re
from dataclasses import dataclass, field
from typing import Iterable, Optional, Pattern, Sequence, Tuple, Union


@dataclass(frozen=True)
class Fix:
    """A candidate remediation for a matched error."""

    name: str
    confidence: float
    template: str  # str.format template, positional args are the captured groups
    apply: Optional[str] = None  # Name of a registered remediation capability

    def __post_init__(self):
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"Fix '{self.name}' confidence must be in [0, 1]: {self.confidence}")

    def describe(self, groups: Sequence[str] = ()) -> str:
        """Render a human-readable description parameterized on the match groups."""
        try:
            return self.template.format(*groups)
        except IndexError:
            return self.template


@dataclass(frozen=True)
class ErrorPattern:
    """A known error signature mapped to a category and candidate fixes."""

    key: str
    matcher: Union[str, Pattern[str]]  # literal substring or compiled regex
    category: str
    fixes: Tuple[Fix, ...] = field(default_factory=tuple)
    priority: int = 5  # 1=most specific, 10=most generic

    @property
    def is_literal(self) -> bool:
        return isinstance(self.matcher, str)


class PatternCatalog:
    """Immutable, specificity-ordered table of error patterns."""

    def __init__(self, patterns: Iterable[ErrorPattern]):
        ordered = sorted(enumerate(patterns), key=lambda item: (item[1].priority, item[0]))
        self._patterns: Tuple[ErrorPattern, ...] = tuple(p for _, p in ordered)

        keys = [p.key for p in self._patterns]
        duplicates = {k for k in keys if keys.count(k) > 1}
        if duplicates:
            raise ValueError(f"Duplicate pattern keys in catalog: {sorted(duplicates)}")

        self._by_key = {p.key: p for p in self._patterns}

    def __iter__(self):
        return iter(self._patterns)

    def __len__(self) -> int:
        return len(self._patterns)

    def get(self, key: str) -> Optional[ErrorPattern]:
        return self._by_key.get(key)

    def keys(self) -> Tuple[str, ...]:
        return tuple(p.key for p in self._patterns)


_BUILTIN_PATTERNS = (
    ErrorPattern(
        key="webpack_module_not_found",
        matcher=re.compile(r"Module not found: (?:Error: )?Can't resolve '([^']+)'"),
        category="missing-dependency",
        priority=1,
        fixes=(
            Fix(
                name="install_missing",
                confidence=0.9,
                template="Install missing module: {0}",
                apply="install_dependencies",
            ),
        ),
    ),
    ErrorPattern(
        key="python_missing_module",
        matcher=re.compile(r"ModuleNotFoundError: No module named '([^']+)'"),
        category="missing-dependency",
        priority=1,
        fixes=(
            Fix(
                name="install_package",
                confidence=0.85,
                template="Install missing Python package: {0}",
                apply="install_dependencies",
            ),
        ),
    ),
    ErrorPattern(
        key="type_mismatch",
        matcher=re.compile(r"Type '(.+?)' is not assignable to type '(.+?)'"),
        category="type-error",
        priority=2,
        fixes=(
            Fix(name="add_index_signature", confidence=0.8, template="Add index signature for {1}"),
            Fix(name="widen_to_any", confidence=0.7, template="Widen {0} to any (safe fallback)"),
            Fix(name="add_type_assertion", confidence=0.6, template="Assert as {1}"),
        ),
    ),
    ErrorPattern(
        key="undefined_name",
        matcher=re.compile(r"Cannot find name '([^']+)'"),
        category="undefined-reference",
        priority=2,
        fixes=(
            Fix(name="add_import", confidence=0.8, template="Add import for {0}"),
            Fix(name="declare_variable", confidence=0.5, template="Auto-declare {0}"),
        ),
    ),
    ErrorPattern(
        key="reference_error",
        matcher=re.compile(r"ReferenceError: ([\w$]+) is not defined"),
        category="undefined-reference",
        priority=2,
        fixes=(
            Fix(name="add_import", confidence=0.8, template="Add import for {0}"),
            Fix(name="declare_variable", confidence=0.5, template="Auto-declare {0}"),
        ),
    ),
    ErrorPattern(
        key="unused_variable",
        matcher=re.compile(
            r"'([^']+)' is (?:defined|assigned|declared) but (?:never used|its value is never read)"
        ),
        category="lint",
        priority=3,
        fixes=(
            Fix(name="prefix_underscore", confidence=0.95, template="Prefix {0} with underscore"),
            Fix(name="remove_import", confidence=0.9, template="Remove unused import {0}"),
        ),
    ),
    ErrorPattern(
        key="react_hook_deps",
        matcher=re.compile(r"React Hook (\S+) has (?:a missing|missing) dependenc"),
        category="react",
        priority=3,
        fixes=(
            Fix(name="add_eslint_disable", confidence=0.8, template="Add eslint-disable for {0}"),
        ),
    ),
    ErrorPattern(
        key="port_in_use",
        matcher=re.compile(r"EADDRINUSE.*?:(\d+)"),
        category="port-conflict",
        priority=4,
        fixes=(
            Fix(name="release_port", confidence=0.9, template="Release process bound to port {0}"),
        ),
    ),
    ErrorPattern(
        key="heap_out_of_memory",
        matcher="JavaScript heap out of memory",
        category="resource-exhaustion",
        priority=4,
        fixes=(
            Fix(
                name="increase_heap",
                confidence=0.9,
                template="Increase NODE_OPTIONS max-old-space-size",
            ),
        ),
    ),
    # No safe automated remediation exists: always escalates
    ErrorPattern(
        key="disk_full",
        matcher=re.compile(r"ENOSPC|No space left on device"),
        category="resource-exhaustion",
        priority=4,
        fixes=(),
    ),
    # Generic Node resolution failure; must stay behind the bundler-specific signature
    ErrorPattern(
        key="node_missing_module",
        matcher=re.compile(r"Cannot find module '([^']+)'"),
        category="missing-dependency",
        priority=6,
        fixes=(
            Fix(
                name="install_package",
                confidence=0.9,
                template="Install missing package: {0}",
                apply="install_dependencies",
            ),
            Fix(name="fix_relative_path", confidence=0.8, template="Fix relative path for {0}"),
        ),
    ),
)

DEFAULT_CATALOG = PatternCatalog(_BUILTIN_PATTERNS)
