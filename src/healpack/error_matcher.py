"""
Error Matcher

Classifies a single line of build output against the pattern catalog.

Key principles:
- Pure and deterministic: the same line always yields the same match
- Most-specific-first: first matching pattern in catalog order wins
- 0 I/O (directly unit-testable with literal strings)

Usage:
    result = match_error_pattern("Error: Cannot find module 'left-pad'")

    # result.key = "node_missing_module"
    # result.category = "missing-dependency"
    # result.captured_groups = ("left-pad",)
"""

from dataclasses import dataclass
from typing import List, Optional, Tuple

from healpack.pattern_catalog import DEFAULT_CATALOG, Fix, PatternCatalog


@dataclass(frozen=True)
class MatchResult:
    """Result of matching one line against the catalog"""

    key: str
    category: str
    captured_groups: Tuple[str, ...]
    fixes: Tuple[Fix, ...]
    matched_text: str
    line: str

    def ranked_fixes(self) -> List[Fix]:
        """Candidate fixes, highest confidence first (stable for ties)."""
        return sorted(self.fixes, key=lambda f: f.confidence, reverse=True)


def match_error_pattern(
    line: str, catalog: PatternCatalog = DEFAULT_CATALOG
) -> Optional[MatchResult]:
    """Match a build output line against known error patterns.

    Args:
        line: One line of build output
        catalog: Pattern catalog to evaluate (defaults to the built-in catalog)

    Returns:
        MatchResult for the first (most specific) matching pattern, None otherwise
    """
    if not line:
        return None

    for pattern in catalog:
        if pattern.is_literal:
            if pattern.matcher not in line:
                continue
            matched_text = pattern.matcher
            groups: Tuple[str, ...] = ()
        else:
            match = pattern.matcher.search(line)
            if match is None:
                continue
            matched_text = match.group(0)
            groups = tuple(g if g is not None else "" for g in match.groups())

        return MatchResult(
            key=pattern.key,
            category=pattern.category,
            captured_groups=groups,
            fixes=pattern.fixes,
            matched_text=matched_text,
            line=line.strip(),
        )

    return None
