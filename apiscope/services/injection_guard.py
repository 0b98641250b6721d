# ABOUTME: SQL injection signature detection
# ABOUTME: Validates filter trees and raw query parameters before they reach query compilation

import logging
import re
from dataclasses import dataclass
from typing import Any, Optional

from apiscope.exceptions import BadRequest

logger = logging.getLogger(__name__)

_STATEMENT_KEYWORDS = (
    "select|insert|update|delete|drop|alter|create|truncate|replace|merge|"
    "exec|execute|union|grant|revoke|declare|shutdown|attach|pragma"
)

INJECTION_PATTERNS = {
    "stacked_statement": re.compile(rf";\s*(?:{_STATEMENT_KEYWORDS})\b", re.IGNORECASE),
    "comment": re.compile(r"--|/\*|\*/"),
    "numeric_tautology": re.compile(r"\b(\d+)\s*=\s*\1\b"),
    "quoted_tautology": re.compile(r"(['\"])(\w*)\1\s*=\s*\1\2\1"),
    "quote_breakout": re.compile(r"['\"]\s*\)?\s*\b(?:or|and)\b\s*['\"(\w]", re.IGNORECASE),
    "or_true": re.compile(r"\bor\b\s+(?:true|not\s+false)\b", re.IGNORECASE),
    "union_select": re.compile(r"\bunion\b(?:\s+all|\s+distinct)?\s+select\b", re.IGNORECASE),
    "time_based": re.compile(
        r"\b(?:sleep|pg_sleep|benchmark|randomblob)\s*\(|\bwaitfor\s+delay\b", re.IGNORECASE
    ),
    "catalog_probe": re.compile(r"\b(?:information_schema|sqlite_master|sqlite_schema|pg_catalog)\b", re.IGNORECASE),
}


@dataclass(frozen=True)
class GuardedFilter:
    """A filter tree that passed the injection guard. Only guard_filter() creates these."""
    tree: dict
    source: str = "empty"


def detect(value: str) -> Optional[str]:
    """Returns the name of the first signature found in a string, or None."""
    for name, pattern in INJECTION_PATTERNS.items():
        if pattern.search(value):
            return name
    return None


def is_safe(value: Any) -> bool:
    """True when a single value carries no injection signature."""
    if not isinstance(value, str):
        return True
    return detect(value) is None


def find_injection(tree: Any) -> Optional[str]:
    """
    Walk every key and string leaf of a nested dict/list tree.

    Returns the first offending string, or None when the whole tree is clean.
    """
    if isinstance(tree, str):
        return tree if detect(tree) else None
    if isinstance(tree, dict):
        for key, value in tree.items():
            offending = find_injection(str(key)) or find_injection(value)
            if offending is not None:
                return offending
        return None
    if isinstance(tree, (list, tuple)):
        for item in tree:
            offending = find_injection(item)
            if offending is not None:
                return offending
    return None


def reject(value: str) -> BadRequest:
    logger.warning("Rejected request input matching %s signature", detect(value) or "unknown")
    return BadRequest("Query contains a forbidden SQL pattern")


def guard_value(value: Optional[str]) -> None:
    """Raise BadRequest when a raw query parameter carries a signature."""
    if value and detect(value):
        raise reject(value)


def guard_filter(tree: dict, source: str = "json") -> GuardedFilter:
    """Validate a parsed filter tree, returning the guarded wrapper the query compiler accepts."""
    offending = find_injection(tree)
    if offending is not None:
        raise reject(offending)
    return GuardedFilter(tree=tree, source=source)
