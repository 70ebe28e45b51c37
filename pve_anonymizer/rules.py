"""Rule registry for Proxmox VE anonymization.

Rules are loaded from pve_anonymizer/data/rules.toml once at import time and
kept as an immutable tuple ordered by descending priority.
"""

from __future__ import annotations

import re
import tomllib
from bisect import bisect_right
from collections.abc import Iterable
from dataclasses import replace
from pathlib import Path

from .models import AnonymizationRule, Replacement, RuleMatch, RuleType

_DATA_DIR = Path(__file__).parent / "data"

# Matched against lowercased keys with "_", "-" and "." stripped.
SENSITIVE_KEYS: tuple[str, ...] = (
    "password",
    "passwd",
    "passphrase",
    "pwd",
    "secret",
    "token",
    "apikey",
    "privatekey",
    "publickey",
    "cert",
    "credential",
    "authorization",
)
_SENSITIVE_EXACT_KEYS = frozenset({"pass", "key", "auth"})


def _load_rules() -> list[AnonymizationRule]:
    with (_DATA_DIR / "rules.toml").open("rb") as fh:
        data = tomllib.load(fh)

    rules: list[AnonymizationRule] = []
    for r in data["rules"]:
        flags = re.UNICODE
        if r.get("ignore_case"):
            flags |= re.IGNORECASE
        rules.append(AnonymizationRule(
            id=r["id"],
            type=RuleType(r["type"]),
            pattern=re.compile(r["pattern"], flags),
            replacement=Replacement(r["replacement"]),
            category=r["category"],
            priority=r["priority"],
            preserve_format=r.get("preserve_format", True),
            group=r.get("group", 0),
            key_pattern=re.compile(r["key_pattern"], flags) if "key_pattern" in r else None,
        ))
    return sort_rules(rules)


def sort_rules(rules: Iterable[AnonymizationRule]) -> list[AnonymizationRule]:
    """Descending priority; ties keep declaration order."""
    return sorted(rules, key=lambda rule: -rule.priority)


BUILTIN_RULES: tuple[AnonymizationRule, ...] = tuple(_load_rules())


def key_rules(rules: Iterable[AnonymizationRule]) -> list[AnonymizationRule]:
    """The same rules with their key_pattern, where set, swapped in for mapping keys."""
    return [
        replace(rule, pattern=rule.key_pattern) if rule.key_pattern is not None else rule
        for rule in rules
    ]


def by_category(category: str) -> list[AnonymizationRule]:
    return [rule for rule in BUILTIN_RULES if rule.category == category]


def by_type(rule_type: RuleType | str) -> list[AnonymizationRule]:
    return [rule for rule in BUILTIN_RULES if rule.type == rule_type]


def high_priority(min_priority: int = 80) -> list[AnonymizationRule]:
    return [rule for rule in BUILTIN_RULES if rule.priority >= min_priority]


def is_sensitive_key(key: object) -> bool:
    """True if a field name denotes a credential that must always be redacted."""
    if not isinstance(key, str):
        return False
    normalized = key.lower().replace("_", "").replace("-", "").replace(".", "")
    if normalized in _SENSITIVE_EXACT_KEYS:
        return True
    return any(sensitive in normalized for sensitive in SENSITIVE_KEYS)


class ConsumedSpans:
    """Disjoint character ranges already claimed during one scan pass."""

    def __init__(self) -> None:
        self._starts: list[int] = []
        self._ends: list[int] = []

    def __len__(self) -> int:
        return len(self._starts)

    def overlaps(self, start: int, end: int) -> bool:
        idx = bisect_right(self._starts, start)
        if idx > 0 and self._ends[idx - 1] > start:
            return True
        return idx < len(self._starts) and self._starts[idx] < end

    def claim(self, start: int, end: int) -> bool:
        """Record [start, end) unless it touches an existing span."""
        if self.overlaps(start, end):
            return False
        idx = bisect_right(self._starts, start)
        self._starts.insert(idx, start)
        self._ends.insert(idx, end)
        return True


def scan(text: str, rules: Iterable[AnonymizationRule]) -> list[RuleMatch]:
    """Return non-overlapping matches, higher-priority rules claiming spans first.

    The result is sorted by start offset.
    """
    consumed = ConsumedSpans()
    matches: list[RuleMatch] = []

    for rule in sort_rules(rules):
        for match in rule.pattern.finditer(text):
            try:
                start, end = match.span(rule.group)
            except IndexError:
                continue
            # group did not participate, or matched nothing
            if start < 0 or start == end:
                continue
            if not consumed.claim(start, end):
                continue
            matches.append(RuleMatch(rule=rule, start=start, end=end, text=text[start:end]))

    matches.sort(key=lambda m: m.start)
    return matches
