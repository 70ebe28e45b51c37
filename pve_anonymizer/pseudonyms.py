"""Deterministic, format-preserving pseudonym generation and the mapping table.

A pseudonym is derived from SHA-256 over (type, category, salt, attempt,
original). The attempt counter starts at 0 and is bumped only when a candidate
equals its original, is already live for another original, or is itself a
known original value. After _MAX_ATTEMPTS the generator falls back to a full
length opaque token.
"""

from __future__ import annotations

import hashlib
import ipaddress
import threading
from collections.abc import Callable, Iterable
from typing import Any

from .exceptions import InvalidInput
from .logger import Log
from .models import (
    DEFAULT_HASH_SALT,
    MappingStats,
    PseudonymMapping,
    RuleType,
    type_name,
)

_MAX_ATTEMPTS = 32

_EMAIL_DOMAINS = ("company.local", "example.org", "test.com", "internal.net")
_HOST_PREFIXES = ("srv", "host", "node", "server", "vm", "app")
_HOST_DOMAINS = ("example.internal", "corp.local", "lab.test")
_USER_PREFIXES = ("user", "admin", "operator", "service")
_HOME_ROOTS = frozenset({"home", "Users", "users"})


def _digest(*parts: str) -> bytes:
    return hashlib.sha256("\x1f".join(parts).encode("utf-8")).digest()


def _acceptable_ipv4(address: ipaddress.IPv4Address) -> bool:
    if address.packed[0] == 0:
        return False
    return not (
        address.is_unspecified
        or address.is_loopback
        or address.is_link_local
        or address.is_multicast
        or address.is_reserved
    )


class PseudonymManager:
    """Owns the original <-> pseudonym table.

    Lookups are O(1) in both directions. Insert-on-miss happens under a lock,
    so concurrent first lookups of the same value converge on one pseudonym.
    """

    def __init__(self, salt: str = DEFAULT_HASH_SALT) -> None:
        self._salt = salt
        self._mappings: dict[str, PseudonymMapping] = {}
        self._by_pseudonym: dict[str, PseudonymMapping] = {}
        self._lock = threading.Lock()
        self._generators: dict[str, Callable[[bytes, str, str, int], str]] = {
            RuleType.EMAIL.value: self._email,
            RuleType.IP_ADDRESS.value: self._ip_address,
            RuleType.HOSTNAME.value: self._hostname,
            RuleType.UUID.value: self._uuid,
            RuleType.USERNAME.value: self._username,
            RuleType.PATH.value: self._path,
            RuleType.MAC.value: self._mac,
        }

    @property
    def salt(self) -> str:
        return self._salt

    def __len__(self) -> int:
        return len(self._mappings)

    def get_pseudonym(
        self,
        original: str,
        rule_type: RuleType | str,
        category: str,
        salt: str | None = None,
    ) -> str:
        """Return the pseudonym for original, creating the mapping on first use."""
        if not isinstance(original, str) or not original.strip():
            raise InvalidInput("Original value cannot be empty")

        existing = self._mappings.get(original)
        if existing is not None:
            return existing.pseudonym

        with self._lock:
            existing = self._mappings.get(original)
            if existing is not None:
                return existing.pseudonym

            kind = type_name(rule_type)
            pseudonym = self._generate_unique(original, kind, category, salt or self._salt)
            mapping = PseudonymMapping(
                original_value=original,
                pseudonym=pseudonym,
                type=kind,
                category=category,
            )
            self._mappings[original] = mapping
            self._by_pseudonym[pseudonym] = mapping
            return pseudonym

    def get_mapping(self, original: str) -> PseudonymMapping | None:
        return self._mappings.get(original)

    def get_mapping_by_pseudonym(self, pseudonym: str) -> PseudonymMapping | None:
        return self._by_pseudonym.get(pseudonym)

    def get_all_mappings(self) -> list[PseudonymMapping]:
        return list(self._mappings.values())

    def clear_mappings(self) -> None:
        with self._lock:
            self._mappings.clear()
            self._by_pseudonym.clear()

    def get_stats(self) -> MappingStats:
        stats = MappingStats(total_mappings=len(self._mappings))
        for mapping in list(self._mappings.values()):
            stats.mappings_by_type[mapping.type] = (
                stats.mappings_by_type.get(mapping.type, 0) + 1
            )
            stats.mappings_by_category[mapping.category] = (
                stats.mappings_by_category.get(mapping.category, 0) + 1
            )
        return stats

    def export_mappings(self) -> list[dict[str, str]]:
        """Snapshot of the table in the camelCase exchange format."""
        return [mapping.to_dict() for mapping in self.get_all_mappings()]

    def import_mappings(self, records: Iterable[Any]) -> int:
        """Load exchange records; existing originals are kept. Returns the number added.

        Every record is validated before anything is inserted.
        """
        parsed = [PseudonymMapping.from_dict(record) for record in records]
        added = 0
        with self._lock:
            for mapping in parsed:
                if mapping.original_value in self._mappings:
                    continue
                owner = self._by_pseudonym.get(mapping.pseudonym)
                if owner is not None:
                    Log.warning(
                        "Skipping imported mapping: pseudonym already assigned",
                        mapping_type=mapping.type,
                    )
                    continue
                self._mappings[mapping.original_value] = mapping
                self._by_pseudonym[mapping.pseudonym] = mapping
                added += 1
        return added

    # ------------------------------------------------------------------
    # Generation
    # ------------------------------------------------------------------

    def _generate_unique(self, original: str, kind: str, category: str, salt: str) -> str:
        for attempt in range(_MAX_ATTEMPTS):
            candidate = self._generate(original, kind, category, salt, attempt)
            if (
                candidate != original
                and candidate not in self._by_pseudonym
                and candidate not in self._mappings
            ):
                return candidate
        Log.warning("Pseudonym retries exhausted, using long opaque token", rule_type=kind)
        return "anon-" + _digest(kind, category, salt, "fallback", original).hex()

    def _generate(
        self, original: str, kind: str, category: str, salt: str, attempt: int
    ) -> str:
        digest = _digest(kind, category, salt, str(attempt), original)
        generator = self._generators.get(kind, self._generic)
        return generator(digest, original, salt, attempt)

    @staticmethod
    def _email(digest: bytes, original: str, salt: str, attempt: int) -> str:
        number = int.from_bytes(digest[:6], "big") % 10**8
        domain = _EMAIL_DOMAINS[digest[6] % len(_EMAIL_DOMAINS)]
        return f"user{number:08d}@{domain}"

    @staticmethod
    def _ip_address(digest: bytes, original: str, salt: str, attempt: int) -> str:
        while True:
            for offset in range(0, len(digest) - 3, 4):
                address = ipaddress.IPv4Address(digest[offset:offset + 4])
                if _acceptable_ipv4(address):
                    return str(address)
            digest = hashlib.sha256(digest).digest()

    @staticmethod
    def _hostname(digest: bytes, original: str, salt: str, attempt: int) -> str:
        prefix = _HOST_PREFIXES[digest[0] % len(_HOST_PREFIXES)]
        label = f"{prefix}-{digest[1:4].hex()}"
        if "." in original.strip("."):
            return f"{label}.{_HOST_DOMAINS[digest[4] % len(_HOST_DOMAINS)]}"
        return label

    @staticmethod
    def _uuid(digest: bytes, original: str, salt: str, attempt: int) -> str:
        h = digest[:16].hex()
        variant = format((int(h[16], 16) & 0x3) | 0x8, "x")
        return f"{h[:8]}-{h[8:12]}-4{h[13:16]}-{variant}{h[17:20]}-{h[20:32]}"

    @staticmethod
    def _username(digest: bytes, original: str, salt: str, attempt: int) -> str:
        prefix = _USER_PREFIXES[digest[0] % len(_USER_PREFIXES)]
        return f"{prefix}{digest[1:4].hex()}"

    @staticmethod
    def _path(digest: bytes, original: str, salt: str, attempt: int) -> str:
        # Components hash independently so a directory maps the same way in every path.
        parts = original.split("/")
        out: list[str] = []
        for index, part in enumerate(parts):
            if part in ("", ".", ".."):
                out.append(part)
                continue
            if index == 1 and part in _HOME_ROOTS:
                out.append(part)
                continue
            token = _digest("path", salt, str(attempt), str(index), part).hex()[:8]
            if "." in part and not part.startswith("."):
                ext = part.split(".", 1)[1]
                out.append(f"file{token}.{ext}")
            else:
                out.append(f"dir{token}")
        return "/".join(out)

    @staticmethod
    def _mac(digest: bytes, original: str, salt: str, attempt: int) -> str:
        octets = bytearray(digest[:6])
        octets[0] = (octets[0] & 0xFC) | 0x02  # locally administered, unicast
        sep = "-" if "-" in original else ":"
        mac = sep.join(f"{octet:02x}" for octet in octets)
        return mac.upper() if any(c in "ABCDEF" for c in original) else mac

    @staticmethod
    def _generic(digest: bytes, original: str, salt: str, attempt: int) -> str:
        width = min(max(len(original) - 5, 8), 48)
        return f"anon-{digest.hex()[:width]}"
