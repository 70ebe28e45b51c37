from __future__ import annotations

import re

import pytest

from pve_anonymizer.models import AnonymizationRule, Category, Replacement, RuleType
from pve_anonymizer.rules import (
    BUILTIN_RULES,
    ConsumedSpans,
    by_category,
    by_type,
    high_priority,
    is_sensitive_key,
    key_rules,
    scan,
)


def _types(text: str) -> list[str]:
    return [m.rule.type.value for m in scan(text, BUILTIN_RULES)]


def _texts(text: str) -> list[str]:
    return [m.text for m in scan(text, BUILTIN_RULES)]


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


def test_builtin_rules_sorted_by_descending_priority() -> None:
    priorities = [rule.priority for rule in BUILTIN_RULES]
    assert priorities == sorted(priorities, reverse=True)


def test_rule_ids_are_unique() -> None:
    ids = [rule.id for rule in BUILTIN_RULES]
    assert len(ids) == len(set(ids))


def test_every_builtin_type_present() -> None:
    types = {rule.type for rule in BUILTIN_RULES}
    assert {
        RuleType.EMAIL,
        RuleType.IP_ADDRESS,
        RuleType.HOSTNAME,
        RuleType.UUID,
        RuleType.PASSWORD,
        RuleType.TOKEN,
        RuleType.USERNAME,
        RuleType.PATH,
        RuleType.MAC,
    } <= types


def test_credentials_always_redacted() -> None:
    for rule in by_category(Category.CREDENTIALS):
        assert rule.replacement is Replacement.REDACT


def test_by_type_hostname_has_two_rules() -> None:
    assert {rule.id for rule in by_type(RuleType.HOSTNAME)} == {"fqdn", "infra-hostname"}


def test_by_type_accepts_plain_string() -> None:
    assert by_type("email") == by_type(RuleType.EMAIL)


def test_high_priority_filter() -> None:
    rules = high_priority(90)
    assert rules
    assert all(rule.priority >= 90 for rule in rules)
    assert {rule.type for rule in rules} >= {RuleType.EMAIL, RuleType.IP_ADDRESS}


def test_unknown_category_is_empty() -> None:
    assert by_category("nope") == []


# ---------------------------------------------------------------------------
# Detection
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    "text,expected",
    [
        ("mail admin@example.com now", "email"),
        ("ping 192.168.1.100", "ip_address"),
        ("ssh pve1.example.com", "hostname"),
        ("restart web-server-01", "hostname"),
        ("vm 550e8400-e29b-41d4-a716-446655440000", "uuid"),
        ("nic aa:bb:cc:dd:ee:ff", "mac"),
        ("cd /home/alice/projects", "path"),
    ],
)
def test_detects_each_type(text: str, expected: str) -> None:
    assert _types(text) == [expected]


def test_credential_pair_replaces_value_only() -> None:
    matches = scan("password=hunter2 and more", BUILTIN_RULES)
    assert len(matches) == 1
    assert matches[0].text == "hunter2"
    assert matches[0].rule.type is RuleType.PASSWORD


def test_username_prefix_captures_identifier() -> None:
    matches = scan("username: jdoe logged in", BUILTIN_RULES)
    assert [(m.rule.type, m.text) for m in matches] == [(RuleType.USERNAME, "jdoe")]


def test_opaque_token_needs_digits_and_letters() -> None:
    assert _types("key material A1b2C3d4E5f6G7h8I9j0K1") == ["token"]
    assert _types("supercalifragilisticexpialidocious") == []


def test_plain_text_has_no_matches() -> None:
    assert scan("nothing to see here", BUILTIN_RULES) == []


def test_version_numbers_are_not_ips_or_hosts() -> None:
    assert _types("terraform 1.6.0") == []


# ---------------------------------------------------------------------------
# Overlap resolution
# ---------------------------------------------------------------------------


def test_email_domain_not_matched_again_as_hostname() -> None:
    assert _texts("write to ops@pve.example.com") == ["ops@pve.example.com"]


def test_path_keeps_file_names_inside() -> None:
    assert _texts("at /home/alice/app.js line 4") == ["/home/alice/app.js"]
    assert _types("at /home/alice/app.js line 4") == ["path"]


def test_credential_value_not_rematched_as_token() -> None:
    matches = scan("token=A1b2C3d4E5f6G7h8I9j0K1", BUILTIN_RULES)
    assert [m.rule.type for m in matches] == [RuleType.PASSWORD]


def test_matches_sorted_by_position() -> None:
    matches = scan("10.0.0.1 then admin@example.com then 10.0.0.2", BUILTIN_RULES)
    starts = [m.start for m in matches]
    assert starts == sorted(starts)
    assert len(matches) == 3


def test_higher_priority_custom_rule_wins() -> None:
    custom = AnonymizationRule(
        id="ticket-host",
        type=RuleType.CUSTOM,
        pattern=re.compile(r"ticket\.example\.com"),
        replacement=Replacement.PSEUDONYM,
        category=Category.SYSTEM_DATA,
        priority=200,
    )
    matches = scan("see ticket.example.com", [*BUILTIN_RULES, custom])
    assert [m.rule.id for m in matches] == ["ticket-host"]


def test_consumed_spans_reject_overlaps() -> None:
    spans = ConsumedSpans()
    assert spans.claim(10, 20)
    assert spans.claim(0, 10)
    assert spans.claim(20, 25)
    assert not spans.claim(5, 12)
    assert not spans.claim(19, 21)
    assert not spans.claim(12, 15)
    assert not spans.claim(0, 30)
    assert len(spans) == 3


def test_consumed_spans_overlaps_is_read_only() -> None:
    spans = ConsumedSpans()
    spans.claim(3, 6)
    assert spans.overlaps(4, 5)
    assert not spans.overlaps(6, 9)
    assert len(spans) == 1


# ---------------------------------------------------------------------------
# Sensitive keys
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    "key",
    ["password", "PASSWORD", "db_password", "apiKey", "api-key", "privateKey",
     "client_secret", "apiToken", "sslCert", "credentials", "Authorization",
     "pass", "key", "auth"],
)
def test_sensitive_keys(key: str) -> None:
    assert is_sensitive_key(key)


@pytest.mark.parametrize("key", ["host", "username", "port", "keyboard_layout", "author", 42, None])
def test_non_sensitive_keys(key: object) -> None:
    assert not is_sensitive_key(key)


# ---------------------------------------------------------------------------
# Key patterns
# ---------------------------------------------------------------------------


@pytest.mark.parametrize("key", ["proxmoxHost", "vmHostName", "webserver", "nodeVersion"])
def test_key_rules_leave_field_names(key: str) -> None:
    assert scan(key, key_rules(BUILTIN_RULES)) == []


@pytest.mark.parametrize("key", ["pve-node-01", "web-server", "pve1.example.com", "10.0.0.1"])
def test_key_rules_still_catch_hosts(key: str) -> None:
    (match,) = scan(key, key_rules(BUILTIN_RULES))
    assert match.text == key


def test_key_rules_keep_rule_identity() -> None:
    swapped = {rule.id: rule for rule in key_rules(BUILTIN_RULES)}
    original = {rule.id: rule for rule in BUILTIN_RULES}
    assert swapped.keys() == original.keys()
    assert swapped["infra-hostname"].pattern is original["infra-hostname"].key_pattern
    assert swapped["email"] is original["email"]
