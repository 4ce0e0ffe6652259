"""Tests for the Env Var Vault."""

from __future__ import annotations

import json

import pytest

from dockyard.core import envvars
from dockyard.errors import InvalidInput
from dockyard.models.project import EnvVar


def _pairs(*items: tuple[str, str]) -> list[EnvVar]:
    return [EnvVar(key=k, value=v) for k, v in items]


# --- Dotenv parsing ---


def test_parse_dotenv_basic():
    pairs = envvars.parse_dotenv("A=1\nB=two\n")
    assert pairs == _pairs(("A", "1"), ("B", "two"))


def test_parse_dotenv_skips_comments_and_blank_lines():
    text = "# database\n\nDB_HOST=localhost\n   \n# port\nDB_PORT=5432"
    pairs = envvars.parse_dotenv(text)
    assert [p.key for p in pairs] == ["DB_HOST", "DB_PORT"]


def test_parse_dotenv_trims_keys_and_values():
    pairs = envvars.parse_dotenv("  KEY  =   value  ")
    assert pairs == _pairs(("KEY", "value"))


def test_parse_dotenv_strips_matching_quotes():
    pairs = envvars.parse_dotenv("A=\"quoted\"\nB='single'\nC=\"mismatch'")
    assert envvars.to_mapping(pairs) == {"A": "quoted", "B": "single", "C": "\"mismatch'"}


def test_parse_dotenv_keeps_equals_in_value():
    pairs = envvars.parse_dotenv("DSN=postgres://u:p@h/db?sslmode=require")
    assert pairs[0].value == "postgres://u:p@h/db?sslmode=require"


def test_parse_dotenv_empty_value():
    assert envvars.parse_dotenv("EMPTY=") == _pairs(("EMPTY", ""))


def test_parse_dotenv_last_duplicate_wins():
    pairs = envvars.parse_dotenv("A=1\nB=2\nA=3")
    assert envvars.to_mapping(pairs) == {"A": "3", "B": "2"}
    assert [p.key for p in pairs] == ["A", "B"]


def test_parse_dotenv_line_without_equals():
    with pytest.raises(InvalidInput, match="Line 2"):
        envvars.parse_dotenv("A=1\nnot a pair")


def test_parse_dotenv_empty_key():
    with pytest.raises(InvalidInput):
        envvars.parse_dotenv("=value")


def test_parse_dotenv_key_with_whitespace():
    with pytest.raises(InvalidInput):
        envvars.parse_dotenv("MY KEY=value")


# --- JSON parsing ---


def test_parse_json_flat_object():
    pairs = envvars.parse_json('{"A": "1", "B": 2, "C": true, "D": null}')
    assert envvars.to_mapping(pairs) == {"A": "1", "B": "2", "C": "true", "D": ""}


def test_parse_json_rejects_nested_values():
    with pytest.raises(InvalidInput):
        envvars.parse_json('{"A": {"nested": 1}}')


def test_parse_json_rejects_array():
    with pytest.raises(InvalidInput, match="flat object"):
        envvars.parse_json('[{"key": "A"}]')


def test_parse_json_invalid():
    with pytest.raises(InvalidInput, match="Invalid JSON"):
        envvars.parse_json("{broken")


def test_parse_file_picks_parser_by_extension():
    assert envvars.parse_file("vars.JSON", '{"A": "1"}') == _pairs(("A", "1"))
    assert envvars.parse_file(".env.production", "A=1") == _pairs(("A", "1"))


# --- Coercion and validation ---


def test_coerce_accepts_all_representations():
    expected = _pairs(("A", "1"))
    assert envvars.coerce("A=1") == expected
    assert envvars.coerce({"A": "1"}) == expected
    assert envvars.coerce([{"key": "A", "value": "1"}]) == expected
    assert envvars.coerce([("A", "1")]) == expected
    assert envvars.coerce(' {"A": "1"}') == expected
    assert envvars.coerce(None) == []


def test_coerce_rejects_unsupported_type():
    with pytest.raises(InvalidInput):
        envvars.coerce(42)


def test_validate_rejects_multiline_value():
    with pytest.raises(InvalidInput, match="one line"):
        envvars.validate([{"key": "A", "value": "line1\nline2"}])


def test_validate_entry_without_key():
    with pytest.raises(InvalidInput, match="key"):
        envvars.validate([{"value": "x"}])


def test_validate_key_with_equals():
    with pytest.raises(InvalidInput):
        envvars.validate([("A=B", "x")])


# --- Rendering ---


def test_to_dotenv_preserves_order():
    pairs = _pairs(("Z", "26"), ("A", "1"))
    assert envvars.to_dotenv(pairs) == "Z=26\nA=1"


@pytest.mark.parametrize(
    "items",
    [
        [("API_URL", "https://api.example.com"), ("DEBUG", "false")],
        [("DSN", "postgres://u:p@h/db?sslmode=require&a=b")],
        [("EMPTY", ""), ("NEXT", "1")],
        [("GREETING", "Привет, мир"), ("ПУТЬ", "/srv/app")],
        [("COLOR", "#ff0000"), ("A#B", "hash inside key")],
        [("QUOTE", 'say "hi"'), ("APOS", "it's")],
    ],
    ids=["plain", "equals-in-value", "empty-value", "unicode", "hash", "inner-quotes"],
)
def test_dotenv_serialization_is_stable(items: list[tuple[str, str]]):
    pairs = envvars.validate(items)
    text = envvars.to_dotenv(pairs)
    reparsed = envvars.parse_dotenv(text)
    assert reparsed == pairs
    assert envvars.to_dotenv(reparsed) == text


@pytest.mark.parametrize("key", ["#A", "#", "# A"])
def test_validate_rejects_comment_like_key(key: str):
    with pytest.raises(InvalidInput):
        envvars.validate([(key, "1")])


def test_serialize_for_dispatch_compact_json():
    payload = envvars.serialize_for_dispatch(_pairs(("A", "1"), ("NAME", "Привет")))
    assert payload == '[{"key":"A","value":"1"},{"key":"NAME","value":"Привет"}]'
    assert json.loads(payload)[1]["value"] == "Привет"


def test_serialize_for_dispatch_empty_is_empty_string():
    assert envvars.serialize_for_dispatch([]) == ""


def test_mask_pairs_hides_values_but_not_keys():
    masked = envvars.mask_pairs(_pairs(("SECRET", "hunter2"), ("EMPTY", "")))
    assert masked[0].key == "SECRET"
    assert masked[0].value == envvars.MASK
    assert masked[1].value == ""
