"""Env Var Vault.

Validates and normalizes per-project environment variables and converts them
between the external representations:

- line-oriented ``KEY=VALUE`` text (``.env`` files, the raw editor),
- flat JSON objects (``.json`` files),
- the compact JSON array the build runner receives as a single string input.

All of them go through the same canonical sequence of ``EnvVar`` pairs.
"""

from __future__ import annotations

import json
from collections.abc import Iterable, Mapping
from typing import Any

from dockyard.errors import InvalidInput
from dockyard.models.project import EnvVar

MASK = "••••••••"
_QUOTES = ('"', "'")


def validate(pairs: Iterable[EnvVar | Mapping[str, Any] | tuple[str, str]]) -> list[EnvVar]:
    """Trim, check and de-duplicate pairs. The last occurrence of a key wins.

    Raises:
        InvalidInput: On an empty key, a key with ``=`` or whitespace, a key
            starting with ``#``, or a value spanning several lines.
    """
    merged: dict[str, str] = {}
    for pair in pairs:
        key, value = _unpack(pair)
        key = key.strip()
        value = value.strip()
        if not key:
            raise InvalidInput("Environment variable key cannot be empty")
        if "=" in key or any(ch.isspace() for ch in key):
            raise InvalidInput(f"Invalid environment variable key: {key!r}")
        if key.startswith("#"):
            raise InvalidInput(f"Environment variable key cannot start with #: {key!r}")
        if "\n" in value or "\r" in value:
            raise InvalidInput(f"Value of {key} must fit on one line")
        merged[key] = value
    return [EnvVar(key=k, value=v) for k, v in merged.items()]


def parse_dotenv(text: str) -> list[EnvVar]:
    """Parse a ``KEY=VALUE`` block.

    Empty lines and ``#`` comments are skipped. One pair of matching quotes
    around a value is stripped.
    """
    pairs: list[tuple[str, str]] = []
    for lineno, line in enumerate(text.splitlines(), start=1):
        stripped = line.strip()
        if not stripped or stripped.startswith("#"):
            continue
        if "=" not in stripped:
            raise InvalidInput(f"Line {lineno}: expected KEY=VALUE")
        key, _, value = stripped.partition("=")
        value = value.strip()
        if len(value) >= 2 and value[0] in _QUOTES and value[-1] == value[0]:
            value = value[1:-1]
        pairs.append((key, value))
    return validate(pairs)


def parse_mapping(mapping: Mapping[str, Any]) -> list[EnvVar]:
    """Parse a flat key to scalar mapping."""
    pairs: list[tuple[str, str]] = []
    for key, value in mapping.items():
        if isinstance(value, (dict, list)):
            raise InvalidInput(f"Value of {key} must be a string, not {type(value).__name__}")
        if value is None:
            value = ""
        elif isinstance(value, bool):
            value = "true" if value else "false"
        pairs.append((str(key), str(value)))
    return validate(pairs)


def parse_json(text: str) -> list[EnvVar]:
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise InvalidInput(f"Invalid JSON: {e.msg}") from e
    if not isinstance(data, dict):
        raise InvalidInput("JSON env file must contain a flat object")
    return parse_mapping(data)


def parse_file(filename: str, content: str) -> list[EnvVar]:
    """Pick the parser from the file extension: ``.json`` or line-oriented text."""
    if filename.lower().endswith(".json"):
        return parse_json(content)
    return parse_dotenv(content)


def coerce(raw: Any) -> list[EnvVar]:
    """Accept any supported representation and return the canonical sequence."""
    if raw is None:
        return []
    if isinstance(raw, str):
        if raw.lstrip().startswith("{"):
            return parse_json(raw)
        return parse_dotenv(raw)
    if isinstance(raw, Mapping):
        return parse_mapping(raw)
    if isinstance(raw, Iterable):
        return validate(raw)
    raise InvalidInput(f"Unsupported env vars format: {type(raw).__name__}")


def to_dotenv(pairs: Iterable[EnvVar]) -> str:
    """Render pairs as unquoted ``KEY=VALUE`` lines in stored order."""
    return "\n".join(f"{v.key}={v.value}" for v in pairs)


def to_mapping(pairs: Iterable[EnvVar]) -> dict[str, str]:
    return {v.key: v.value for v in pairs}


def serialize_for_dispatch(pairs: Iterable[EnvVar]) -> str:
    """Compact JSON array for the build runner; an empty set is ``""``."""
    items = [{"key": v.key, "value": v.value} for v in pairs]
    if not items:
        return ""
    return json.dumps(items, separators=(",", ":"), ensure_ascii=False)


def mask_pairs(pairs: Iterable[EnvVar]) -> list[EnvVar]:
    return [EnvVar(key=v.key, value=MASK if v.value else "") for v in pairs]


def _unpack(pair: EnvVar | Mapping[str, Any] | tuple[str, str]) -> tuple[str, str]:
    if isinstance(pair, EnvVar):
        return pair.key, pair.value
    if isinstance(pair, Mapping):
        if "key" not in pair:
            raise InvalidInput("Environment variable entry needs a 'key'")
        value = pair.get("value")
        return str(pair["key"] or ""), "" if value is None else str(value)
    try:
        key, value = pair
    except (TypeError, ValueError) as e:
        raise InvalidInput(f"Invalid environment variable entry: {pair!r}") from e
    return str(key), str(value)
