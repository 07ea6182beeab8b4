"""Package name normalization shared by the indexes, registry client and engine."""
from __future__ import annotations

import re
from typing import Iterable, List

_SEPARATORS = re.compile(r"[-_.]+")
_TOKEN_SPLIT = re.compile(r"[-_./]")
# PEP 508 names: letters, digits, and the three separators.
_VALID_NAME = re.compile(r"^[A-Za-z0-9]([A-Za-z0-9._-]*[A-Za-z0-9])?$")

SHARD_DIGITS = "0-9"
SHARD_OTHER = "other"


def normalize_name(name: str) -> str:
    """Lowercase and collapse runs of ``-``, ``_`` and ``.`` into a single ``-``.

    Lossy by design: ``Foo.Bar`` and ``foo_bar`` map to the same key.
    """
    return _SEPARATORS.sub("-", name.strip().lower())


def is_valid_name(name: str) -> bool:
    """True when ``name`` is a syntactically valid distribution name."""
    return bool(name) and _VALID_NAME.match(name.strip()) is not None


def normalize_all(names: Iterable[str]) -> List[str]:
    """Normalize and de-duplicate ``names``, keeping first-seen order."""
    seen = set()
    out = []
    for raw in names:
        if not isinstance(raw, str) or not raw.strip():
            continue
        norm = normalize_name(raw)
        if norm not in seen:
            seen.add(norm)
            out.append(norm)
    return out


def shard_key(name: str) -> str:
    """Shard for a package: its first letter, ``0-9`` or ``other``."""
    first = normalize_name(name)[:1]
    if "a" <= first <= "z":
        return first
    if "0" <= first <= "9":
        return SHARD_DIGITS
    return SHARD_OTHER


def all_shard_keys() -> List[str]:
    """Every shard key in load order."""
    return [chr(c) for c in range(ord("a"), ord("z") + 1)] + [SHARD_DIGITS, SHARD_OTHER]


def name_tokens(name: str) -> List[str]:
    """Split a normalized name into its separator-delimited tokens."""
    return [tok for tok in _TOKEN_SPLIT.split(normalize_name(name)) if tok]
