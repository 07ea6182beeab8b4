"""Typed parse boundary for PyPI and Libraries.io JSON payloads.

Nothing outside this module touches raw upstream JSON: payloads are
validated here and turned into ``PackageMetadata`` or plain name lists.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any, List, Optional, Tuple

from packaging.requirements import InvalidRequirement, Requirement

from common.names import normalize_all, normalize_name

logger = logging.getLogger(__name__)

# Fallback for strings packaging rejects: strip extras and version specifiers.
_EXTRAS = re.compile(r"\[.*?\]")
_SPECIFIER_SPLIT = re.compile(r"[\s;(<>=!~]")


class MetadataError(ValueError):
    """Upstream payload does not have the documented shape."""


def parse_requirement_name(spec: str) -> Optional[str]:
    """Return the distribution name of a PEP 508 requirement string, or None."""
    if not isinstance(spec, str) or not spec.strip():
        return None
    try:
        return Requirement(spec).name
    except InvalidRequirement:
        cleaned = _EXTRAS.sub("", spec.strip())
        name = _SPECIFIER_SPLIT.split(cleaned, maxsplit=1)[0].strip().lstrip("+-")
        return name or None


@dataclass(frozen=True)
class PackageMetadata:
    """The subset of ``/pypi/<name>/json`` the engine relies on."""
    name: str
    version: Optional[str] = None
    requires_dist: Tuple[str, ...] = field(default_factory=tuple)
    dependencies: Tuple[str, ...] = field(default_factory=tuple)

    @classmethod
    def from_json(cls, payload: Any, requested_name: str = "") -> "PackageMetadata":
        """Validate a PyPI JSON API document.

        Raises:
            MetadataError: the payload is not an object with an ``info`` object.
        """
        if not isinstance(payload, dict):
            raise MetadataError(f"{requested_name}: payload is not an object")
        info = payload.get("info")
        if not isinstance(info, dict):
            raise MetadataError(f"{requested_name}: missing 'info' object")

        name = info.get("name") if isinstance(info.get("name"), str) else requested_name
        version = info.get("version") if isinstance(info.get("version"), str) else None

        raw_requirements: List[str] = []
        for key in ("requires_dist", "requires"):
            values = info.get(key)
            if values is None:
                continue
            if not isinstance(values, list):
                logger.debug("Ignoring non-list %s for %s", key, requested_name or name)
                continue
            raw_requirements.extend(v for v in values if isinstance(v, str))

        dep_names = [parse_requirement_name(req) for req in raw_requirements]
        own = normalize_name(name) if name else ""
        dependencies = tuple(d for d in normalize_all(n for n in dep_names if n) if d != own)
        return cls(
            name=name or requested_name,
            version=version,
            requires_dist=tuple(raw_requirements),
            dependencies=dependencies,
        )


def parse_dependents(payload: Any) -> List[str]:
    """Extract normalized names from a Libraries.io ``/dependents`` response."""
    if not isinstance(payload, list):
        raise MetadataError("dependents payload is not a list")
    names = []
    for row in payload:
        if isinstance(row, dict) and isinstance(row.get("name"), str):
            names.append(row["name"])
    return normalize_all(names)


def parse_popular_list(payload: Any) -> List[str]:
    """Accept a plain list of names or the top-pypi-packages ``{"rows": [...]}`` shape."""
    if isinstance(payload, dict) and isinstance(payload.get("rows"), list):
        payload = [row.get("project") for row in payload["rows"] if isinstance(row, dict)]
    if not isinstance(payload, list):
        raise MetadataError("popular list must be a list or an object with 'rows'")
    return normalize_all(str(item) for item in payload if item)
