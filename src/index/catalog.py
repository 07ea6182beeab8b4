"""Curated package catalog: the popular-packages list and framework peer groups."""
from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Dict, FrozenSet, Iterable, Iterator, List, Optional, Sequence

from constants import Constants
from common import http_client
from common.names import normalize_all, normalize_name
from registry.pypi.metadata import MetadataError, parse_popular_list

logger = logging.getLogger(__name__)

WEB_FRAMEWORKS = frozenset({
    "flask", "django", "fastapi", "tornado", "bottle", "cherrypy",
    "quart", "sanic", "falcon", "pyramid", "web2py",
})
ASYNC_FRAMEWORKS = frozenset({"aiohttp", "trio", "curio", "starlette", "uvicorn"})
DATA_SCIENCE = frozenset({"pandas", "numpy", "scipy", "matplotlib", "seaborn", "plotly", "bokeh"})
ML_FRAMEWORKS = frozenset({
    "tensorflow", "torch", "pytorch", "scikit-learn", "keras", "xgboost", "lightgbm",
})
TESTING_FRAMEWORKS = frozenset({"pytest", "unittest", "nose", "tox", "hypothesis", "mock"})
ORMS = frozenset({"sqlalchemy", "peewee", "pony", "tortoise-orm", "django-orm"})

# Web and async frameworks are compared as one group.
UI_FRAMEWORKS = WEB_FRAMEWORKS | ASYNC_FRAMEWORKS

PEER_GROUPS: Dict[str, FrozenSet[str]] = {
    "ui": UI_FRAMEWORKS,
    "data-science": DATA_SCIENCE,
    "ml": ML_FRAMEWORKS,
    "testing": TESTING_FRAMEWORKS,
    "orm": ORMS,
}


def is_ui_framework(name: str) -> bool:
    return normalize_name(name) in UI_FRAMEWORKS


def is_web_framework(name: str) -> bool:
    return normalize_name(name) in WEB_FRAMEWORKS


def is_data_science(name: str) -> bool:
    return normalize_name(name) in DATA_SCIENCE


def is_ml_framework(name: str) -> bool:
    return normalize_name(name) in ML_FRAMEWORKS


def peer_group_of(name: str) -> Optional[str]:
    """Name of the curated group containing ``name``, if any."""
    normalized = normalize_name(name)
    for group, members in PEER_GROUPS.items():
        if normalized in members:
            return group
    return None


def peer_group_members(name: str) -> List[str]:
    """Other members of ``name``'s peer group, sorted; empty when ungrouped."""
    group = peer_group_of(name)
    if group is None:
        return []
    normalized = normalize_name(name)
    return sorted(m for m in PEER_GROUPS[group] if m != normalized)


class PopularCatalog:
    """Ordered list of popular package names, most popular first."""

    def __init__(self, names: Iterable[str] = ()):
        self._names: List[str] = normalize_all(names)
        self._members = frozenset(self._names)

    def __len__(self) -> int:
        return len(self._names)

    def __iter__(self) -> Iterator[str]:
        return iter(self._names)

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and normalize_name(name) in self._members

    @property
    def names(self) -> Sequence[str]:
        return tuple(self._names)

    def top(self, count: int) -> List[str]:
        return self._names[:max(0, count)]

    @classmethod
    def from_file(cls, path: Path) -> "PopularCatalog":
        """Read a popular list; missing or malformed files give an empty catalog."""
        try:
            with open(path, "r", encoding="utf-8") as handle:
                payload = json.load(handle)
        except FileNotFoundError:
            return cls()
        except (OSError, ValueError) as exc:
            logger.warning("Failed to load popular list %s: %s", path, exc)
            return cls()
        try:
            return cls(parse_popular_list(payload))
        except MetadataError as exc:
            logger.warning("Ignoring popular list %s: %s", path, exc)
            return cls()

    @classmethod
    def from_url(cls, url: str = Constants.POPULAR_PACKAGES_URL) -> "PopularCatalog":
        """Download a popular list (plain list or ``{"rows": [...]}``)."""
        status, _, payload = http_client.get_json(url)
        if status != 200 or payload is None:
            logger.warning("Could not download popular list (status %s)", status)
            return cls()
        try:
            return cls(parse_popular_list(payload))
        except MetadataError as exc:
            logger.warning("Ignoring downloaded popular list: %s", exc)
            return cls()

    @classmethod
    def load(
        cls,
        data_dir: Path,
        url: Optional[str] = None,
        refresh: bool = False,
        save: bool = True,
    ) -> "PopularCatalog":
        """Local ``popular.json`` first; download from ``url`` when absent or ``refresh``.

        A downloaded list is written back to the data directory when ``save``.
        """
        path = Path(data_dir) / Constants.POPULAR_FILE
        catalog = cls() if refresh else cls.from_file(path)
        if len(catalog) or not url:
            return catalog
        catalog = cls.from_url(url)
        if len(catalog) and save:
            catalog.save(path)
        return catalog

    def save(self, path: Path) -> None:
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with open(path, "w", encoding="utf-8") as handle:
                json.dump(self._names, handle)
        except OSError as exc:
            logger.warning("Could not write popular list to %s: %s", path, exc)
