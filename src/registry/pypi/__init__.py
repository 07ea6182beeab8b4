"""PyPI registry access for the ranking engine."""

from .metadata import PackageMetadata, MetadataError, parse_requirement_name
from .client import PackageDataSource, PyPIDataSource

__all__ = [
    "PackageMetadata",
    "MetadataError",
    "parse_requirement_name",
    "PackageDataSource",
    "PyPIDataSource",
]
