"""Similarity and co-occurrence ranking.

Import ``similarity.engine.SimilarityEngine`` and
``similarity.service.SimilarityService`` directly; this package only
re-exports the value types.
"""

from .errors import DataUnavailable, DepsimError, InvalidInput, StageTimeout, TransientFetchFailure
from .models import QueryOptions, RankedResult, ScoreSource, SimilarityScore, Strategy

__all__ = [
    "DataUnavailable",
    "DepsimError",
    "InvalidInput",
    "StageTimeout",
    "TransientFetchFailure",
    "QueryOptions",
    "RankedResult",
    "ScoreSource",
    "SimilarityScore",
    "Strategy",
]
