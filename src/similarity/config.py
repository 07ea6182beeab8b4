"""Engine configuration value object.

Every tunable of the ranking pipeline lives here with its default. The
engine receives one ``EngineConfig`` at construction and never reads the
environment itself; ``cli_config`` is responsible for layering file, env
and CLI overrides on top of the defaults.
"""
from __future__ import annotations

import dataclasses
import logging
import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Tuple

from similarity.models import QueryOptions

logger = logging.getLogger(__name__)


@dataclass
class TimeoutConfig:
    """Per-fetch timeouts and dynamic stage budgets, in milliseconds."""
    per_fetch_ms: int = 8000
    per_candidate_ms: int = 10000
    per_package_check_ms: int = 5000
    base_forward_deps_ms: int = 10000
    base_dependents_scan_ms: int = 15000
    base_candidates_scan_ms: int = 20000
    max_forward_deps_ms: int = 45000
    max_dependents_scan_ms: int = 60000
    max_candidates_scan_ms: int = 90000
    multiplier_per_item_ms: int = 10


@dataclass
class ConcurrencyConfig:
    dependents_scan: int = 8
    candidates_evaluation: int = 10
    forward_deps_check: int = 5


@dataclass
class LimitsConfig:
    default_max_dependents_to_scan: int = 150
    default_max_live_candidates: int = 200
    max_max_dependents_to_scan: int = 1000
    max_max_live_candidates: int = 1000
    default_top_search_limit: int = 250
    max_top_search_limit: int = 250
    # Hard ceiling on candidate collection (C)
    max_candidates_to_collect: int = 5000
    # Scoring pass ceiling (E)
    max_candidates_to_evaluate: int = 5000
    max_fallback_candidates: int = 2000
    candidates_multiplier_per_limit: int = 15
    max_packages_to_check_forward_deps: int = 300
    max_packages_to_check_cooccur: int = 200
    cooccur_multiplier_per_limit: int = 10
    cooccur_early_exit_multiplier: int = 3
    max_popular_for_name_based: int = 100
    dependents_batch_size: int = 20


@dataclass
class QualityThresholds:
    min_results_for_quality: int = 10
    min_top_score_for_quality: float = 0.05
    min_jaccard_small_base: float = 0.001
    min_jaccard_medium_base: float = 0.01
    min_jaccard_bitset_small_base: float = 0.001
    min_jaccard_bitset_medium_base: float = 0.02
    min_shared_small_base: int = 1
    min_shared_medium_base: int = 2
    relaxed_jaccard_very_small: float = 0.0001
    relaxed_jaccard_small: float = 0.0005
    relaxed_jaccard_medium: float = 0.001
    relaxed_jaccard_minimum: float = 0.01
    min_ratio_very_small_deps: float = 0.15
    min_ratio_small_deps: float = 0.1
    min_ratio_medium_deps: float = 0.05
    min_ratio_cooccur_very_small_deps: float = 0.2
    min_ratio_cooccur_small_deps: float = 0.1
    min_ratio_cooccur_medium_deps: float = 0.05
    cooccur_min_jaccard_default: float = 0.001
    cooccur_min_jaccard_small_base: float = 0.0005
    cooccur_min_jaccard_medium_base: float = 0.0008
    cooccur_small_sample_size: int = 200
    cooccur_sample_threshold_size: int = 500
    cooccur_small_sample_min_ratio: float = 0.01
    cooccur_large_sample_min_jaccard: float = 0.005
    direct_dependency_boost_score: float = 0.5
    name_based_fallback_score: float = 0.001
    low_fetch_success_rate_threshold: float = 0.3
    low_fetch_rate_jaccard_multiplier: float = 0.5


@dataclass
class BaseSizeThresholds:
    very_small: int = 5
    small: int = 10
    medium: int = 20
    large: int = 50


@dataclass
class DepsCountThresholds:
    very_small: int = 5
    small: int = 10


@dataclass
class EarlyTerminationConfig:
    min_score_for_early_exit: float = 0.1
    min_checked_multiplier: int = 10
    batch_size: int = 500


@dataclass
class RefinementStep:
    max_dependents_to_scan: int
    max_live_candidates: int


def _default_refinement_steps() -> List[RefinementStep]:
    return [
        RefinementStep(300, 400),
        RefinementStep(450, 600),
        RefinementStep(600, 800),
    ]


@dataclass
class RefinementConfig:
    """Progressive refinement used by the lookup service."""
    budget_ms: int = 2500
    initial_max_dependents_to_scan: int = 150
    initial_max_live_candidates: int = 200
    steps: List[RefinementStep] = field(default_factory=_default_refinement_steps)


@dataclass
class FetchConfig:
    """Outbound fetch behaviour of the PyPI data source."""
    max_retry_attempts: int = 5
    retry_initial_delay_ms: int = 1000
    retry_max_delay_ms: int = 10000
    retry_jitter_ms: int = 500
    request_delay_ms: int = 150
    fetch_timeout_ms: int = 30000
    max_concurrent_requests: int = 16
    cache_max_size: int = 5000
    cache_ttl_sec: int = 45 * 60
    libraries_io_api_key: str = ""
    libraries_io_per_page: int = 250


@dataclass(frozen=True)
class ResolvedOptions:
    """``QueryOptions`` after defaults and clamping."""
    restrict_to_peer_group: bool
    max_dependents_to_scan: int
    max_live_candidates: int
    top_search_limit: int


@dataclass
class EngineConfig:
    timeouts: TimeoutConfig = field(default_factory=TimeoutConfig)
    concurrency: ConcurrencyConfig = field(default_factory=ConcurrencyConfig)
    limits: LimitsConfig = field(default_factory=LimitsConfig)
    quality: QualityThresholds = field(default_factory=QualityThresholds)
    base_size: BaseSizeThresholds = field(default_factory=BaseSizeThresholds)
    deps_count: DepsCountThresholds = field(default_factory=DepsCountThresholds)
    early_termination: EarlyTerminationConfig = field(default_factory=EarlyTerminationConfig)
    refinement: RefinementConfig = field(default_factory=RefinementConfig)
    fetch: FetchConfig = field(default_factory=FetchConfig)

    # ----- construction -----------------------------------------------------

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "EngineConfig":
        """Build a config from nested ``{section: {field: value}}`` overrides."""
        config = cls()
        config.apply(data)
        return config

    def apply(self, data: Mapping[str, Any]) -> None:
        """Apply nested overrides in place; unknown keys are logged and skipped."""
        for section_name, values in (data or {}).items():
            section = getattr(self, section_name, None)
            if section is None or not dataclasses.is_dataclass(section):
                logger.warning("Ignoring unknown config section: %s", section_name)
                continue
            if not isinstance(values, Mapping):
                logger.warning("Config section %s must be a mapping", section_name)
                continue
            for key, value in values.items():
                try:
                    self.set_value(f"{section_name}.{key}", value)
                except KeyError:
                    logger.warning("Ignoring unknown config key: %s.%s", section_name, key)
                except (ValueError, TypeError) as exc:
                    logger.warning("Ignoring invalid value for %s.%s: %s", section_name, key, exc)

    def set_value(self, dotted_key: str, value: Any) -> None:
        """Set ``section.field`` coercing ``value`` to the field's current type.

        Raises:
            KeyError: unknown section or field.
            ValueError: value cannot be coerced.
        """
        section_name, _, field_name = dotted_key.partition(".")
        section = getattr(self, section_name, None)
        if section is None or not dataclasses.is_dataclass(section) or not field_name:
            raise KeyError(dotted_key)
        if not hasattr(section, field_name):
            raise KeyError(dotted_key)
        current = getattr(section, field_name)
        if field_name == "steps":
            value = [
                step if isinstance(step, RefinementStep) else RefinementStep(
                    int(step["max_dependents_to_scan"]), int(step["max_live_candidates"])
                )
                for step in value
            ]
        else:
            value = _coerce(current, value)
        setattr(section, field_name, value)

    # ----- option resolution ------------------------------------------------

    def resolve_options(self, options: QueryOptions = None) -> ResolvedOptions:
        options = options or QueryOptions()
        lim = self.limits
        return ResolvedOptions(
            restrict_to_peer_group=bool(options.restrict_to_peer_group),
            max_dependents_to_scan=min(
                options.max_dependents_to_scan or lim.default_max_dependents_to_scan,
                lim.max_max_dependents_to_scan,
            ),
            max_live_candidates=min(
                options.max_live_candidates or lim.default_max_live_candidates,
                lim.max_max_live_candidates,
            ),
            top_search_limit=min(
                options.top_search_limit or lim.default_top_search_limit,
                lim.max_top_search_limit,
            ),
        )

    def stage_timeout_ms(self, operation_size: int, base_ms: int, max_ms: int) -> int:
        """Budget grows by ``multiplier_per_item_ms`` per item, capped at ``max_ms``."""
        grown = base_ms + min(operation_size * self.timeouts.multiplier_per_item_ms, max_ms - base_ms)
        return min(grown, max_ms)

    # ----- adaptive thresholds (smaller base => looser) ----------------------

    def jaccard_threshold(self, base_size: int) -> float:
        if base_size < self.base_size.small:
            return self.quality.min_jaccard_small_base
        return self.quality.min_jaccard_medium_base

    def bitset_jaccard_threshold(self, base_size: int) -> float:
        if base_size < self.base_size.small:
            return self.quality.min_jaccard_bitset_small_base
        return self.quality.min_jaccard_bitset_medium_base

    def shared_threshold(self, base_size: int) -> int:
        if base_size < self.base_size.small:
            return self.quality.min_shared_small_base
        return self.quality.min_shared_medium_base

    def relaxed_jaccard_threshold(self, base_size: int) -> float:
        if base_size < self.base_size.very_small:
            return self.quality.relaxed_jaccard_very_small
        if base_size < self.base_size.medium:
            return self.quality.relaxed_jaccard_small
        return self.quality.relaxed_jaccard_medium

    def forward_ratio_threshold(self, deps_count: int) -> float:
        if deps_count < self.deps_count.very_small:
            return self.quality.min_ratio_very_small_deps
        if deps_count < self.deps_count.small:
            return self.quality.min_ratio_small_deps
        return self.quality.min_ratio_medium_deps

    def cooccur_forward_ratio_threshold(self, deps_count: int) -> float:
        if deps_count < self.deps_count.very_small:
            return self.quality.min_ratio_cooccur_very_small_deps
        if deps_count < self.deps_count.small:
            return self.quality.min_ratio_cooccur_small_deps
        return self.quality.min_ratio_cooccur_medium_deps

    def cooccur_thresholds(self, base_size: int, fetch_success_rate: float) -> Tuple[int, float]:
        """``(min_shared, min_jaccard)`` from base size, relaxed on a poor fetch rate."""
        q = self.quality
        min_shared = q.min_shared_medium_base
        min_jaccard = q.cooccur_min_jaccard_default
        if base_size < self.base_size.small:
            min_shared = q.min_shared_small_base
            min_jaccard = q.cooccur_min_jaccard_small_base
        elif base_size < self.base_size.large:
            min_shared = q.min_shared_small_base
            min_jaccard = q.cooccur_min_jaccard_medium_base
        if fetch_success_rate < q.low_fetch_success_rate_threshold:
            min_shared = max(1, min_shared - 1)
            min_jaccard = min_jaccard * q.low_fetch_rate_jaccard_multiplier
        return min_shared, min_jaccard

    def cooccur_sample_thresholds(
        self, scanned_count: int, base_size: int, fetch_success_rate: float
    ) -> Tuple[int, float]:
        """Thresholds for co-occurrence ratios computed over ``scanned_count`` samples.

        Small samples demand the tally reach a fixed share of the sample;
        large samples fall back to the base-size thresholds, which tighten
        as the fetch success rate rises.
        """
        q = self.quality
        if scanned_count < q.cooccur_sample_threshold_size:
            if scanned_count < q.cooccur_small_sample_size:
                min_jaccard = q.cooccur_small_sample_min_ratio
                min_shared = max(1, math.ceil(scanned_count * q.cooccur_small_sample_min_ratio))
            else:
                min_jaccard = max(q.cooccur_large_sample_min_jaccard, q.cooccur_min_jaccard_default)
                min_shared = 1
            return min_shared, min_jaccard
        return self.cooccur_thresholds(base_size, fetch_success_rate)

    def to_dict(self) -> Dict[str, Any]:
        return dataclasses.asdict(self)


def _coerce(current: Any, value: Any) -> Any:
    if isinstance(current, bool):
        if isinstance(value, str):
            return value.strip().lower() in ("1", "true", "yes", "on")
        return bool(value)
    if isinstance(current, int):
        return int(value)
    if isinstance(current, float):
        return float(value)
    if isinstance(current, str):
        return str(value)
    return value
