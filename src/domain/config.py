"""
Engine configuration.

Gathers the tunables from settings into one object that is passed
explicitly to every engine component.
"""

from dataclasses import dataclass, field
from typing import FrozenSet

import settings
from domain.types import ArticleStatus


@dataclass(frozen=True)
class LinkingConfig:
    # Authority propagation
    damping: float = 0.85
    max_iterations: int = 100
    tolerance: float = 1e-4

    # Balance analysis
    imbalance_good_threshold: float = 0.2
    imbalance_warning_threshold: float = 0.4
    weakly_connected_min_links: int = 3
    defect_statuses: FrozenSet[ArticleStatus] = field(
        default_factory=lambda: frozenset({ArticleStatus.PUBLISHED})
    )

    # Similarity linking
    min_similarity: float = 0.10
    max_new_links: int = 5
    min_outbound: int = 3
    title_weight: int = 3
    heading_weight: int = 2
    anchor_max_length: int = 60

    # Verification
    verify_concurrency: int = 10
    verify_timeout: float = 10.0
    verify_max_attempts: int = 3
    verify_retry_delay: float = 1.0
    verify_host_delay: float = 0.2
    verify_stale_days: int = 30
    broken_alert_percent: float = 10.0

    # Repair
    repair_min_trust: int = 50
    repair_max_dead_ends: int = 0

    def __post_init__(self):
        if not 0.0 <= self.damping <= 1.0:
            raise ValueError(f"damping must be within [0, 1], got {self.damping}")
        if self.max_iterations < 1:
            raise ValueError("max_iterations must be at least 1")
        if self.tolerance <= 0:
            raise ValueError("tolerance must be positive")
        if not 0.0 <= self.imbalance_good_threshold < self.imbalance_warning_threshold <= 1.0:
            raise ValueError(
                "imbalance thresholds must satisfy 0 <= good < warning <= 1, "
                f"got {self.imbalance_good_threshold} / {self.imbalance_warning_threshold}"
            )
        if self.max_new_links < 1:
            raise ValueError("max_new_links must be at least 1")
        if self.min_outbound < 0:
            raise ValueError("min_outbound cannot be negative")
        if self.verify_concurrency < 1:
            raise ValueError("verify_concurrency must be at least 1")
        if self.verify_timeout <= 0:
            raise ValueError("verify_timeout must be positive")
        if self.verify_max_attempts < 1:
            raise ValueError("verify_max_attempts must be at least 1")
        if not 0 <= self.repair_min_trust <= 100:
            raise ValueError("repair_min_trust must be within [0, 100]")
        if self.repair_max_dead_ends < 0:
            raise ValueError("repair_max_dead_ends cannot be negative (0 means no limit)")

    @classmethod
    def from_settings(cls, **overrides) -> 'LinkingConfig':
        """Build a config from settings.py values, with keyword overrides."""
        values = dict(
            damping=settings.PAGERANK_DAMPING,
            max_iterations=settings.PAGERANK_MAX_ITERATIONS,
            tolerance=settings.PAGERANK_TOLERANCE,
            imbalance_good_threshold=settings.IMBALANCE_GOOD_THRESHOLD,
            imbalance_warning_threshold=settings.IMBALANCE_WARNING_THRESHOLD,
            weakly_connected_min_links=settings.WEAKLY_CONNECTED_MIN_LINKS,
            min_similarity=settings.LINKING_MIN_SIMILARITY,
            max_new_links=settings.LINKING_MAX_NEW_LINKS,
            min_outbound=settings.LINKING_MIN_OUTBOUND,
            title_weight=settings.LINKING_TITLE_WEIGHT,
            heading_weight=settings.LINKING_HEADING_WEIGHT,
            anchor_max_length=settings.ANCHOR_MAX_LENGTH,
            verify_concurrency=settings.VERIFY_CONCURRENCY,
            verify_timeout=settings.VERIFY_TIMEOUT,
            verify_max_attempts=settings.VERIFY_MAX_ATTEMPTS,
            verify_retry_delay=settings.VERIFY_RETRY_DELAY,
            verify_host_delay=settings.VERIFY_HOST_DELAY,
            verify_stale_days=settings.VERIFY_STALE_DAYS,
            broken_alert_percent=settings.VERIFY_BROKEN_ALERT_PERCENT,
            repair_min_trust=settings.REPAIR_MIN_TRUST,
            repair_max_dead_ends=settings.REPAIR_MAX_DEAD_ENDS,
        )
        values.update(overrides)
        return cls(**values)
