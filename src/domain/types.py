"""
Closed variant types shared by the models and the engine.
"""

import enum


class ContentType(enum.Enum):
    """Types of generated content."""
    PILLAR = "pillar"                  # Hub article
    SATELLITE = "satellite"            # Supporting article, links back to its pillar
    LANDING = "landing"
    COMPARATIVE = "comparative"
    PRESS_RELEASE = "press_release"
    ARTICLE = "article"                # Standalone article


class ArticleStatus(enum.Enum):
    """Publication status of an article."""
    DRAFT = "draft"
    SCHEDULED = "scheduled"
    PUBLISHED = "published"
    ARCHIVED = "archived"


class LinkContext(enum.Enum):
    """Relationship between the two ends of an internal link."""
    PILLAR_TO_ARTICLE = "pillar_to_article"
    ARTICLE_TO_PILLAR = "article_to_pillar"
    SAME_COUNTRY = "same_country"
    SAME_THEME = "same_theme"
    RELATED = "related"


class DomainCategory(enum.Enum):
    """Category of a curated external domain."""
    GOVERNMENT = "government"
    ORGANIZATION = "organization"
    REFERENCE = "reference"
    NEWS = "news"
    AUTHORITY = "authority"


class Severity(enum.Enum):
    """Severity of a structural defect or recommendation."""
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def order(self) -> int:
        return _SEVERITY_ORDER[self]


_SEVERITY_ORDER = {
    Severity.CRITICAL: 0,
    Severity.HIGH: 1,
    Severity.MEDIUM: 2,
    Severity.LOW: 3,
}


class DefectKind(enum.Enum):
    """Structural problems detected in a link graph."""
    ORPHAN = "orphan"                       # Published, zero inbound internal links
    DEAD_END = "dead_end"                   # Published, zero outbound internal links
    WEAKLY_CONNECTED = "weakly_connected"   # Few links in total
    EMPTY_PILLAR = "empty_pillar"           # Pillar not linking to any satellite
    IMBALANCE = "imbalance"                 # Uneven inbound distribution
    BROKEN_EXTERNAL = "broken_external"     # External link flagged as broken


class BalanceBand(enum.Enum):
    """Banding of the imbalance ratio."""
    GOOD = "good"
    WARNING = "warning"
    POOR = "poor"


class RepairActionKind(enum.Enum):
    """Corrective actions the repair orchestrator can take."""
    ADD_INBOUND_LINK = "add_inbound_link"
    ADD_OUTBOUND_LINK = "add_outbound_link"
    REPLACE_EXTERNAL_URL = "replace_external_url"


class ActionStatus(enum.Enum):
    """Outcome of one repair action."""
    PLANNED = "planned"                 # Dry run: would be applied
    APPLIED = "applied"
    SKIPPED = "skipped"                 # Duplicate or conflicting write
    NOT_REPAIRABLE = "not_repairable"   # No qualifying candidate


class LinkVerdict(enum.Enum):
    """Liveness verdict for an external link."""
    VALID = "valid"
    BROKEN = "broken"
    UNVERIFIED = "unverified"


class VerdictChange(enum.Enum):
    """Verdict compared with the previous verification."""
    NEWLY_BROKEN = "newly_broken"
    STILL_BROKEN = "still_broken"
    STILL_VALID = "still_valid"
    RECOVERED = "recovered"
    UNCHANGED = "unchanged"             # Not checked in this pass


class VerificationFilter(enum.Enum):
    """Which external links a verification pass should check."""
    ALL = "all"
    UNVERIFIED = "unverified"           # Never verified, or verification is stale
    BROKEN = "broken"
