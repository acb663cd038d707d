"""
Authority Domain Registry.

Curated external domains with trust scores, used as replacement targets
when broken external links are repaired. Lookups run against an immutable
snapshot of the active entries (`AuthorityDomainRegistry`); the functions
at the bottom of the module maintain the `authority_domains` table.
"""

import csv
import json
import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Tuple
from urllib.parse import urlparse

from pydantic import BaseModel, Field, ValidationError, field_validator
from sqlalchemy import func
from sqlalchemy.orm import Session

from db.models import AuthorityDomain, DomainCategory

# Base trust per category
DEFAULT_TRUST = {
    DomainCategory.GOVERNMENT: 90,
    DomainCategory.ORGANIZATION: 85,
    DomainCategory.REFERENCE: 80,
    DomainCategory.NEWS: 70,
    DomainCategory.AUTHORITY: 60,
}

GOVERNMENT_PATTERN = re.compile(r'\.(gov|gouv|gob|gc\.ca|go\.[a-z]{2})(\.[a-z]{2})?$')
GOVERNMENT_BONUS_PATTERN = re.compile(r'\.(gov|gouv|gob)(\.|$)')
NEWS_PATTERN = re.compile(r'(news|times|post|guardian|bbc|reuters|cnn)')

ORGANIZATION_DOMAINS = ('un.org', 'who.int', 'unesco.org', 'ilo.org', 'worldbank.org', 'imf.org')
REFERENCE_DOMAINS = ('wikipedia.org', 'britannica.com', 'investopedia.com')

# Longest suffixes first so '.co.uk' wins over '.uk'
COUNTRY_TLDS = [
    ('.gouv.fr', 'FR'), ('.gov.uk', 'GB'), ('.gc.ca', 'CA'), ('.gov.au', 'AU'),
    ('.co.uk', 'GB'),
    ('.fr', 'FR'), ('.de', 'DE'), ('.es', 'ES'), ('.it', 'IT'), ('.uk', 'GB'),
    ('.ca', 'CA'), ('.au', 'AU'), ('.jp', 'JP'), ('.cn', 'CN'), ('.br', 'BR'),
    ('.mx', 'MX'), ('.ch', 'CH'), ('.nl', 'NL'), ('.be', 'BE'), ('.at', 'AT'),
    ('.pt', 'PT'), ('.ru', 'RU'), ('.in', 'IN'), ('.sg', 'SG'), ('.th', 'TH'),
    ('.ae', 'AE'), ('.sa', 'SA'),
]

COUNTRY_LANGUAGES = {
    'FR': ['fr'], 'DE': ['de'], 'ES': ['es'], 'IT': ['it'],
    'GB': ['en'], 'US': ['en'], 'CA': ['en', 'fr'], 'AU': ['en'],
    'JP': ['ja'], 'CN': ['zh'], 'BR': ['pt'], 'MX': ['es'],
    'CH': ['de', 'fr', 'it'], 'BE': ['fr', 'nl', 'de'],
    'RU': ['ru'], 'IN': ['en', 'hi'], 'SA': ['ar'], 'AE': ['ar', 'en'],
}

CSV_COLUMNS = [
    'domain', 'name', 'category', 'country_code',
    'languages', 'topics', 'trust_score', 'is_active',
]

# Small curated starting set
DEFAULT_DOMAINS = [
    {'domain': 'who.int', 'name': 'World Health Organization', 'category': 'organization',
     'topics': ['health', 'travel', 'vaccination'], 'languages': ['en', 'fr', 'es', 'ar', 'ru', 'zh']},
    {'domain': 'un.org', 'name': 'United Nations', 'category': 'organization',
     'topics': ['international', 'human-rights', 'migration'], 'languages': ['en', 'fr', 'es', 'ar', 'ru', 'zh']},
    {'domain': 'worldbank.org', 'name': 'World Bank', 'category': 'organization',
     'topics': ['economy', 'finance', 'development'], 'languages': ['en', 'fr', 'es']},
    {'domain': 'imf.org', 'name': 'International Monetary Fund', 'category': 'organization',
     'topics': ['economy', 'finance', 'currency'], 'languages': ['en', 'fr', 'es']},
    {'domain': 'wikipedia.org', 'name': 'Wikipedia', 'category': 'reference',
     'topics': ['general', 'culture', 'history', 'geography']},
    {'domain': 'service-public.fr', 'name': 'Service Public', 'category': 'government',
     'country_code': 'FR', 'topics': ['administration', 'visa', 'tax'], 'languages': ['fr']},
    {'domain': 'diplomatie.gouv.fr', 'name': 'France Diplomatie', 'category': 'government',
     'country_code': 'FR', 'topics': ['travel', 'visa', 'expatriation'], 'languages': ['fr']},
    {'domain': 'gov.uk', 'name': 'GOV.UK', 'category': 'government',
     'country_code': 'GB', 'topics': ['administration', 'visa', 'tax', 'travel'], 'languages': ['en']},
    {'domain': 'travel.state.gov', 'name': 'U.S. Department of State - Travel', 'category': 'government',
     'country_code': 'US', 'topics': ['travel', 'visa', 'passport'], 'languages': ['en']},
    {'domain': 'canada.ca', 'name': 'Government of Canada', 'category': 'government',
     'country_code': 'CA', 'topics': ['immigration', 'visa', 'tax'], 'languages': ['en', 'fr']},
    {'domain': 'reuters.com', 'name': 'Reuters', 'category': 'news',
     'topics': ['news', 'economy', 'international']},
    {'domain': 'bbc.com', 'name': 'BBC', 'category': 'news',
     'topics': ['news', 'international', 'culture']},
]


def normalize_topic(topic: str) -> str:
    return '-'.join(topic.strip().lower().replace('_', '-').split())


def clean_domain(value: str) -> str:
    """
    Host name of a URL or bare domain, lowercased, without 'www.'.

    Examples:
        >>> clean_domain("https://www.Service-Public.fr/particuliers")
        'service-public.fr'
        >>> clean_domain("who.int")
        'who.int'
    """
    value = (value or '').strip()
    host = urlparse(value).hostname if '://' in value else value.split('/')[0]
    host = (host or '').lower().rstrip('.')
    if host.startswith('www.'):
        host = host[4:]
    return host


def detect_category(domain: str) -> DomainCategory:
    """Guess the category of a domain from its name."""
    if GOVERNMENT_PATTERN.search(domain):
        return DomainCategory.GOVERNMENT
    if domain.endswith('.int'):
        return DomainCategory.ORGANIZATION
    if any(domain == org or domain.endswith('.' + org) for org in ORGANIZATION_DOMAINS):
        return DomainCategory.ORGANIZATION
    if any(domain == ref or domain.endswith('.' + ref) for ref in REFERENCE_DOMAINS):
        return DomainCategory.REFERENCE
    if NEWS_PATTERN.search(domain):
        return DomainCategory.NEWS
    return DomainCategory.AUTHORITY


def detect_country(domain: str) -> Optional[str]:
    """Country from a country-code TLD, or None for generic TLDs."""
    for suffix, country in COUNTRY_TLDS:
        if domain.endswith(suffix):
            return country
    return None


def detect_languages(domain: str) -> List[str]:
    return list(COUNTRY_LANGUAGES.get(detect_country(domain), ['en']))


def generate_name(domain: str) -> str:
    """
    Readable name from a domain.

    Examples:
        >>> generate_name("service-public.fr")
        'Service Public'
    """
    name = re.sub(r'\.[a-z]{2,}(\.[a-z]{2})?$', '', domain)
    name = re.sub(r'[-_.]', ' ', name)
    return name.title()


def score_domain(domain: str, category: DomainCategory) -> int:
    """Trust score from the category default plus government/international bonuses (max 100)."""
    score = DEFAULT_TRUST.get(category, 50)
    if GOVERNMENT_BONUS_PATTERN.search(domain):
        score = min(100, score + 10)
    if domain.endswith('.int'):
        score = min(100, score + 5)
    return score


@dataclass(frozen=True)
class DomainEntry:
    """Read-only view of an authority domain."""
    domain: str
    name: str
    category: DomainCategory
    trust_score: int
    country_code: Optional[str] = None
    topics: Tuple[str, ...] = ()
    languages: Tuple[str, ...] = ()
    is_active: bool = True
    auto_discovered: bool = False
    id: Optional[int] = None

    @classmethod
    def from_model(cls, model: AuthorityDomain) -> 'DomainEntry':
        return cls(
            id=model.id,
            domain=model.domain,
            name=model.name,
            category=model.category,
            trust_score=model.trust_score,
            country_code=model.country_code,
            topics=tuple(normalize_topic(t) for t in (model.topics or [])),
            languages=tuple(model.languages or []),
            is_active=model.is_active,
            auto_discovered=model.auto_discovered,
        )

    @property
    def url(self) -> str:
        return f"https://{self.domain}/"

    def matches_topic(self, topic: Optional[str]) -> bool:
        """A missing topic matches nothing."""
        if not topic:
            return False
        return normalize_topic(topic) in self.topics

    def matches_country(self, country: Optional[str]) -> bool:
        """International entries (no country) match every country."""
        return self.country_code is None or (country is not None and self.country_code == country.upper())

    def matches_language(self, language: Optional[str]) -> bool:
        return not language or not self.languages or language in self.languages


@dataclass
class AuthorityDomainRegistry:
    """In-memory registry of authority domains, read-only during a repair run."""
    entries: List[DomainEntry] = field(default_factory=list)

    @classmethod
    def from_session(cls, session: Session) -> 'AuthorityDomainRegistry':
        models = session.query(AuthorityDomain).order_by(AuthorityDomain.domain).all()
        return cls(entries=[DomainEntry.from_model(m) for m in models])

    def __len__(self) -> int:
        return len(self.entries)

    def get(self, domain: str) -> Optional[DomainEntry]:
        domain = clean_domain(domain)
        for entry in self.entries:
            if entry.domain == domain:
                return entry
        return None

    def candidates(
        self,
        topic: Optional[str] = None,
        country: Optional[str] = None,
        min_trust: int = 0,
        language: Optional[str] = None,
        exclude_domains: Iterable[str] = ()
    ) -> List[DomainEntry]:
        """
        Active entries matching topic/country/language, best first.

        Order: trust descending, country-specific before international,
        then domain name.
        """
        excluded = {clean_domain(d) for d in exclude_domains}
        matches = [
            e for e in self.entries
            if e.is_active
            and e.trust_score >= min_trust
            and e.domain not in excluded
            and e.matches_topic(topic)
            and e.matches_country(country)
            and e.matches_language(language)
        ]
        matches.sort(key=lambda e: (-e.trust_score, e.country_code is None, e.domain))
        return matches

    def lookup_best_match(
        self,
        topic: Optional[str],
        country: Optional[str],
        min_trust: int = 0,
        language: Optional[str] = None,
        exclude_domains: Iterable[str] = ()
    ) -> Optional[DomainEntry]:
        """Highest-trust active entry for a topic and country, or None."""
        matches = self.candidates(topic, country, min_trust, language, exclude_domains)
        return matches[0] if matches else None


def add_discovered_domain(session: Session, url: str, metadata: Optional[Dict] = None) -> Optional[AuthorityDomain]:
    """
    Register a domain found in content.

    Category, country and languages are detected from the host name unless
    given in `metadata`. Existing domains are returned unchanged.

    Returns:
        AuthorityDomain, or None if no host could be parsed from `url`
    """
    metadata = metadata or {}
    domain = clean_domain(url)
    if not domain or '.' not in domain:
        return None

    existing = session.query(AuthorityDomain).filter_by(domain=domain).first()
    if existing:
        return existing

    category = metadata.get('category')
    category = DomainCategory(category) if category else detect_category(domain)

    model = AuthorityDomain(
        domain=domain,
        name=metadata.get('name') or generate_name(domain),
        category=category,
        country_code=metadata.get('country_code') or detect_country(domain),
        languages=metadata.get('languages') or detect_languages(domain),
        topics=[normalize_topic(t) for t in metadata.get('topics', [])],
        trust_score=metadata.get('trust_score') or score_domain(domain, category),
        is_active=True,
        auto_discovered=True,
        notes=metadata.get('notes') or 'Auto-discovered',
    )
    session.add(model)
    session.flush()
    return model


def recalculate_scores(session: Session) -> int:
    """Reset every trust score to its category default plus bonuses. Returns the number changed."""
    updated = 0
    for model in session.query(AuthorityDomain).all():
        score = score_domain(model.domain, model.category)
        if model.trust_score != score:
            model.trust_score = score
            updated += 1
    session.flush()
    return updated


class DomainCsvRow(BaseModel):
    """One row of an authority domain CSV file."""
    domain: str
    name: Optional[str] = None
    category: Optional[DomainCategory] = None
    country_code: Optional[str] = None
    languages: List[str] = Field(default_factory=list)
    topics: List[str] = Field(default_factory=list)
    trust_score: Optional[int] = Field(default=None, ge=0, le=100)
    is_active: bool = True

    @field_validator('domain')
    @classmethod
    def validate_domain(cls, v):
        domain = clean_domain(v)
        if not domain or '.' not in domain:
            raise ValueError(f"invalid domain: {v!r}")
        return domain

    @field_validator('name', 'country_code', 'trust_score', 'category', mode='before')
    @classmethod
    def empty_to_none(cls, v):
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @field_validator('country_code')
    @classmethod
    def upper_country(cls, v):
        return v.strip().upper() if v else None

    @field_validator('languages', 'topics', mode='before')
    @classmethod
    def parse_list(cls, v):
        """Accept a JSON array or a comma/semicolon separated string."""
        if v is None:
            return []
        if isinstance(v, str):
            v = v.strip()
            if not v:
                return []
            if v.startswith('['):
                return json.loads(v)
            return [item.strip() for item in re.split(r'[,;]', v) if item.strip()]
        return v

    @field_validator('is_active', mode='before')
    @classmethod
    def parse_bool(cls, v):
        if isinstance(v, str):
            return v.strip().lower() not in ('0', 'false', 'no', 'n', '')
        return v


def import_csv(session: Session, path: str) -> Dict:
    """
    Create or update authority domains from a CSV file.

    Invalid rows are reported in `errors` and skipped; valid rows are
    applied.

    Returns:
        Dict with created, updated and errors (list of messages)
    """
    results = {'created': 0, 'updated': 0, 'errors': []}

    with open(path, newline='', encoding='utf-8') as handle:
        reader = csv.DictReader(handle)
        for line_number, raw in enumerate(reader, start=2):
            try:
                row = DomainCsvRow.model_validate(raw)
            except ValidationError as e:
                results['errors'].append(f"line {line_number}: {e.errors()[0]['msg']}")
                continue

            category = row.category or detect_category(row.domain)
            topics = [normalize_topic(t) for t in row.topics]
            existing = session.query(AuthorityDomain).filter_by(domain=row.domain).first()

            if existing:
                existing.name = row.name or existing.name
                existing.category = row.category or existing.category
                if row.country_code is not None:
                    existing.country_code = row.country_code
                if row.languages:
                    existing.languages = row.languages
                if topics:
                    existing.topics = topics
                if row.trust_score is not None:
                    existing.trust_score = row.trust_score
                existing.is_active = row.is_active
                existing.updated_at = datetime.utcnow()
                results['updated'] += 1
            else:
                session.add(AuthorityDomain(
                    domain=row.domain,
                    name=row.name or generate_name(row.domain),
                    category=category,
                    country_code=row.country_code,
                    languages=row.languages,
                    topics=topics,
                    trust_score=row.trust_score if row.trust_score is not None else score_domain(row.domain, category),
                    is_active=row.is_active,
                    auto_discovered=False,
                ))
                results['created'] += 1
            session.flush()

    return results


def export_csv(session: Session, path: str) -> int:
    """Write every authority domain to a CSV file. Returns the row count."""
    count = 0
    with open(path, 'w', newline='', encoding='utf-8') as handle:
        writer = csv.writer(handle)
        writer.writerow(CSV_COLUMNS)
        for model in session.query(AuthorityDomain).order_by(AuthorityDomain.domain):
            writer.writerow([
                model.domain,
                model.name,
                model.category.value,
                model.country_code or '',
                json.dumps(model.languages or []),
                json.dumps(model.topics or []),
                model.trust_score,
                1 if model.is_active else 0,
            ])
            count += 1
    return count


def seed_defaults(session: Session) -> int:
    """Insert the curated default domains that are not present yet. Returns the number added."""
    added = 0
    for data in DEFAULT_DOMAINS:
        if session.query(AuthorityDomain).filter_by(domain=data['domain']).first():
            continue
        category = DomainCategory(data['category'])
        session.add(AuthorityDomain(
            domain=data['domain'],
            name=data['name'],
            category=category,
            country_code=data.get('country_code'),
            languages=data.get('languages', detect_languages(data['domain'])),
            topics=data.get('topics', []),
            trust_score=score_domain(data['domain'], category),
            is_active=True,
            auto_discovered=False,
        ))
        added += 1
    session.flush()
    return added


def domain_statistics(session: Session) -> Dict:
    """Counts by category and country, auto-discovered count and average trust."""
    by_category = dict(
        session.query(AuthorityDomain.category, func.count(AuthorityDomain.id))
        .group_by(AuthorityDomain.category).all()
    )
    by_country = (
        session.query(AuthorityDomain.country_code, func.count(AuthorityDomain.id))
        .filter(AuthorityDomain.country_code.isnot(None))
        .group_by(AuthorityDomain.country_code)
        .order_by(func.count(AuthorityDomain.id).desc())
        .limit(20)
        .all()
    )
    average = session.query(func.avg(AuthorityDomain.trust_score)).scalar()

    return {
        'total': session.query(AuthorityDomain).count(),
        'active': session.query(AuthorityDomain).filter_by(is_active=True).count(),
        'by_category': {category.value: count for category, count in by_category.items()},
        'by_country': {country: count for country, count in by_country},
        'auto_discovered': session.query(AuthorityDomain).filter_by(auto_discovered=True).count(),
        'average_trust': round(float(average or 0), 1),
    }
