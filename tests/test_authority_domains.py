"""
Tests for the authority domain registry.
"""

import csv

import pytest

from db import AuthorityDomain, DomainCategory
from domain.authority_domains import (
    DEFAULT_DOMAINS,
    AuthorityDomainRegistry,
    DomainEntry,
    add_discovered_domain,
    clean_domain,
    detect_category,
    detect_country,
    domain_statistics,
    export_csv,
    generate_name,
    import_csv,
    recalculate_scores,
    score_domain,
    seed_defaults,
)


def entry(domain, trust, country=None, topics=('visa',), languages=(), active=True,
          category=DomainCategory.AUTHORITY):
    return DomainEntry(
        domain=domain,
        name=domain,
        category=category,
        trust_score=trust,
        country_code=country,
        topics=tuple(topics),
        languages=tuple(languages),
        is_active=active,
    )


class TestDetection:

    @pytest.mark.parametrize("value,expected", [
        ("https://www.Service-Public.fr/particuliers", "service-public.fr"),
        ("who.int", "who.int"),
        ("www.gov.uk/visas", "gov.uk"),
        ("", ""),
    ])
    def test_clean_domain(self, value, expected):
        assert clean_domain(value) == expected

    @pytest.mark.parametrize("domain,category", [
        ("diplomatie.gouv.fr", DomainCategory.GOVERNMENT),
        ("travel.state.gov", DomainCategory.GOVERNMENT),
        ("who.int", DomainCategory.ORGANIZATION),
        ("en.wikipedia.org", DomainCategory.REFERENCE),
        ("nytimes.com", DomainCategory.NEWS),
        ("expat-forum.com", DomainCategory.AUTHORITY),
    ])
    def test_detect_category(self, domain, category):
        assert detect_category(domain) == category

    def test_detect_country(self):
        assert detect_country("diplomatie.gouv.fr") == "FR"
        assert detect_country("bbc.co.uk") == "GB"
        assert detect_country("example.com") is None

    def test_scores(self):
        assert score_domain("diplomatie.gouv.fr", DomainCategory.GOVERNMENT) == 100
        assert score_domain("who.int", DomainCategory.ORGANIZATION) == 90
        assert score_domain("bbc.com", DomainCategory.NEWS) == 70
        assert score_domain("expat-forum.com", DomainCategory.AUTHORITY) == 60

    def test_generate_name(self):
        assert generate_name("service-public.fr") == "Service Public"


class TestLookup:

    def test_highest_trust_wins(self):
        registry = AuthorityDomainRegistry([
            entry("low.example.org", 60),
            entry("high.example.org", 95),
            entry("mid.example.org", 80),
        ])
        assert registry.lookup_best_match("visa", None).domain == "high.example.org"

    def test_country_filter_keeps_international(self):
        registry = AuthorityDomainRegistry([
            entry("fr.example.org", 90, country="FR"),
            entry("de.example.org", 95, country="DE"),
            entry("intl.example.org", 85),
        ])
        matches = [e.domain for e in registry.candidates("visa", "fr")]
        assert matches == ["fr.example.org", "intl.example.org"]

    def test_country_specific_preferred_on_equal_trust(self):
        registry = AuthorityDomainRegistry([
            entry("intl.example.org", 90),
            entry("fr.example.org", 90, country="FR"),
        ])
        assert registry.lookup_best_match("visa", "FR").domain == "fr.example.org"

    def test_topic_is_strict(self):
        registry = AuthorityDomainRegistry([entry("tax.example.org", 90, topics=("tax",))])
        assert registry.lookup_best_match("visa", None) is None
        assert registry.lookup_best_match("Tax", None).domain == "tax.example.org"

    def test_missing_topic_matches_nothing(self):
        registry = AuthorityDomainRegistry([entry("visa.example.org", 95), entry("tax.example.org", 90, topics=("tax",))])
        assert registry.lookup_best_match(None, None) is None
        assert registry.lookup_best_match("", "FR") is None
        assert registry.candidates(None) == []
        assert not registry.entries[0].matches_topic(None)

    def test_inactive_excluded_and_min_trust(self):
        registry = AuthorityDomainRegistry([
            entry("off.example.org", 99, active=False),
            entry("weak.example.org", 40),
        ])
        assert registry.lookup_best_match("visa", None) is None
        assert registry.lookup_best_match("visa", None, min_trust=30).domain == "weak.example.org"

    def test_language_and_exclusion(self):
        registry = AuthorityDomainRegistry([
            entry("fr-only.example.org", 95, languages=("fr",)),
            entry("any.example.org", 80),
        ])
        assert registry.lookup_best_match("visa", None, language="en").domain == "any.example.org"
        assert registry.lookup_best_match("visa", None, language="fr").domain == "fr-only.example.org"
        assert registry.lookup_best_match(
            "visa", None, exclude_domains=["https://fr-only.example.org/x"]
        ).domain == "any.example.org"

    def test_entry_url(self):
        assert entry("who.int", 90).url == "https://who.int/"


class TestPersistence:

    def test_seed_and_registry(self, session):
        assert seed_defaults(session) == len(DEFAULT_DOMAINS)
        assert seed_defaults(session) == 0
        session.commit()

        registry = AuthorityDomainRegistry.from_session(session)
        assert len(registry) == len(DEFAULT_DOMAINS)
        assert registry.lookup_best_match("visa", "FR").domain == "diplomatie.gouv.fr"

    def test_add_discovered_domain(self, session):
        model = add_discovered_domain(session, "https://www.diplomatie.gouv.fr/fr/conseils", {'topics': ['Travel']})
        assert model.domain == "diplomatie.gouv.fr"
        assert model.category == DomainCategory.GOVERNMENT
        assert model.country_code == "FR"
        assert model.languages == ["fr"]
        assert model.topics == ["travel"]
        assert model.trust_score == 100
        assert model.auto_discovered
        assert add_discovered_domain(session, "https://diplomatie.gouv.fr/en").id == model.id
        assert add_discovered_domain(session, "not a url") is None

    def test_recalculate_scores(self, session):
        session.add(AuthorityDomain(domain="who.int", name="WHO", category=DomainCategory.ORGANIZATION,
                                    trust_score=10, languages=[], topics=[]))
        session.flush()
        assert recalculate_scores(session) == 1
        assert session.query(AuthorityDomain).one().trust_score == 90

    def test_csv_import_and_export(self, session, tmp_path):
        source = tmp_path / "domains.csv"
        with open(source, 'w', newline='', encoding='utf-8') as handle:
            writer = csv.writer(handle)
            writer.writerow(['domain', 'name', 'category', 'country_code', 'languages', 'topics',
                             'trust_score', 'is_active'])
            writer.writerow(['https://www.canada.ca/', 'Canada', 'government', 'ca', 'en;fr', 'visa, tax', '88', '1'])
            writer.writerow(['expat-forum.com', '', '', '', '', '["housing"]', '', 'yes'])
            writer.writerow(['', 'Missing', '', '', '', '', '', ''])
            writer.writerow(['bad-trust.org', '', '', '', '', '', '150', ''])

        results = import_csv(session, str(source))
        assert results['created'] == 2
        assert results['updated'] == 0
        assert len(results['errors']) == 2

        canada = session.query(AuthorityDomain).filter_by(domain="canada.ca").one()
        assert canada.country_code == "CA"
        assert canada.languages == ["en", "fr"]
        assert canada.topics == ["visa", "tax"]
        assert canada.trust_score == 88

        forum = session.query(AuthorityDomain).filter_by(domain="expat-forum.com").one()
        assert forum.category == DomainCategory.AUTHORITY
        assert forum.trust_score == 60
        assert forum.name == "Expat Forum"

        exported = tmp_path / "export.csv"
        assert export_csv(session, str(exported)) == 2

        # Re-importing the export updates in place
        again = import_csv(session, str(exported))
        assert again == {'created': 0, 'updated': 2, 'errors': []}

    def test_statistics(self, session):
        seed_defaults(session)
        stats = domain_statistics(session)
        assert stats['total'] == len(DEFAULT_DOMAINS)
        assert stats['active'] == len(DEFAULT_DOMAINS)
        assert stats['by_category']['government'] == 5
        assert stats['by_country']['FR'] == 2
        assert stats['average_trust'] > 0
