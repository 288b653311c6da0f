import pytest

from leadmailer.classification.criteria import SiteSignals, build_criterion, to_int, to_list
from leadmailer.classification.qualifier import QualificationEvaluator
from leadmailer.database.models import QualificationRule
from leadmailer.errors import CriterionConfigError

SIGNALS = SiteSignals(
    page_count=12,
    word_count=1500,
    detected_platform="wordpress",
    content="<p>Online shop with a cart</p><a href='/checkout'>Checkout</a>",
)


def rule(name, criteria, rule_id=None, priority=50):
    return QualificationRule(id=rule_id, name=name, criteria=criteria, is_active=True, priority=priority)


def test_numeric_parameters_accept_strings():
    assert to_int("min_pages", "5") == 5
    assert to_int("min_pages", 5.0) == 5
    with pytest.raises(CriterionConfigError):
        to_int("min_pages", "five")
    with pytest.raises(CriterionConfigError):
        to_int("min_pages", True)


def test_list_parameters_accept_json_and_single_values():
    assert to_list("platforms", '["wordpress", "shopify"]') == ["wordpress", "shopify"]
    assert to_list("platforms", "wordpress") == ["wordpress"]
    assert to_list("platforms", ["a", " ", "b"]) == ["a", "b"]
    with pytest.raises(CriterionConfigError):
        to_list("platforms", "[not json")


def test_page_and_word_bounds_messages():
    result = build_criterion("min_pages", 20).evaluate(SIGNALS)
    assert not result.matched
    assert result.message == "Website has only 12 pages (required: 20+)"

    result = build_criterion("max_word_count", "2000").evaluate(SIGNALS)
    assert result.matched
    assert result.message == "Content has 1500 words (limit: 2000)"


def test_platform_match_is_case_insensitive():
    assert build_criterion("platforms", ["WordPress"]).evaluate(SIGNALS).matched
    assert build_criterion("platform", "wordpress").evaluate(SIGNALS).matched
    result = build_criterion("platforms", ["shopify"]).evaluate(SIGNALS)
    assert result.message == "Platform 'wordpress' not in allowed list: shopify"


def test_keywords_and_urls():
    required = build_criterion("required_keywords", '["shop", "Cart", "invoice"]').evaluate(SIGNALS)
    assert not required.matched
    assert required.found == ["shop", "Cart"]
    assert required.missing == ["invoice"]

    excluded = build_criterion("excluded_keywords", ["casino"]).evaluate(SIGNALS)
    assert excluded.matched

    urls = build_criterion("required_urls", ["/checkout"]).evaluate(SIGNALS)
    assert urls.matched


def test_missing_content():
    empty = SiteSignals(page_count=1, word_count=0)
    assert not build_criterion("required_keywords", ["shop"]).evaluate(empty).matched
    assert not build_criterion("required_urls", ["/checkout"]).evaluate(empty).matched
    assert build_criterion("excluded_keywords", ["casino"]).evaluate(empty).matched


def test_unknown_criterion_is_not_built():
    assert build_criterion("min_followers", 100) is None


def test_no_rules_means_not_qualified():
    outcome = QualificationEvaluator().evaluate(SIGNALS, [])
    assert not outcome.qualified
    assert outcome.reason == "No requirements configured"


def test_any_matching_rule_qualifies():
    rules = [
        rule("big shops", {"min_pages": 50, "platforms": ["shopify"]}, 1),
        rule("wordpress shops", {"platforms": ["wordpress"], "required_keywords": ["shop"]}, 2),
    ]

    outcome = QualificationEvaluator().evaluate(SIGNALS, rules)

    assert outcome.qualified
    assert [r.matched for r in outcome.rules] == [False, True]
    assert outcome.rules[0].score == 0.0
    assert outcome.rules[1].score == 100.0
    assert outcome.reason == "Matched rules: wordpress shops"


def test_bad_parameter_fails_only_that_criterion():
    outcome = QualificationEvaluator().evaluate(SIGNALS, [
        rule("broken", {"min_pages": "lots", "platforms": ["wordpress"], "min_followers": 3}),
    ])

    details = outcome.rules[0].results
    assert not outcome.qualified
    assert details["min_pages"].message.startswith("Invalid configuration:")
    assert details["platforms"].matched
    assert "min_followers" not in details


def test_null_or_blank_parameter_counts_as_not_configured():
    result = QualificationEvaluator().evaluate_rule(
        "partial", {"min_pages": 3, "max_pages": None, "required_keywords": "  "}, SIGNALS
    )

    assert result.matched
    assert list(result.results) == ["min_pages"]


def test_rule_without_criteria_matches():
    outcome = QualificationEvaluator().evaluate(SIGNALS, [rule("anything", {})])
    assert outcome.qualified


def test_qualify_site_stores_outcome(db_session, make_site):
    site = make_site("example.com", page_count=3, word_count=100, detected_platform="wix",
                     content_snapshot="hello", meets_requirements=False)
    db_session.add(QualificationRule(name="min five pages", criteria={"min_pages": 5}, is_active=True))
    db_session.add(QualificationRule(name="inactive", criteria={}, is_active=False))
    db_session.commit()

    outcome = QualificationEvaluator(db_session).qualify_site(site)

    assert not outcome.qualified
    assert site.meets_requirements is False
    details = site.requirement_match_details
    assert details["matches"] is False
    assert details["details"][0]["rule_name"] == "min five pages"
    assert details["details"][0]["criteria_results"]["min_pages"]["actual"] == 3
