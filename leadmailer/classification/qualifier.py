"""
Qualification of crawled sites against the configured rule-sets.
"""
from dataclasses import dataclass, field
from typing import List, Dict, Any, Optional
from sqlalchemy.orm import Session

from leadmailer.classification.criteria import CriterionResult, SiteSignals, build_criterion, is_unset
from leadmailer.database import crud
from leadmailer.database.models import Site, QualificationRule
from leadmailer.errors import CriterionConfigError
from leadmailer.utils.logger import get_logger

logger = get_logger(__name__)


@dataclass
class RuleResult:
    rule_id: Optional[int]
    rule_name: str
    matched: bool
    results: Dict[str, CriterionResult] = field(default_factory=dict)

    @property
    def score(self) -> float:
        """Share of criteria that passed, 0-100."""
        if not self.results:
            return 0.0
        passed = sum(1 for result in self.results.values() if result.matched)
        return round(passed * 100.0 / len(self.results), 2)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "rule_id": self.rule_id,
            "rule_name": self.rule_name,
            "matches": self.matched,
            "score": self.score,
            "criteria_results": {name: result.to_dict() for name, result in self.results.items()},
        }


@dataclass
class QualificationResult:
    qualified: bool
    rules: List[RuleResult] = field(default_factory=list)
    reason: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "matches": self.qualified,
            "reason": self.reason,
            "details": [rule.to_dict() for rule in self.rules],
        }


class QualificationEvaluator:
    """Decide whether a site is worth contacting."""

    def __init__(self, db_session: Session = None):
        self.db_session = db_session

    def evaluate_rule(self, name: str, criteria: Dict[str, Any], signals: SiteSignals,
                      rule_id: int = None, label: str = "") -> RuleResult:
        """
        Evaluate one rule-set; it matches when every configured criterion passes.

        Args:
            name: Rule name
            criteria: Mapping of criterion name to raw parameters
            signals: Site signals
            rule_id: Optional rule ID for the audit trail
            label: Site label for log lines

        Returns:
            RuleResult with one CriterionResult per configured criterion
        """
        rule = RuleResult(rule_id=rule_id, rule_name=name, matched=True)

        for criterion_name, params in (criteria or {}).items():
            if is_unset(params):
                logger.debug(f"Rule '{name}': criterion '{criterion_name}' has no value, skipping")
                continue
            try:
                criterion = build_criterion(criterion_name, params)
            except CriterionConfigError as e:
                result = CriterionResult(criterion_name, False, f"Invalid configuration: {e}", params)
            else:
                if criterion is None:
                    logger.warning(f"Rule '{name}': ignoring unknown criterion '{criterion_name}'")
                    continue
                result = criterion.evaluate(signals)

            rule.results[result.criterion] = result
            rule.matched = rule.matched and result.matched
            logger.info(f"{label} rule '{name}' criterion {result.criterion}: "
                        f"{'PASS' if result.matched else 'FAIL'} - {result.message}")

        logger.info(f"{label} rule '{name}': {'PASS' if rule.matched else 'FAIL'} "
                    f"({len(rule.results)} criteria evaluated)")
        return rule

    def evaluate(self, signals: SiteSignals, rules: List[QualificationRule], label: str = "") -> QualificationResult:
        """
        Evaluate a site against rule-sets; it qualifies if any one of them matches.

        Args:
            signals: Site signals
            rules: Rule-sets to try
            label: Site label for log lines

        Returns:
            QualificationResult
        """
        if not rules:
            logger.info(f"{label} not qualified: no requirements configured")
            return QualificationResult(qualified=False, reason="No requirements configured")

        logger.info(
            f"Evaluating {label} against {len(rules)} rules "
            f"(pages={signals.page_count}, words={signals.word_count}, platform={signals.detected_platform})"
        )
        outcome = QualificationResult(qualified=False)
        for rule in rules:
            rule_result = self.evaluate_rule(rule.name, rule.criteria, signals, rule_id=rule.id, label=label)
            outcome.rules.append(rule_result)
            outcome.qualified = outcome.qualified or rule_result.matched

        matched = [r.rule_name for r in outcome.rules if r.matched]
        outcome.reason = (f"Matched rules: {', '.join(matched)}" if matched
                          else "No rule matched all of its criteria")
        return outcome

    def qualify_site(self, site: Site, rules: List[QualificationRule] = None) -> QualificationResult:
        """
        Evaluate a site against the active rules and store the outcome on it.

        Args:
            site: Crawled site
            rules: Optional rules, defaults to the active rules in the database

        Returns:
            QualificationResult
        """
        if rules is None:
            rules = crud.get_active_rules(self.db_session)

        outcome = self.evaluate(SiteSignals.from_site(site), rules, label=site.domain)
        site.meets_requirements = outcome.qualified
        site.requirement_match_details = outcome.to_dict()

        if self.db_session is not None:
            try:
                self.db_session.commit()
            except Exception as e:
                self.db_session.rollback()
                logger.error(f"Error saving qualification of {site.domain}: {e}")
                raise

        logger.info(f"Site {site.domain} {'qualifies' if outcome.qualified else 'does not qualify'}: {outcome.reason}")
        return outcome
