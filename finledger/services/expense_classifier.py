"""
FinLedger - Expense Classifier

Layered expense classification, first match wins:
1. exact account code in the code table       (confidence 0.95)
2. three-character code prefix in the table   (confidence 0.90)
3. name/description regex pattern groups      (confidence 0.80)
4. transaction tags                           (confidence 0.85)
5. default administrative/other               (confidence 0.50)

Revenue lines and discount types use the same rule set's keyword rules.
"""

from typing import Dict, Iterable, List, Optional

from finledger.schemas.transaction import Classification
from finledger.services.classification_rules import (
    DEFAULT_RULE_SET,
    CategoryTarget,
    ClassificationRuleSet,
)

CONFIDENCE_ACCOUNT_CODE = 0.95
CONFIDENCE_CODE_PREFIX = 0.9
CONFIDENCE_NAME_PATTERN = 0.8
CONFIDENCE_TAG = 0.85
CONFIDENCE_DEFAULT = 0.5

FACTOR_ACCOUNT_CODE = "account_code"
FACTOR_CODE_PREFIX = "account_code_prefix"
FACTOR_NAME_PATTERN = "name_pattern"
FACTOR_TAG = "tag"
FACTOR_DEFAULT = "default"

REASONS = {
    FACTOR_ACCOUNT_CODE: "Based on account code mapping",
    FACTOR_CODE_PREFIX: "Based on account code series",
    FACTOR_NAME_PATTERN: "Based on account name pattern",
    FACTOR_TAG: "Based on transaction tags",
    FACTOR_DEFAULT: "Default categorization",
}


def _classification(target: CategoryTarget, confidence: float, factor: str) -> Classification:
    return Classification(
        expense_type=target.expense_type,
        category=target.category,
        confidence=confidence,
        factors=[factor],
    )


class ExpenseClassifier:
    """Pure classifier over an injected rule set."""

    def __init__(self, rule_set: Optional[ClassificationRuleSet] = None):
        self.rules = rule_set or DEFAULT_RULE_SET

    def classify(
        self,
        account_code: Optional[str],
        account_name: Optional[str] = None,
        description: Optional[str] = None,
        tags: Optional[Iterable[str]] = None,
    ) -> Classification:
        """
        Classify an expense posting.

        Args:
            account_code: Chart of accounts code of the posting
            account_name: Account name, when known
            description: Transaction description
            tags: Free-form transaction tags

        Returns:
            Classification with the factor that decided it
        """
        code = (account_code or "").strip().upper()

        if code:
            target = self.rules.code_table.get(code)
            if target is not None:
                return _classification(target, CONFIDENCE_ACCOUNT_CODE, FACTOR_ACCOUNT_CODE)

            prefix = code[: self.rules.prefix_length]
            target = self.rules.code_table.get(prefix)
            if target is not None and prefix != code:
                return _classification(target, CONFIDENCE_CODE_PREFIX, FACTOR_CODE_PREFIX)

        by_pattern = self.match_patterns(account_name, description)
        if by_pattern is not None:
            return _classification(by_pattern, CONFIDENCE_NAME_PATTERN, FACTOR_NAME_PATTERN)

        by_tag = self.match_tags(tags)
        if by_tag is not None:
            return _classification(by_tag, CONFIDENCE_TAG, FACTOR_TAG)

        return _classification(self.rules.default, CONFIDENCE_DEFAULT, FACTOR_DEFAULT)

    def match_patterns(
        self,
        account_name: Optional[str],
        description: Optional[str] = None,
    ) -> Optional[CategoryTarget]:
        text = f"{account_name or ''} {description or ''}".strip()
        if not text:
            return None

        for group, top_patterns, categories in self.rules.compiled_groups:
            if not any(pattern.search(text) for pattern in top_patterns):
                continue
            for category, patterns in categories:
                if any(pattern.search(text) for pattern in patterns):
                    return CategoryTarget(expense_type=group.expense_type, category=category)
            return CategoryTarget(expense_type=group.expense_type, category=group.default_category)

        return None

    def match_tags(self, tags: Optional[Iterable[str]]) -> Optional[CategoryTarget]:
        for tag in tags or ():
            target = self.rules.tag_table.get(str(tag).strip().lower())
            if target is not None:
                return target
        return None

    @staticmethod
    def reason_for(classification: Classification) -> str:
        """Human-readable reason for a classification."""
        factor = classification.factors[0] if classification.factors else FACTOR_DEFAULT
        return REASONS.get(factor, REASONS[FACTOR_DEFAULT])

    def suggestions(
        self,
        account_code: Optional[str],
        account_name: Optional[str] = None,
        description: Optional[str] = None,
        tags: Optional[Iterable[str]] = None,
    ) -> List[Dict[str, object]]:
        """
        Primary classification followed by the other layers that also matched
        but disagree with it, highest confidence first.
        """
        primary = self.classify(account_code, account_name, description, tags)
        seen = {(primary.expense_type, primary.category)}
        suggestions = [{
            "expense_type": primary.expense_type.value,
            "category": primary.category,
            "confidence": primary.confidence,
            "reason": self.reason_for(primary),
        }]

        alternatives = [
            (self.match_patterns(account_name, description), CONFIDENCE_NAME_PATTERN, FACTOR_NAME_PATTERN),
            (self.match_tags(tags), CONFIDENCE_TAG, FACTOR_TAG),
        ]
        for target, confidence, factor in sorted(alternatives, key=lambda item: -item[1]):
            if target is None or (target.expense_type, target.category) in seen:
                continue
            seen.add((target.expense_type, target.category))
            suggestions.append({
                "expense_type": target.expense_type.value,
                "category": target.category,
                "confidence": confidence,
                "reason": REASONS[factor],
            })

        return suggestions

    # ===========================================
    # REVENUE / DISCOUNT LABELS
    # ===========================================

    def categorize_revenue(self, description: Optional[str]) -> str:
        """Bucket a revenue posting by its description."""
        text = (description or "").lower()
        for rule in self.rules.revenue_rules:
            if any(keyword in text for keyword in rule.keywords):
                return rule.label
        return self.rules.revenue_default

    def categorize_discount_type(self, description: Optional[str], code: Optional[str] = None) -> str:
        """Label a discount from its description and discount code."""
        if not description:
            return self.rules.discount_default
        text = description.lower()
        code_text = (code or "").lower()
        for rule in self.rules.discount_rules:
            if any(keyword in text for keyword in rule.keywords):
                return rule.label
            if any(keyword in code_text for keyword in rule.code_keywords):
                return rule.label
        return self.rules.discount_default
