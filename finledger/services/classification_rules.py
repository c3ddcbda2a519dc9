"""
FinLedger - Classification Rule Sets

Expense classification rules are data, not code. A rule document holds:
- code_table: account code (or three-character series prefix) -> type/category
- pattern_groups: ordered selling/administrative regex groups, each with
  category sub-patterns and a default category
- tag_table: transaction tag -> type/category
- revenue_rules / discount_rules: keyword rules for revenue lines and
  discount types

Operators can ship a JSON document (file or database) with the same shape as
DEFAULT_RULE_DOCUMENT; RuleSetProvider reloads it when it changes.
"""

import json
import logging
import os
import re
from typing import Any, Dict, List, Optional, Pattern, Tuple

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr, ValidationError, field_validator

from finledger.schemas.transaction import ExpenseType
from finledger.stores.base import RuleMetadataStore
from finledger.utils.error_handling import InvalidRuleSetException

logger = logging.getLogger(__name__)


# ===========================================
# RULE MODELS
# ===========================================

class CategoryTarget(BaseModel):
    """Where a matching transaction is bucketed."""
    model_config = ConfigDict(frozen=True)

    expense_type: ExpenseType
    category: str
    description: Optional[str] = None


class CategoryPatterns(BaseModel):
    model_config = ConfigDict(frozen=True)

    category: str
    patterns: List[str]


class PatternGroup(BaseModel):
    """Top-level pattern list for one expense type."""
    model_config = ConfigDict(frozen=True)

    expense_type: ExpenseType
    patterns: List[str]
    categories: List[CategoryPatterns] = Field(default_factory=list)
    default_category: str


class KeywordRule(BaseModel):
    """Label chosen when any keyword occurs in the text (or the code)."""
    model_config = ConfigDict(frozen=True)

    label: str
    keywords: List[str] = Field(default_factory=list)
    code_keywords: List[str] = Field(default_factory=list)


class ClassificationRuleSet(BaseModel):
    """Validated, immutable rule set with precompiled patterns."""
    model_config = ConfigDict(frozen=True)

    revision: int = 0
    prefix_length: int = 3
    code_table: Dict[str, CategoryTarget] = Field(default_factory=dict)
    pattern_groups: List[PatternGroup] = Field(default_factory=list)
    tag_table: Dict[str, CategoryTarget] = Field(default_factory=dict)
    default: CategoryTarget = CategoryTarget(expense_type=ExpenseType.ADMINISTRATIVE, category="other")
    revenue_rules: List[KeywordRule] = Field(default_factory=list)
    revenue_default: str = "Other Revenue"
    discount_rules: List[KeywordRule] = Field(default_factory=list)
    discount_default: str = "other"

    _compiled: List[Tuple[PatternGroup, List[Pattern], List[Tuple[str, List[Pattern]]]]] = PrivateAttr(default_factory=list)

    @field_validator("code_table")
    @classmethod
    def normalize_codes(cls, value: Dict[str, CategoryTarget]) -> Dict[str, CategoryTarget]:
        return {code.strip().upper(): target for code, target in value.items()}

    @field_validator("tag_table")
    @classmethod
    def normalize_tags(cls, value: Dict[str, CategoryTarget]) -> Dict[str, CategoryTarget]:
        return {tag.strip().lower(): target for tag, target in value.items()}

    @field_validator("prefix_length")
    @classmethod
    def positive_prefix(cls, value: int) -> int:
        if value < 1:
            raise ValueError("prefix_length must be positive")
        return value

    @field_validator("pattern_groups")
    @classmethod
    def patterns_compile(cls, groups: List[PatternGroup]) -> List[PatternGroup]:
        for group in groups:
            for pattern in group.patterns + [p for c in group.categories for p in c.patterns]:
                try:
                    re.compile(pattern)
                except re.error as exc:
                    raise ValueError(f"invalid pattern {pattern!r}: {exc}")
        return groups

    def model_post_init(self, __context: Any) -> None:
        self._compiled = [
            (
                group,
                [re.compile(p, re.IGNORECASE) for p in group.patterns],
                [
                    (cat.category, [re.compile(p, re.IGNORECASE) for p in cat.patterns])
                    for cat in group.categories
                ],
            )
            for group in self.pattern_groups
        ]

    @property
    def compiled_groups(self):
        return self._compiled

    @classmethod
    def from_document(cls, document: Dict[str, Any], revision: Optional[int] = None) -> "ClassificationRuleSet":
        """Validate a raw rule document, raising InvalidRuleSetException."""
        data = dict(document)
        if revision is not None:
            data["revision"] = revision
        try:
            return cls.model_validate(data)
        except ValidationError as exc:
            raise InvalidRuleSetException(
                "Classification rule document is invalid",
                details={"errors": exc.errors(include_url=False, include_context=False)},
            ) from exc


def _target(expense_type: str, category: str, description: Optional[str] = None) -> Dict[str, Any]:
    return {"expense_type": expense_type, "category": category, "description": description}


# ===========================================
# DEFAULT RULES
# ===========================================

DEFAULT_RULE_DOCUMENT: Dict[str, Any] = {
    "revision": 0,
    "prefix_length": 3,
    "code_table": {
        # Series headers; the three-character keys catch sub-accounts by prefix
        "5220": _target("selling", "marketing", "Selling & Marketing Expenses"),
        "522": _target("selling", "marketing", "Selling & Marketing Expenses"),
        "5210": _target("administrative", "general_administrative", "General & Administrative Expenses"),
        "521": _target("administrative", "general_administrative", "General & Administrative Expenses"),
        # Selling
        "5221": _target("selling", "advertising", "Advertising Expenses"),
        "5222": _target("selling", "marketing", "Marketing Expenses"),
        "5223": _target("selling", "sales_commissions", "Sales Commissions"),
        "5224": _target("selling", "sales_salaries", "Sales Salaries"),
        "5225": _target("selling", "travel_entertainment", "Travel & Entertainment"),
        "5226": _target("selling", "promotional", "Promotional Expenses"),
        "5227": _target("selling", "customer_service", "Customer Service"),
        "5228": _target("selling", "delivery", "Delivery Expenses"),
        "5229": _target("selling", "warehouse", "Warehouse Expenses"),
        # Administrative
        "5211": _target("administrative", "office_supplies", "Office Supplies"),
        "5212": _target("administrative", "rent", "Rent Expenses"),
        "5213": _target("administrative", "utilities", "Utilities"),
        "5214": _target("administrative", "insurance", "Insurance"),
        "5215": _target("administrative", "legal", "Legal Expenses"),
        "5216": _target("administrative", "accounting", "Accounting Expenses"),
        "5217": _target("administrative", "management_salaries", "Management Salaries"),
        "5218": _target("administrative", "training", "Training Expenses"),
        "5219": _target("administrative", "software", "Software Expenses"),
        "521A": _target("administrative", "equipment", "Equipment Expenses"),
        "521B": _target("administrative", "maintenance", "Maintenance Expenses"),
        "521C": _target("administrative", "professional_services", "Professional Services"),
        "521D": _target("administrative", "depreciation", "Depreciation"),
        "521E": _target("administrative", "telecommunications", "Telecommunications"),
        "521F": _target("administrative", "bank_charges", "Bank Charges"),
    },
    "pattern_groups": [
        {
            "expense_type": "selling",
            "patterns": [
                r"selling", r"marketing", r"sales", r"advertising", r"promotional",
                r"commission", r"customer.*service", r"delivery", r"warehouse", r"distribution",
            ],
            "categories": [
                {"category": "advertising", "patterns": [r"advertising", r"advert", r"promo"]},
                {"category": "marketing", "patterns": [r"marketing", r"campaign"]},
                {"category": "sales_commissions", "patterns": [r"commission", r"sales.*commission"]},
                {"category": "sales_salaries", "patterns": [r"sales.*salary", r"sales.*wage"]},
                {"category": "travel_entertainment", "patterns": [r"travel", r"entertainment", r"t&e"]},
                {"category": "promotional", "patterns": [r"promotional", r"promo"]},
                {"category": "customer_service", "patterns": [r"customer.*service", r"support"]},
                {"category": "delivery", "patterns": [r"delivery", r"shipping", r"freight.*out"]},
                {"category": "warehouse", "patterns": [r"warehouse", r"storage"]},
            ],
            "default_category": "marketing",
        },
        {
            "expense_type": "administrative",
            "patterns": [
                r"administrative", r"general.*admin", r"office", r"rent", r"utilities",
                r"insurance", r"legal", r"accounting", r"management", r"training",
                r"software", r"equipment", r"maintenance", r"professional.*service",
                r"depreciation", r"telecom", r"bank.*charge",
            ],
            "categories": [
                {"category": "office_supplies", "patterns": [r"office.*suppl", r"stationery"]},
                {"category": "rent", "patterns": [r"rent", r"lease"]},
                {"category": "utilities", "patterns": [r"utilities", r"electric", r"water", r"gas"]},
                {"category": "insurance", "patterns": [r"insurance"]},
                {"category": "legal", "patterns": [r"legal", r"lawyer", r"attorney"]},
                {"category": "accounting", "patterns": [r"accounting", r"audit"]},
                {"category": "management_salaries", "patterns": [r"management.*salary", r"executive.*salary"]},
                {"category": "training", "patterns": [r"training", r"education"]},
                {"category": "software", "patterns": [r"software", r"saas", r"subscription"]},
                {"category": "equipment", "patterns": [r"equipment", r"furniture"]},
                {"category": "maintenance", "patterns": [r"maintenance", r"repair"]},
                {"category": "professional_services", "patterns": [r"professional.*service", r"consulting"]},
                {"category": "depreciation", "patterns": [r"depreciation", r"amortization"]},
                {"category": "telecommunications", "patterns": [r"telecom", r"phone", r"internet"]},
                {"category": "bank_charges", "patterns": [r"bank.*charge", r"banking.*fee"]},
            ],
            "default_category": "general_administrative",
        },
    ],
    "tag_table": {
        "advertising": _target("selling", "advertising"),
        "marketing": _target("selling", "marketing"),
        "sales": _target("selling", "marketing"),
        "promo": _target("selling", "promotional"),
        "travel": _target("selling", "travel_entertainment"),
        "office": _target("administrative", "office_supplies"),
        "rent": _target("administrative", "rent"),
        "utilities": _target("administrative", "utilities"),
        "insurance": _target("administrative", "insurance"),
        "legal": _target("administrative", "legal"),
        "accounting": _target("administrative", "accounting"),
        "training": _target("administrative", "training"),
        "software": _target("administrative", "software"),
        "equipment": _target("administrative", "equipment"),
        "maintenance": _target("administrative", "maintenance"),
    },
    "default": _target("administrative", "other"),
    "revenue_rules": [
        {"label": "Sales", "keywords": ["sale"]},
        {"label": "Services", "keywords": ["service"]},
        {"label": "Rental Income", "keywords": ["rental"]},
        {"label": "Interest Income", "keywords": ["interest"]},
    ],
    "revenue_default": "Other Revenue",
    "discount_rules": [
        {"label": "bulk", "keywords": ["bulk"], "code_keywords": ["bulk"]},
        {"label": "loyalty", "keywords": ["loyalty"], "code_keywords": ["loyalty", "reward"]},
        {"label": "promotional", "keywords": ["promotional", "promo"], "code_keywords": ["promo"]},
        {"label": "customer", "keywords": ["customer"], "code_keywords": ["customer", "cust"]},
        {"label": "seasonal", "keywords": ["seasonal"], "code_keywords": ["seasonal"]},
        {"label": "clearance", "keywords": ["clearance"], "code_keywords": ["clearance"]},
        {"label": "first_time", "keywords": ["first"], "code_keywords": ["first", "new"]},
    ],
    "discount_default": "other",
}

DEFAULT_RULE_SET = ClassificationRuleSet.from_document(DEFAULT_RULE_DOCUMENT)


# ===========================================
# HOT RELOAD
# ===========================================

class RuleSetProvider:
    """
    Supplies the current rule set, reloading it when its source changes.

    Sources, in order: a RuleMetadataStore (reloaded when its revision
    changes), a JSON file (reloaded when its mtime changes), else the default
    rules. A broken update keeps the last good rule set and logs the error;
    a broken first load raises.
    """

    def __init__(
        self,
        path: Optional[str] = None,
        store: Optional[RuleMetadataStore] = None,
        fallback: ClassificationRuleSet = DEFAULT_RULE_SET,
    ):
        self.path = path
        self.store = store
        self.fallback = fallback
        self._current: Optional[ClassificationRuleSet] = None
        self._source_marker: Optional[Any] = None

    async def get(self) -> ClassificationRuleSet:
        if self.store is not None:
            revision, document = await self.store.load_rule_document()
            return self._refresh(("store", revision), lambda: (document, revision))
        if self.path:
            return self.get_from_file()
        return self.fallback

    def get_from_file(self) -> ClassificationRuleSet:
        """Synchronous reload path for file-backed rules."""
        if not self.path:
            return self.fallback
        mtime = os.stat(self.path).st_mtime_ns
        return self._refresh(("file", mtime), self._read_file)

    def _read_file(self) -> Tuple[Dict[str, Any], Optional[int]]:
        with open(self.path, "r", encoding="utf-8") as handle:
            try:
                document = json.load(handle)
            except json.JSONDecodeError as exc:
                raise InvalidRuleSetException(f"Rule file {self.path} is not valid JSON: {exc}") from exc
        return document, None

    def _refresh(self, marker: Any, load) -> ClassificationRuleSet:
        if self._current is not None and marker == self._source_marker:
            return self._current

        try:
            document, revision = load()
            if not document:
                rule_set = self.fallback
            else:
                rule_set = ClassificationRuleSet.from_document(document, revision=revision)
        except InvalidRuleSetException as exc:
            if self._current is None:
                raise
            logger.error(f"Rejected classification rule update ({marker}): {exc.message}")
            # Do not retry the same broken source on every call
            self._source_marker = marker
            return self._current

        logger.info(f"Loaded classification rules revision {rule_set.revision} from {marker[0]}")
        self._current = rule_set
        self._source_marker = marker
        return rule_set
