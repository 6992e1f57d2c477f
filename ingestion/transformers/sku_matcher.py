"""
Score a generated SKU key against the master catalog.

Scoring weights (component absent on either side is left out of both the
numerator and the denominator; category is always compared):

    category  40  exact
    model     25  string similarity
    capacity  20  exact
    color     10  string similarity
    carrier    5  exact
"""

from dataclasses import dataclass
from functools import lru_cache
from typing import Iterable, List, Optional, Tuple
from rapidfuzz.distance import Levenshtein
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from core.exceptions import MatchingError
from models.base import MatchMethod, MatchStatus, ProductCategory
from models.catalog import SkuMaster
from ingestion.transformers.sku_generator import CARRIER_ALIASES, RADIO_TOKENS
import logging
import re

logger = logging.getLogger(__name__)

WEIGHTS = {
    "category": 40,
    "model": 25,
    "capacity": 20,
    "color": 10,
    "carrier": 5,
}

MATCHED_THRESHOLD = 0.8
REVIEW_THRESHOLD = 0.6
FUZZY_MODEL_THRESHOLD = 0.8

PHONE_VARIANTS = {"ULTRA", "PRO", "MAX", "PLUS", "MINI"}
CATEGORY_PREFIXES = {
    "WATCH": ProductCategory.WATCH,
    "TAB": ProductCategory.TABLET,
    "IPAD": ProductCategory.TABLET,
    "DESKTOP": ProductCategory.COMPUTER,
    "LAPTOP": ProductCategory.COMPUTER,
    "2IN1": ProductCategory.COMPUTER,
}

_CAPACITY = re.compile(r"^\d+(GB|TB)$", re.IGNORECASE)


@dataclass(frozen=True)
class ParsedSku:
    original: str
    category: ProductCategory
    model: Optional[str] = None
    variant: Optional[str] = None
    capacity: Optional[str] = None
    size: Optional[str] = None
    color: Optional[str] = None
    carrier: Optional[str] = None


@dataclass(frozen=True)
class MatchOutcome:
    original_sku: str
    matched_sku: Optional[str]
    score: float
    method: MatchMethod
    status: MatchStatus
    notes: str
    category: ProductCategory


# ============================================================================
# Parsing
# ============================================================================

def _tokens(key: str) -> List[str]:
    """Split on '-' keeping T-MOBILE as one token."""
    raw = [p for p in key.upper().split("-") if p]
    tokens: List[str] = []
    for part in raw:
        if part == "MOBILE" and tokens and tokens[-1] == "T":
            tokens[-1] = "T-MOBILE"
        else:
            tokens.append(part)
    return tokens


def _carrier_token(token: str) -> Optional[str]:
    if token in RADIO_TOKENS:
        return token
    return CARRIER_ALIASES.get(token.replace(" ", ""))


def _parse_phone(parts: List[str]) -> dict:
    fields = {"model": parts[0]}
    idx = 1
    if len(parts) > 1 and parts[1] in PHONE_VARIANTS:
        fields["variant"] = parts[1]
        fields["model"] = f"{parts[0]}-{parts[1]}"
        idx = 2
    if idx < len(parts) and _CAPACITY.match(parts[idx]):
        fields["capacity"] = parts[idx]
        idx += 1
    remaining = parts[idx:]
    if remaining:
        fields["color"] = remaining[0]
    if len(remaining) > 1:
        tail = "-".join(remaining[1:])
        fields["carrier"] = CARRIER_ALIASES.get(tail, tail)
    return fields


def _parse_prefixed(parts: List[str], category: ProductCategory) -> dict:
    """WATCH/TAB/DESKTOP keys: model follows the prefix, remaining tokens are classified."""
    fields = {}
    if len(parts) > 1:
        fields["model"] = parts[1]
    for token in parts[2:]:
        if category == ProductCategory.WATCH and token.isdigit() and "size" not in fields:
            fields["size"] = token
        elif _CAPACITY.match(token) and "capacity" not in fields:
            fields["capacity"] = token
        elif _carrier_token(token) and "carrier" not in fields:
            fields["carrier"] = _carrier_token(token)
        elif "color" not in fields:
            fields["color"] = token
    return fields


@lru_cache(maxsize=50000)
def parse_sku(key: str) -> ParsedSku:
    """Parse a SKU key into its components. Cached, catalog keys repeat constantly."""
    parts = _tokens(key or "")
    if not parts:
        return ParsedSku(original=key or "", category=ProductCategory.PHONE)

    category = CATEGORY_PREFIXES.get(parts[0], ProductCategory.PHONE)
    if category == ProductCategory.PHONE:
        fields = _parse_phone(parts)
    else:
        fields = _parse_prefixed(parts, category)
    return ParsedSku(original=key, category=category, **fields)


# ============================================================================
# Scoring
# ============================================================================

def similarity(a: Optional[str], b: Optional[str]) -> float:
    """1.0 equal, 0.8 containment, otherwise normalized Levenshtein similarity."""
    if not a or not b:
        return 0.0
    s1, s2 = a.lower(), b.lower()
    if s1 == s2:
        return 1.0
    if s1 in s2 or s2 in s1:
        return 0.8
    return 1.0 - Levenshtein.distance(s1, s2) / max(len(s1), len(s2))


def score(generated: ParsedSku, candidate: ParsedSku) -> float:
    """Weighted match score in [0, 1]."""
    total = WEIGHTS["category"]
    earned = WEIGHTS["category"] if generated.category == candidate.category else 0.0

    if generated.model and candidate.model:
        earned += similarity(generated.model, candidate.model) * WEIGHTS["model"]
        total += WEIGHTS["model"]

    if generated.capacity and candidate.capacity:
        if generated.capacity == candidate.capacity:
            earned += WEIGHTS["capacity"]
        total += WEIGHTS["capacity"]

    if generated.color and candidate.color:
        earned += similarity(generated.color, candidate.color) * WEIGHTS["color"]
        total += WEIGHTS["color"]

    if generated.carrier and candidate.carrier:
        if generated.carrier == candidate.carrier:
            earned += WEIGHTS["carrier"]
        total += WEIGHTS["carrier"]

    return earned / total


def match_method(generated: ParsedSku, candidate: ParsedSku) -> MatchMethod:
    if generated.category != candidate.category:
        return MatchMethod.CATEGORY_MISMATCH
    if generated.model and generated.model == candidate.model:
        return MatchMethod.EXACT_MODEL
    if similarity(generated.model, candidate.model) > FUZZY_MODEL_THRESHOLD:
        return MatchMethod.FUZZY_MODEL
    return MatchMethod.PARTIAL_MATCH


def classify(best_score: float) -> MatchStatus:
    if best_score >= MATCHED_THRESHOLD:
        return MatchStatus.MATCHED
    if best_score >= REVIEW_THRESHOLD:
        return MatchStatus.MANUAL_REVIEW
    return MatchStatus.NO_MATCH


# ============================================================================
# Matcher
# ============================================================================

class SkuMatcher:
    """
    Best-candidate search over an in-memory copy of the catalog.

    Candidates are kept in lexical order so that equal scores resolve to
    the lexically smallest key.
    """

    def __init__(self, catalog: Iterable[str]):
        self.catalog: Tuple[str, ...] = tuple(sorted({c for c in catalog if c}))

    @classmethod
    async def from_session(cls, session: AsyncSession) -> "SkuMatcher":
        """Load the catalog snapshot from sku_master."""
        try:
            result = await session.execute(
                select(SkuMaster.sku_code)
                .where(SkuMaster.sku_code.is_not(None), SkuMaster.sku_code != "")
                .order_by(SkuMaster.sku_code)
            )
        except SQLAlchemyError as e:
            raise MatchingError(
                "Failed to load the SKU catalog",
                context={"table_name": SkuMaster.__tablename__},
                original_exception=e
            )
        catalog = [row[0] for row in result.all()]
        logger.debug(f"Loaded {len(catalog)} catalog SKUs")
        return cls(catalog)

    def __len__(self):
        return len(self.catalog)

    def match(self, generated_key: str) -> MatchOutcome:
        generated = parse_sku(generated_key)

        best_key: Optional[str] = None
        best_score = 0.0
        best_method = MatchMethod.NO_MATCH

        for key in self.catalog:
            candidate = parse_sku(key)
            candidate_score = score(generated, candidate)
            if candidate_score > best_score:
                best_key, best_score = key, candidate_score
                best_method = match_method(generated, candidate)

        status = classify(best_score)
        if status == MatchStatus.MATCHED:
            notes = f"Automatic match ({best_method.value})"
        elif status == MatchStatus.MANUAL_REVIEW:
            notes = f"Requires manual review ({best_method.value})"
        else:
            notes = "No suitable match found"
            best_key = None
            best_method = MatchMethod.NO_MATCH

        return MatchOutcome(
            original_sku=generated_key,
            matched_sku=best_key,
            score=best_score,
            method=best_method,
            status=status,
            notes=notes,
            category=generated.category,
        )
