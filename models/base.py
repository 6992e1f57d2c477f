from datetime import datetime, timezone
from sqlalchemy import BigInteger, Integer, JSON, Enum
from sqlalchemy.orm import declarative_base
from sqlalchemy.dialects.postgresql import JSONB
import enum

Base = declarative_base()

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")

# SQLite only autoincrements INTEGER PRIMARY KEY
BigIntPK = BigInteger().with_variant(Integer(), "sqlite")


def utcnow() -> datetime:
    """Naive UTC timestamp, the convention for every DateTime column."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def enum_column(enum_cls):
    """Enum column type persisting member values ("pending") instead of names."""
    return Enum(
        enum_cls,
        name=enum_cls.__name__.lower(),
        values_callable=lambda members: [m.value for m in members],
    )


# ============================================================================
# ENUMS
# ============================================================================

class QueueStatus(str, enum.Enum):
    """Queue item lifecycle"""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class BatchStatus(str, enum.Enum):
    """Bulk submission status"""
    ACTIVE = "active"
    CLOSED = "closed"


class WorkingStatus(str, enum.Enum):
    """Functional test outcome of a unit"""
    YES = "yes"
    NO = "no"
    PENDING = "pending"


class ProductCategory(str, enum.Enum):
    PHONE = "PHONE"
    WATCH = "WATCH"
    TABLET = "TABLET"
    COMPUTER = "COMPUTER"


class MatchMethod(str, enum.Enum):
    """How the best catalog candidate relates to the generated key"""
    EXACT_MODEL = "exact_model"
    FUZZY_MODEL = "fuzzy_model"
    CATEGORY_MISMATCH = "category_mismatch"
    PARTIAL_MATCH = "partial_match"
    NO_MATCH = "no_match"


class MatchStatus(str, enum.Enum):
    MATCHED = "matched"
    MANUAL_REVIEW = "manual_review"
    NO_MATCH = "no_match"
