# leadenrich/models/enums.py
from __future__ import annotations

import enum


class LeadStatus(str, enum.Enum):
    AWAITING = "awaiting"
    PROCESSING = "processing"
    PROCESSED = "processed"
    ERROR = "error"


class ScoreTier(str, enum.Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class JobStatus(str, enum.Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class CategoryType(str, enum.Enum):
    """Closed set of scoring category kinds."""

    ACTIVITY_CODE = "activity_code"
    REGION = "region"
    CAPITAL = "capital"
    FOUNDING_AGE = "founding_age"
    ADDRESS = "address"
    PARTNERS = "partners"
    CUSTOM = "custom"


def enum_values(enum_cls):
    return [member.value for member in enum_cls]
