# leadenrich/schemas/__init__.py
"""
Pydantic schemas for inbound records and configuration payloads.
"""

from leadenrich.schemas.raw_lead import RawLeadRecord
from leadenrich.schemas.scoring_config import (
    CategoryInput,
    CriterionInput,
    ScoringConfigInput,
    ScoringConfigRead,
    ScoringConfigUpdate,
)

__all__ = [
    "CategoryInput",
    "CriterionInput",
    "RawLeadRecord",
    "ScoringConfigInput",
    "ScoringConfigRead",
    "ScoringConfigUpdate",
]
