# leadenrich/models/__init__.py
"""
SQLAlchemy ORM models for database entities.
"""

from leadenrich.models.enums import CategoryType, JobStatus, LeadStatus, ScoreTier
from leadenrich.models.lead import Lead
from leadenrich.models.processing_job import ProcessingJob
from leadenrich.models.scoring_config import ScoringCategory, ScoringConfig, ScoringCriterion

__all__ = [
    "CategoryType",
    "JobStatus",
    "Lead",
    "LeadStatus",
    "ProcessingJob",
    "ScoreTier",
    "ScoringCategory",
    "ScoringConfig",
    "ScoringCriterion",
]
