# leadenrich/models/lead.py
from __future__ import annotations

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    Date,
    Enum,
    Float,
    Index,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import relationship

from leadenrich.db.base import Base
from leadenrich.models.enums import LeadStatus, ScoreTier, enum_values

JSONType = JSON().with_variant(JSONB(), "postgresql")


class Lead(Base):
    __tablename__ = "leads"

    tax_id = Column(String(14), nullable=False, unique=True)

    # Raw import attributes
    company_name = Column(String(255), nullable=True)
    trade_name = Column(String(255), nullable=True)
    parent_name = Column(String(255), nullable=True)
    municipality = Column(String(128), nullable=True)
    district = Column(String(128), nullable=True)
    subdistrict = Column(String(128), nullable=True)
    postal_code = Column(String(16), nullable=True)
    neighborhood = Column(String(128), nullable=True)
    street = Column(String(255), nullable=True)
    suggested_street = Column(String(255), nullable=True)
    raw_coordinates = Column(String(64), nullable=True)
    street_view_url = Column(Text, nullable=True)

    # Validated address
    validated_street = Column(String(255), nullable=True)
    validated_number = Column(String(32), nullable=True)
    validated_complement = Column(String(128), nullable=True)
    validated_neighborhood = Column(String(128), nullable=True)
    validated_city = Column(String(128), nullable=True)
    validated_state = Column(String(2), nullable=True)
    validated_postal_code = Column(String(8), nullable=True)
    latitude = Column(Float, nullable=True)
    longitude = Column(Float, nullable=True)
    address_validated = Column(Boolean, nullable=False, default=False, server_default="0")

    # Company registry enrichment
    activity_code = Column(String(16), nullable=True)
    activity_description = Column(String(500), nullable=True)
    registered_capital = Column(Numeric(18, 2, asdecimal=False), nullable=True)
    founded_on = Column(Date, nullable=True)
    partners = Column(JSONType, nullable=True)
    region = Column(String(32), nullable=True)
    market_segment = Column(String(32), nullable=True)

    # Scoring
    score = Column(Integer, nullable=True)
    tier = Column(Enum(ScoreTier, name="lead_tier", values_callable=enum_values), nullable=True)
    score_factors = Column(JSONType, nullable=True)
    confidence = Column(Integer, nullable=True)

    status = Column(
        Enum(LeadStatus, name="lead_status", values_callable=enum_values),
        nullable=False,
        default=LeadStatus.AWAITING,
        server_default=LeadStatus.AWAITING.value,
    )
    processing_error = Column(Text, nullable=True)

    jobs = relationship(
        "ProcessingJob",
        back_populates="lead",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    __table_args__ = (
        Index("idx_leads_status", "status"),
        Index("idx_leads_tier", "tier"),
        Index("idx_leads_validated_state", "validated_state"),
        CheckConstraint("length(tax_id) > 0", name="check_tax_id_not_empty"),
        CheckConstraint("score IS NULL OR (score >= 0 AND score <= 100)", name="check_score_range"),
        CheckConstraint(
            "confidence IS NULL OR (confidence >= 0 AND confidence <= 100)",
            name="check_confidence_range",
        ),
    )

    @property
    def has_coordinates(self) -> bool:
        return self.latitude is not None and self.longitude is not None
