# leadenrich/models/scoring_config.py
from __future__ import annotations

from sqlalchemy import (
    Boolean,
    Column,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    text,
)
from sqlalchemy.orm import relationship

from leadenrich.db.base import Base
from leadenrich.models.enums import CategoryType, enum_values


class ScoringConfig(Base):
    __tablename__ = "scoring_configs"

    name = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    is_active = Column(Boolean, nullable=False, default=False, server_default="0")
    version = Column(Integer, nullable=False, default=1, server_default="1")
    created_by = Column(String(100), nullable=True)

    categories = relationship(
        "ScoringCategory",
        back_populates="config",
        cascade="all, delete-orphan",
        order_by="ScoringCategory.position",
        lazy="selectin",
    )

    __table_args__ = (
        # At most one active configuration
        Index(
            "uq_scoring_configs_single_active",
            "is_active",
            unique=True,
            postgresql_where=text("is_active"),
            sqlite_where=text("is_active"),
        ),
    )


class ScoringCategory(Base):
    __tablename__ = "scoring_categories"

    config_id = Column(ForeignKey("scoring_configs.id", ondelete="CASCADE"), nullable=False, index=True)
    config = relationship("ScoringConfig", back_populates="categories")

    name = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    type = Column(
        Enum(CategoryType, name="scoring_category_type", values_callable=enum_values),
        nullable=False,
    )
    points = Column(Integer, nullable=False, default=0, server_default="0")
    position = Column(Integer, nullable=False, default=0, server_default="0")

    criteria = relationship(
        "ScoringCriterion",
        back_populates="category",
        cascade="all, delete-orphan",
        order_by="ScoringCriterion.position",
        lazy="selectin",
    )


class ScoringCriterion(Base):
    __tablename__ = "scoring_criteria"

    category_id = Column(ForeignKey("scoring_categories.id", ondelete="CASCADE"), nullable=False, index=True)
    category = relationship("ScoringCategory", back_populates="criteria")

    value = Column(String(200), nullable=False)
    label = Column(String(200), nullable=True)
    points = Column(Integer, nullable=False, default=0, server_default="0")
    position = Column(Integer, nullable=False, default=0, server_default="0")
