############################################################
#
# callgate - LLM Call Gateway, Response Cache and Call Ledger
#
# models.py: SQLAlchemy ORM models for all database entities
#
# Luke Sheneman
# Research Computing and Data Services (RCDS)
# Institute for Interdisciplinary Data Sciences (IIDS)
# University of Idaho
# sheneman@uidaho.edu
#
############################################################

"""SQLAlchemy database models for callgate."""

from datetime import datetime
from enum import Enum as PyEnum
from typing import Any, List, Optional
import uuid

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from backend.app.db.base import Base, TimestampMixin, UpdatedTimestampMixin

# Use enum values (lowercase) for database storage, not enum names (uppercase)
_enum_values = lambda obj: [e.value for e in obj]


def _new_uuid() -> str:
    return str(uuid.uuid4())


# Enums
class ApiKeyStatus(str, PyEnum):
    """API key status types."""
    ACTIVE = "active"
    REVOKED = "revoked"


# Tenant Models
class Project(Base, UpdatedTimestampMixin):
    """Tenant boundary for calls, fine-tunes and cache keys."""

    __tablename__ = "projects"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_uuid)
    name: Mapped[str] = mapped_column(String(255), nullable=False)

    # Relationships
    api_keys: Mapped[List["ApiKey"]] = relationship("ApiKey", back_populates="project")
    fine_tunes: Mapped[List["FineTune"]] = relationship("FineTune", back_populates="project")


class ApiKey(Base, UpdatedTimestampMixin):
    """Project API key."""

    __tablename__ = "api_keys"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    project_id: Mapped[str] = mapped_column(String(36), ForeignKey("projects.id"), nullable=False)
    key_hash: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    key_prefix: Mapped[str] = mapped_column(String(16), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    status: Mapped[ApiKeyStatus] = mapped_column(
        Enum(ApiKeyStatus, values_callable=_enum_values), nullable=False, default=ApiKeyStatus.ACTIVE
    )
    last_used_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    # Relationships
    project: Mapped["Project"] = relationship("Project", back_populates="api_keys")


# Fine-tune Models (read-only from the gateway's point of view)
class Dataset(Base, UpdatedTimestampMixin):
    """Training dataset a fine-tune was built from."""

    __tablename__ = "datasets"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_uuid)
    project_id: Mapped[str] = mapped_column(String(36), ForeignKey("projects.id"), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)

    # Relationships
    pruning_rules: Mapped[List["PruningRule"]] = relationship(
        "PruningRule", back_populates="dataset", order_by="PruningRule.id"
    )


class PruningRule(Base, TimestampMixin):
    """Literal substring stripped from message text before training and inference."""

    __tablename__ = "pruning_rules"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    dataset_id: Mapped[str] = mapped_column(String(36), ForeignKey("datasets.id"), nullable=False, index=True)
    text_to_match: Mapped[str] = mapped_column(Text, nullable=False)

    # Relationships
    dataset: Mapped["Dataset"] = relationship("Dataset", back_populates="pruning_rules")


class FineTune(Base, UpdatedTimestampMixin):
    """Self-hosted fine-tuned model addressed as '<prefix><slug>'."""

    __tablename__ = "fine_tunes"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_uuid)
    project_id: Mapped[str] = mapped_column(String(36), ForeignKey("projects.id"), nullable=False)
    slug: Mapped[str] = mapped_column(String(100), unique=True, nullable=False, index=True)
    base_model: Mapped[str] = mapped_column(String(200), nullable=False)
    inference_url: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    dataset_id: Mapped[str] = mapped_column(String(36), ForeignKey("datasets.id"), nullable=False)

    # Relationships
    project: Mapped["Project"] = relationship("Project", back_populates="fine_tunes")
    dataset: Mapped["Dataset"] = relationship("Dataset")


# Call Ledger Models
class LoggedCall(Base, TimestampMixin):
    """One row per inbound gateway call, cache hit or not."""

    __tablename__ = "logged_calls"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    project_id: Mapped[str] = mapped_column(String(36), ForeignKey("projects.id"), nullable=False)
    requested_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    cache_hit: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    model: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)

    # The response row references this call too; use_alter breaks the
    # table-creation cycle between the two tables.
    model_response_id: Mapped[Optional[str]] = mapped_column(
        String(36),
        ForeignKey(
            "logged_call_model_responses.id",
            use_alter=True,
            name="fk_logged_calls_model_response_id",
        ),
        nullable=True,
    )

    # Relationships
    model_response: Mapped[Optional["LoggedCallModelResponse"]] = relationship(
        "LoggedCallModelResponse",
        foreign_keys=[model_response_id],
        viewonly=True,
    )
    tags: Mapped[List["LoggedCallTag"]] = relationship(
        "LoggedCallTag", order_by="LoggedCallTag.id", viewonly=True
    )

    __table_args__ = (
        Index("ix_logged_calls_project_requested", "project_id", "requested_at"),
    )


class LoggedCallModelResponse(Base, TimestampMixin):
    """Result of one upstream model invocation. Immutable once written."""

    __tablename__ = "logged_call_model_responses"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    original_logged_call_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("logged_calls.id"), nullable=False, unique=True
    )

    requested_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    received_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    duration_ms: Mapped[int] = mapped_column(Integer, nullable=False)

    req_payload: Mapped[Any] = mapped_column(JSON, nullable=True)
    resp_payload: Mapped[Optional[Any]] = mapped_column(JSON, nullable=True)
    status_code: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    input_tokens: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    output_tokens: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    cost: Mapped[Optional[float]] = mapped_column(Float, nullable=True)

    # Set only when both request and response validated
    cache_key: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    # Relationships
    original_logged_call: Mapped["LoggedCall"] = relationship(
        "LoggedCall",
        foreign_keys=[original_logged_call_id],
        viewonly=True,
    )

    __table_args__ = (
        Index("ix_logged_call_model_responses_cache_key", "cache_key", "requested_at"),
    )


class LoggedCallTag(Base, TimestampMixin):
    """Free-form key/value annotation on a call."""

    __tablename__ = "logged_call_tags"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    project_id: Mapped[str] = mapped_column(String(36), ForeignKey("projects.id"), nullable=False)
    logged_call_id: Mapped[str] = mapped_column(String(36), ForeignKey("logged_calls.id"), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    value: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Relationships
    logged_call: Mapped["LoggedCall"] = relationship("LoggedCall", viewonly=True)

    __table_args__ = (
        Index("ix_logged_call_tags_logged_call", "logged_call_id"),
        Index("ix_logged_call_tags_project_name_value", "project_id", "name"),
    )
