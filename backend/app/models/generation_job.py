"""Generation job model for AI invocation tracking.

Each job is created only after its credit cost has been debited, so the
number of in-flight jobs an account can hold is bounded by its balance.
"""

import enum
from datetime import datetime
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import Boolean, DateTime, Enum, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.sql import func

from app.core.database import Base


class GenerationType(str, enum.Enum):
    """Kinds of AI generation."""

    IMAGE = "image"
    VIDEO = "video"
    TEXT = "text"


class JobStatus(str, enum.Enum):
    """Generation job statuses.

    State transitions:
    - PROCESSING -> COMPLETED (provider returned a result)
    - PROCESSING -> FAILED (provider failed or timed out; credits refunded)
    """

    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class GenerationJob(Base):
    """
    One AI invocation and its outcome.

    Jobs are not cancellable once submitted; a failed terminal status is
    always paired with a compensating refund.
    """

    __tablename__ = "ai_generations"

    # Primary key
    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)

    # Foreign key
    account_id: Mapped[str] = mapped_column(
        String(255), ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False, index=True
    )

    # Request
    prompt: Mapped[str] = mapped_column(Text, nullable=False)
    generation_type: Mapped[GenerationType] = mapped_column(
        Enum(GenerationType), nullable=False, index=True
    )
    provider: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    credits_cost: Mapped[int] = mapped_column(Integer, nullable=False)

    # Outcome
    status: Mapped[JobStatus] = mapped_column(
        Enum(JobStatus), default=JobStatus.PROCESSING, nullable=False, index=True
    )
    result_url: Mapped[Optional[str]] = mapped_column(
        Text, nullable=True
    )  # Data URL for images, raw text for text generations
    error_msg: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    is_public: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False, index=True
    )
    completed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # Relationships
    account: Mapped["Account"] = relationship("Account", back_populates="generation_jobs")

    def __repr__(self) -> str:
        return (
            f"<GenerationJob(id={self.id}, type={self.generation_type.value}, "
            f"status={self.status.value}, cost={self.credits_cost})>"
        )

    @property
    def is_terminal(self) -> bool:
        """Check if the job has reached a terminal state."""
        return self.status in (JobStatus.COMPLETED, JobStatus.FAILED)
