import datetime as dt
from enum import Enum

from sqlalchemy import Boolean, CheckConstraint, DateTime, ForeignKey, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from video_interview.db.base import Base


class Sentiment(str, Enum):
    POSITIVE = "positive"
    NEUTRAL = "neutral"
    NEGATIVE = "negative"


class AIAnalysis(Base):
    __tablename__ = "ai_analysis"
    __table_args__ = (CheckConstraint("score BETWEEN 1 AND 10", name="ck_ai_analysis_score_range"),)

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    response_id: Mapped[int] = mapped_column(
        ForeignKey("video_responses.id", ondelete="CASCADE"), nullable=False, unique=True
    )
    transcript: Mapped[str | None] = mapped_column(Text())
    sentiment: Mapped[str] = mapped_column(String(20), nullable=False, default=Sentiment.NEUTRAL.value)
    tone: Mapped[str | None] = mapped_column(String(100))
    score: Mapped[int] = mapped_column(Integer, nullable=False)
    feedback: Mapped[str | None] = mapped_column(Text())
    has_inappropriate_language: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default="false"
    )
    is_fallback: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="false")
    # Reviewer override, written later by a human; never by the pipeline
    manager_feedback: Mapped[str | None] = mapped_column(Text())
    manager_feedback_by: Mapped[str | None] = mapped_column(String(255))
    manager_feedback_at: Mapped[dt.datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True), default=func.now(), nullable=False, server_default=func.now()
    )

    response: Mapped["VideoResponse"] = relationship(back_populates="analysis")  # noqa: F821
