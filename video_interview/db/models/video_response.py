import datetime as dt
from typing import Optional

from sqlalchemy import DateTime, ForeignKey, Integer, String, Text, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from video_interview.db.base import Base


class VideoResponse(Base):
    """One submitted answer. At most one row per (interview, question)."""

    __tablename__ = "video_responses"
    __table_args__ = (
        UniqueConstraint("interview_id", "question_id", name="uq_video_responses_interview_question"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    interview_id: Mapped[int] = mapped_column(ForeignKey("interviews.id", ondelete="CASCADE"), nullable=False, index=True)
    question_id: Mapped[int] = mapped_column(ForeignKey("interview_questions.id", ondelete="CASCADE"), nullable=False)
    video_url: Mapped[str] = mapped_column(Text(), nullable=False)
    duration: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    content_type: Mapped[str | None] = mapped_column(String(100))
    size_bytes: Mapped[int | None] = mapped_column(Integer)
    created_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True), default=func.now(), nullable=False, server_default=func.now()
    )

    interview: Mapped["Interview"] = relationship(back_populates="responses")  # noqa: F821
    question: Mapped["InterviewQuestion"] = relationship()  # noqa: F821
    analysis: Mapped[Optional["AIAnalysis"]] = relationship(  # noqa: F821
        back_populates="response",
        uselist=False,
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
