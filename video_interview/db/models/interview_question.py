import datetime as dt

from sqlalchemy import ForeignKey, Integer, Text, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from video_interview.db.base import Base


class InterviewQuestion(Base):
    """Immutable prompt; ``order_index`` (zero-based) fixes presentation order within a job."""

    __tablename__ = "interview_questions"
    __table_args__ = (UniqueConstraint("job_id", "order_index", name="uq_interview_questions_job_order"),)

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    job_id: Mapped[int] = mapped_column(ForeignKey("jobs.id", ondelete="CASCADE"), nullable=False, index=True)
    question: Mapped[str] = mapped_column(Text(), nullable=False)
    order_index: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[dt.datetime] = mapped_column(
        default=func.now(), nullable=False, server_default=func.now()
    )

    job: Mapped["Job"] = relationship(back_populates="questions")  # noqa: F821
