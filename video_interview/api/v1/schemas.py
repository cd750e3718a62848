from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class QuestionRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    question: str
    order_index: int
    answered: bool = False


class InterviewSessionRead(BaseModel):
    """What a candidate sees when opening an interview link."""

    interview_id: int
    candidate_name: str
    status: str
    job_title: Optional[str] = None
    company: Optional[str] = None
    questions: List[QuestionRead]
    answered: int
    total: int


class AnalysisRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    transcript: Optional[str] = None
    sentiment: str
    tone: Optional[str] = None
    score: int
    feedback: Optional[str] = None
    has_inappropriate_language: bool
    is_fallback: bool
    manager_feedback: Optional[str] = None
    manager_feedback_by: Optional[str] = None
    manager_feedback_at: Optional[datetime] = None
    created_at: Optional[datetime] = None


class VideoResponseRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    interview_id: int
    question_id: int
    video_url: str
    duration: int
    content_type: Optional[str] = None
    size_bytes: Optional[int] = None
    created_at: Optional[datetime] = None


class SubmissionRead(BaseModel):
    response: VideoResponseRead
    analysis: AnalysisRead
    interview_status: str
    overall_score: Optional[int] = None
    completed: bool
    already_submitted: bool = False


class ResultItem(BaseModel):
    question_id: int
    question: str
    order_index: int
    response: VideoResponseRead
    analysis: Optional[AnalysisRead] = None


class InterviewResultsRead(BaseModel):
    interview_id: int
    status: str
    overall_score: Optional[int] = None
    completed_at: Optional[datetime] = None
    summary: Optional[str] = None
    responses: List[ResultItem]


class InterviewStatusRead(BaseModel):
    interview_id: int
    status: str
    completed_at: Optional[datetime] = None
    overall_score: Optional[int] = None
    is_completed: bool
    answered: int
    total: int


class ReviewerFeedbackUpdate(BaseModel):
    feedback: str = Field(..., min_length=1, max_length=5000)
    reviewer: Optional[str] = Field(None, max_length=255)
