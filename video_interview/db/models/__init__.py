from video_interview.db.models.job import Job
from video_interview.db.models.interview_question import InterviewQuestion
from video_interview.db.models.interview import Interview, InterviewStatus
from video_interview.db.models.video_response import VideoResponse
from video_interview.db.models.ai_analysis import AIAnalysis, Sentiment

__all__ = [
    "Job",
    "InterviewQuestion",
    "Interview",
    "InterviewStatus",
    "VideoResponse",
    "AIAnalysis",
    "Sentiment",
]
