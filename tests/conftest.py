import json
import os
import tempfile
from pathlib import Path

_TMP = Path(tempfile.mkdtemp(prefix="video-interview-tests-"))
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_TMP / 'test.db'}"
os.environ["STORAGE_BACKEND"] = "local"
os.environ["LOCAL_STORAGE_PATH"] = str(_TMP / "media")
os.environ["LOCAL_STORAGE_BASE_URL"] = "http://media.test"
os.environ.pop("ANALYSIS_URL", None)
os.environ.pop("S3_BUCKET", None)

import datetime as dt  # noqa: E402

import httpx  # noqa: E402
import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402

from video_interview.core.local_storage import LocalObjectStorage  # noqa: E402
from video_interview.db.base import Base  # noqa: E402
from video_interview.db.models import Interview, InterviewQuestion, Job  # noqa: E402
from video_interview.db.session import async_session_factory, engine, init_db  # noqa: E402
from video_interview.services.analysis_invoker import AnalysisInvoker  # noqa: E402
from video_interview.services.capture import Clip  # noqa: E402
from video_interview.services.submission import SubmissionPipeline  # noqa: E402
from video_interview.services.upload_gateway import UploadGateway  # noqa: E402

ANALYSIS_URL = "http://analysis.test/analyze"
TIMEOUT = "timeout"


@pytest_asyncio.fixture(autouse=True)
async def schema():
    await init_db()
    yield
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture
def session_factory():
    return async_session_factory


@pytest.fixture
def storage(tmp_path):
    return LocalObjectStorage(base_path=str(tmp_path / "media"), base_url="http://media.test")


@pytest.fixture
def gateway(storage):
    return UploadGateway(storage=storage, prefix="interview-videos")


@pytest.fixture
def make_interview(session_factory):
    async def _make(questions=("Tell us about yourself", "Describe a hard bug", "Why this role?"), expires_at=None):
        async with session_factory() as session:
            job = Job(title="Backend Engineer", company="Acme", description="Python services")
            session.add(job)
            await session.flush()
            rows = [
                InterviewQuestion(job_id=job.id, question=text, order_index=i)
                for i, text in enumerate(questions)
            ]
            session.add_all(rows)
            interview = Interview(
                job_id=job.id,
                candidate_name="Sam Doe",
                candidate_email="sam@example.com",
                link_expires_at=expires_at,
            )
            session.add(interview)
            await session.commit()
            return interview, rows

    return _make


def analysis_reply(score, sentiment="positive", **extra):
    return {
        "transcript": f"answer scored {score}",
        "sentiment": sentiment,
        "tone": "confident",
        "score": score,
        "feedback": "Clear and structured",
        "has_inappropriate_language": False,
        **extra,
    }


def scripted_transport(replies):
    """Answers by question text: a dict is a 200 JSON body, bytes a raw 200 body, TIMEOUT raises, an int is a bare status."""
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        calls.append(body)
        reply = replies.get(body["question"], TIMEOUT)
        if reply == TIMEOUT:
            raise httpx.ReadTimeout("timed out", request=request)
        if isinstance(reply, int):
            return httpx.Response(reply, json={"error": "boom"})
        if isinstance(reply, bytes):
            return httpx.Response(200, content=reply)
        return httpx.Response(200, json=reply)

    transport = httpx.MockTransport(handler)
    transport.calls = calls
    return transport


@pytest.fixture
def make_pipeline(session_factory, gateway):
    def _make(replies=None, url=ANALYSIS_URL):
        transport = scripted_transport(replies or {})
        invoker = AnalysisInvoker(url=url, api_key="test-key", timeout=1, transport=transport)
        pipeline = SubmissionPipeline(session_factory=session_factory, gateway=gateway, invoker=invoker)
        pipeline.transport = transport
        return pipeline

    return _make


@pytest.fixture
def clip():
    return Clip(data=b"\x1aE\xdf\xa3webm-bytes", content_type="video/webm", duration_seconds=42)


def in_days(days):
    return dt.datetime.now(dt.timezone.utc) + dt.timedelta(days=days)
