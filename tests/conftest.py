import os
import tempfile

# keep the app's stores out of the working tree when tests import it
os.environ.setdefault("DATA_DIR", tempfile.mkdtemp(prefix="medprep-tests-"))

import pytest  # noqa: E402

from errors import PersistenceFailure  # noqa: E402
from models import Question  # noqa: E402
from quiz_engine import QuizEngine  # noqa: E402
from session_store import MemoryStore, SessionStore  # noqa: E402


class StubSupplier:
    """Question supplier that hands back a fixed list"""

    def __init__(self, questions):
        self.questions = list(questions)
        self.calls = []

    async def fetch_questions(self, config):
        self.calls.append(config)
        return list(self.questions)


class RecordingSink:
    def __init__(self, fail=False):
        self.records = []
        self.fail = fail

    def save_result(self, record):
        if self.fail:
            raise PersistenceFailure("results backend unavailable")
        self.records.append(record)
        return f"result_{len(self.records)}"


@pytest.fixture
def make_question():
    def _make(qid, answer=1, subject="Medicine", skill="Recall", image=None, source="Marrow"):
        return Question(
            id=qid,
            question=f"Question {qid}",
            options=["Option A", "Option B", "Option C", "Option D"],
            answer=answer,
            subject=subject,
            source=source,
            cognitive_skill=skill,
            question_image=image,
        )
    return _make


@pytest.fixture
def questions(make_question):
    return [make_question(f"q{i}", answer=(i % 4) + 1) for i in range(10)]


@pytest.fixture
def store():
    return SessionStore(MemoryStore())


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def supplier(questions):
    return StubSupplier(questions)


@pytest.fixture
def engine(supplier, store, sink):
    return QuizEngine(supplier, store, sink, seconds_per_question=90,
                      grand_test_seconds=180 * 60, min_questions_to_record=5)


@pytest.fixture
def make_engine(store):
    """Engine over an arbitrary question list, sharing the test's store"""
    def _make(questions, sink=None, **kwargs):
        return QuizEngine(StubSupplier(questions), store, sink, **kwargs)
    return _make


@pytest.fixture
def failing_sink():
    return RecordingSink(fail=True)
