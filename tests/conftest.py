import pytest

from knowledge_trainer.config import Settings
from knowledge_trainer.db import init_db
from knowledge_trainer.generator import GenerationError
from knowledge_trainer.models import GeneratedQuestion, TopicStructure
from knowledge_trainer.topics import create_topic

SUBTOPICS = ["Origins", "Expansion", "Golden Age", "Decline", "Legacy"]


@pytest.fixture
def tmp_db(tmp_path):
    """Provide a temporary SQLite database path for tests."""
    db_path = str(tmp_path / "test_trainer.db")
    return db_path


@pytest.fixture
def db(tmp_db):
    """An initialized database."""
    init_db(tmp_db)
    return tmp_db


@pytest.fixture
def topic(db):
    """A five-subtopic topic stored in the database."""
    return create_topic(db, TopicStructure(name="Roman Empire", subtopics=list(SUBTOPICS), category="History"))


@pytest.fixture
def settings(tmp_db):
    return Settings(
        _env_file=None,
        db_path=tmp_db,
        prefetch_pacing=0,
        retry_delay=0,
        rate_limit_delay=0,
    )


def make_question(n: int, subtopic: str = "Origins", choices=None, difficulty: int = 1) -> GeneratedQuestion:
    """A question whose words and answer share nothing with other numbers."""
    return GeneratedQuestion(
        question_text=f"Question q{n}alpha q{n}beta q{n}gamma?",
        correct_answer=f"answer{n}",
        subtopic=subtopic,
        explanation=f"Because of answer{n}.",
        difficulty=difficulty,
        choices=choices,
    )


class FakeGenerator:
    """In-memory content generator with scripted batches and verdicts."""

    def __init__(self, batches=None, verdict=True, fail=False):
        self.batches = list(batches or [])
        self.verdict = verdict
        self.fail = fail
        self.batch_calls = []
        self.judge_calls = []
        self.counter = 100

    async def generate_question_batch(
        self, topic, subtopics, difficulty, previous_questions,
        focus_subtopic=None, next_subtopic=None, depth=None,
    ):
        self.batch_calls.append({
            "subtopics": subtopics,
            "difficulty": difficulty,
            "focus": focus_subtopic,
            "next": next_subtopic,
            "previous": list(previous_questions),
        })
        if self.fail:
            raise GenerationError("generator down")
        if self.batches:
            return self.batches.pop(0)
        subtopic = focus_subtopic or subtopics[0]
        questions = [make_question(self.counter + i, subtopic) for i in range(10)]
        self.counter += 10
        return questions, None

    async def evaluate_uncertain_response(self, user_answer, correct_answer, question_context):
        self.judge_calls.append((user_answer, correct_answer))
        if isinstance(self.verdict, Exception):
            raise self.verdict
        return self.verdict

