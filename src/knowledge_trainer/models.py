"""Data classes for the learning-progress domain model."""
import json
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from enum import Enum, IntEnum
from typing import Optional

MASTERY_MIN_ANSWERED = 10
MASTERY_MIN_ACCURACY = 80.0
STREAK_FREEZE_COST = 200
MAX_STREAK_FREEZES = 3

CATEGORIES = [
    "History", "Science", "Geography", "Arts & Culture", "Sports",
    "Entertainment", "Technology", "Nature", "Language", "Other",
]


def new_id() -> str:
    return uuid.uuid4().hex


def normalize_category(name: Optional[str]) -> str:
    return name if name in CATEGORIES else "Other"


def _loads(value, default):
    if value is None:
        return default
    return json.loads(value)


def _text(value) -> str:
    return "" if value is None else str(value)


def _texts(value) -> list[str]:
    """Generated string lists; anything but a list becomes empty."""
    if not isinstance(value, list):
        return []
    return [str(v) for v in value if v is not None]


def _difficulty(value, default: int = 1) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


class Rank(IntEnum):
    NOVICE = 1
    APPRENTICE = 2
    SCHOLAR = 3
    ADEPT = 4
    SAGE = 5
    MASTER = 6
    GRANDMASTER = 7

    @property
    def title(self) -> str:
        return self.name.title()

    @property
    def xp_threshold(self) -> int:
        return RANK_THRESHOLDS[self]

    @property
    def next_rank(self) -> Optional["Rank"]:
        if self is Rank.GRANDMASTER:
            return None
        return Rank(self.value + 1)

    @classmethod
    def for_xp(cls, xp: int) -> "Rank":
        for rank in reversed(cls):
            if xp >= rank.xp_threshold:
                return rank
        return cls.NOVICE

    def progress_to_next(self, current_xp: int) -> float:
        nxt = self.next_rank
        if nxt is None:
            return 1.0
        span = nxt.xp_threshold - self.xp_threshold
        return (current_xp - self.xp_threshold) / span


RANK_THRESHOLDS = {
    Rank.NOVICE: 0,
    Rank.APPRENTICE: 300,
    Rank.SCHOLAR: 1_000,
    Rank.ADEPT: 2_500,
    Rank.SAGE: 5_000,
    Rank.MASTER: 10_000,
    Rank.GRANDMASTER: 20_000,
}


class LearningDepth(Enum):
    CASUAL = "casual"
    STANDARD = "standard"
    DEEP = "deep"

    @property
    def difficulty(self) -> int:
        return {"casual": 2, "standard": 3, "deep": 5}[self.value]


class QuestionFormat(Enum):
    MIXED = "mixed"
    MULTIPLE_CHOICE = "multiple_choice"
    SHORT_ANSWER = "short_answer"


@dataclass
class Topic:
    id: str
    name: str
    subtopics: list[str] = field(default_factory=list)
    category: str = "Other"
    related_topics: list[str] = field(default_factory=list)
    subtopics_ordered: bool = True
    date_created: datetime = field(default_factory=datetime.now)
    last_practiced: datetime = field(default_factory=datetime.now)

    @classmethod
    def from_row(cls, row) -> "Topic":
        return cls(
            id=row["id"],
            name=row["name"],
            subtopics=_loads(row["subtopics"], []),
            category=row["category"],
            related_topics=_loads(row["related_topics"], []),
            subtopics_ordered=bool(row["subtopics_ordered"]),
            date_created=datetime.fromisoformat(row["date_created"]),
            last_practiced=datetime.fromisoformat(row["last_practiced"]),
        )


@dataclass
class SubtopicProgress:
    topic_id: str
    subtopic_name: str
    sort_order: int
    questions_answered: int = 0
    questions_correct: int = 0
    is_mastered: bool = False
    mastered_date: Optional[datetime] = None
    lesson_overview: str = ""
    lesson_key_facts: list[str] = field(default_factory=list)
    lesson_misconceptions: list[str] = field(default_factory=list)
    lesson_connections: list[str] = field(default_factory=list)
    lesson_viewed: bool = False

    @property
    def accuracy(self) -> float:
        if self.questions_answered == 0:
            return 0.0
        return self.questions_correct / self.questions_answered * 100

    @property
    def has_mastery_threshold(self) -> bool:
        return (
            self.questions_answered >= MASTERY_MIN_ANSWERED
            and self.accuracy >= MASTERY_MIN_ACCURACY
        )

    @classmethod
    def from_row(cls, row) -> "SubtopicProgress":
        mastered = row["mastered_date"]
        return cls(
            topic_id=row["topic_id"],
            subtopic_name=row["subtopic_name"],
            sort_order=row["sort_order"],
            questions_answered=row["questions_answered"],
            questions_correct=row["questions_correct"],
            is_mastered=bool(row["is_mastered"]),
            mastered_date=datetime.fromisoformat(mastered) if mastered else None,
            lesson_overview=row["lesson_overview"] or "",
            lesson_key_facts=_loads(row["lesson_key_facts"], []),
            lesson_misconceptions=_loads(row["lesson_misconceptions"], []),
            lesson_connections=_loads(row["lesson_connections"], []),
            lesson_viewed=bool(row["lesson_viewed"]),
        )


@dataclass
class QuestionRecord:
    topic_id: str
    subtopic: str
    difficulty: int
    question_text: str
    user_response: str
    correct_answer: str
    was_correct: bool
    explanation: str = ""
    id: str = field(default_factory=new_id)
    date: datetime = field(default_factory=datetime.now)

    @classmethod
    def from_row(cls, row) -> "QuestionRecord":
        return cls(
            id=row["id"],
            date=datetime.fromisoformat(row["date"]),
            topic_id=row["topic_id"],
            subtopic=row["subtopic"],
            difficulty=row["difficulty"],
            question_text=row["question_text"],
            user_response=row["user_response"],
            correct_answer=row["correct_answer"],
            was_correct=bool(row["was_correct"]),
            explanation=row["explanation"] or "",
        )


def _tomorrow() -> datetime:
    return datetime.now() + timedelta(days=1)


@dataclass
class ReviewItem:
    question_text: str
    correct_answer: str
    topic_id: str
    subtopic: str
    acceptable_answers: list[str] = field(default_factory=list)
    explanation: str = ""
    choices: Optional[list[str]] = None
    id: str = field(default_factory=new_id)
    date_missed: datetime = field(default_factory=datetime.now)
    next_review_date: datetime = field(default_factory=_tomorrow)
    interval_days: float = 1.0
    ease_factor: float = 2.5
    review_count: int = 0

    def to_question(self) -> "GeneratedQuestion":
        return GeneratedQuestion(
            question_text=self.question_text,
            correct_answer=self.correct_answer,
            acceptable_answers=list(self.acceptable_answers),
            explanation=self.explanation,
            subtopic=self.subtopic,
            difficulty=0,
            choices=self.choices,
        )

    @classmethod
    def from_row(cls, row) -> "ReviewItem":
        return cls(
            id=row["id"],
            question_text=row["question_text"],
            correct_answer=row["correct_answer"],
            acceptable_answers=_loads(row["acceptable_answers"], []),
            explanation=row["explanation"] or "",
            choices=_loads(row["choices"], None),
            topic_id=row["topic_id"],
            subtopic=row["subtopic"],
            date_missed=datetime.fromisoformat(row["date_missed"]),
            next_review_date=datetime.fromisoformat(row["next_review_date"]),
            interval_days=row["interval_days"],
            ease_factor=row["ease_factor"],
            review_count=row["review_count"],
        )


@dataclass
class CachedQuestion:
    topic_id: str
    subtopic: str
    question_text: str
    correct_answer: str
    acceptable_answers: list[str] = field(default_factory=list)
    explanation: str = ""
    difficulty: int = 1
    choices: Optional[list[str]] = None
    id: str = field(default_factory=new_id)
    date_created: datetime = field(default_factory=datetime.now)

    def to_question(self) -> "GeneratedQuestion":
        return GeneratedQuestion(
            question_text=self.question_text,
            correct_answer=self.correct_answer,
            acceptable_answers=list(self.acceptable_answers),
            explanation=self.explanation,
            subtopic=self.subtopic,
            difficulty=self.difficulty,
            choices=self.choices,
        )

    @classmethod
    def from_question(cls, question: "GeneratedQuestion", topic_id: str) -> "CachedQuestion":
        return cls(
            topic_id=topic_id,
            subtopic=question.subtopic,
            question_text=question.question_text,
            correct_answer=question.correct_answer,
            acceptable_answers=list(question.acceptable_answers),
            explanation=question.explanation,
            difficulty=question.difficulty,
            choices=question.choices,
        )

    @classmethod
    def from_row(cls, row) -> "CachedQuestion":
        return cls(
            id=row["id"],
            topic_id=row["topic_id"],
            subtopic=row["subtopic"],
            question_text=row["question_text"],
            correct_answer=row["correct_answer"],
            acceptable_answers=_loads(row["acceptable_answers"], []),
            explanation=row["explanation"] or "",
            difficulty=row["difficulty"],
            choices=_loads(row["choices"], None),
            date_created=datetime.fromisoformat(row["date_created"]),
        )


@dataclass
class ScholarProfile:
    total_xp: int = 0
    streak_freezes: int = 0
    streak_freeze_dates_used: list[date] = field(default_factory=list)
    daily_goal_completed: bool = False
    daily_goal_date: date = field(default_factory=date.today)

    @property
    def rank(self) -> Rank:
        return Rank.for_xp(self.total_xp)

    def is_daily_goal_current(self, today: Optional[date] = None) -> bool:
        return self.daily_goal_date == (today or date.today())

    def reset_daily_goal_if_needed(self, today: Optional[date] = None) -> None:
        today = today or date.today()
        if not self.is_daily_goal_current(today):
            self.daily_goal_completed = False
            self.daily_goal_date = today

    def can_purchase_streak_freeze(self) -> bool:
        return self.total_xp >= STREAK_FREEZE_COST and self.streak_freezes < MAX_STREAK_FREEZES

    def purchase_streak_freeze(self) -> bool:
        if not self.can_purchase_streak_freeze():
            return False
        self.total_xp -= STREAK_FREEZE_COST
        self.streak_freezes += 1
        return True

    def use_streak_freeze(self, day: date) -> bool:
        if self.streak_freezes <= 0:
            return False
        self.streak_freezes -= 1
        self.streak_freeze_dates_used.append(day)
        return True

    @classmethod
    def from_row(cls, row) -> "ScholarProfile":
        return cls(
            total_xp=row["total_xp"],
            streak_freezes=row["streak_freezes"],
            streak_freeze_dates_used=[
                date.fromisoformat(d) for d in _loads(row["streak_freeze_dates_used"], [])
            ],
            daily_goal_completed=bool(row["daily_goal_completed"]),
            daily_goal_date=date.fromisoformat(row["daily_goal_date"]),
        )


@dataclass
class DailyStreak:
    date: date
    questions_completed: int = 0


@dataclass
class Achievement:
    id: str
    unlocked_date: datetime = field(default_factory=datetime.now)
    xp_awarded: int = 0


@dataclass
class LessonPayload:
    subtopic: str
    overview: str
    key_facts: list[str] = field(default_factory=list)
    misconceptions: list[str] = field(default_factory=list)
    connections: list[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict) -> "LessonPayload":
        return cls(
            subtopic=_text(data.get("subtopic")),
            overview=_text(data.get("overview")),
            key_facts=_texts(data.get("keyFacts")),
            misconceptions=_texts(data.get("misconceptions")),
            connections=_texts(data.get("connections")),
        )


@dataclass
class GeneratedQuestion:
    question_text: str
    correct_answer: str
    subtopic: str
    acceptable_answers: list[str] = field(default_factory=list)
    explanation: str = ""
    difficulty: int = 1
    choices: Optional[list[str]] = None

    @property
    def is_multiple_choice(self) -> bool:
        return bool(self.choices)

    @classmethod
    def from_dict(cls, data: dict) -> "GeneratedQuestion":
        choices = data.get("choices")
        return cls(
            question_text=_text(data.get("questionText")),
            correct_answer=_text(data.get("correctAnswer")),
            acceptable_answers=_texts(data.get("acceptableAnswers")),
            explanation=_text(data.get("explanation")),
            subtopic=_text(data.get("subtopic")),
            difficulty=_difficulty(data.get("difficulty", 1)),
            choices=_texts(choices) if choices is not None else None,
        )


@dataclass
class TopicStructure:
    name: str
    subtopics: list[str]
    category: str = "Other"
    related_topics: list[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict) -> "TopicStructure":
        return cls(
            name=_text(data.get("topicName")),
            subtopics=_texts(data.get("subtopics")),
            category=normalize_category(data.get("category")),
            related_topics=_texts(data.get("relatedTopics")),
        )
