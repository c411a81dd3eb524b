"""
Quiz session orchestration.

A session serves due review items first, then generated questions, checks
each answer, and pushes the result through the progress store, mastery
tracker and gamification engine. Everything the front end should show is
emitted as a SessionEvent and collected with drain_events().
"""
import sqlite3
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Iterable, Optional

from loguru import logger

from knowledge_trainer.config import Settings, get_settings
from knowledge_trainer.gamification import STREAK_MILESTONE_XP, GamificationEngine
from knowledge_trainer.generator import ContentGenerator, GenerationError
from knowledge_trainer.mastery import MasteryEvent, MasteryTracker
from knowledge_trainer.matcher import MatchResult, evaluate
from knowledge_trainer.models import (
    GeneratedQuestion, LearningDepth, LessonPayload, QuestionFormat, QuestionRecord,
    ReviewItem, Topic,
)
from knowledge_trainer.question_queue import PrefetchWorker, QuestionQueue, filter_questions
from knowledge_trainer.quiz import (
    cache_questions, check_multiple_choice, get_asked_question_texts, get_cached_questions,
    record_question,
)
from knowledge_trainer.review import (
    count_due_reviews, create_review_item, get_review_items, record_review_result,
)
from knowledge_trainer.sm2 import due_items
from knowledge_trainer.stats import record_daily_activity
from knowledge_trainer.topics import (
    first_unmastered_subtopic, get_lesson, get_progress_for_subtopic, get_subtopic_progress,
    next_subtopic, save_lesson, touch_topic,
)

MIN_DIFFICULTY = 1
MAX_DIFFICULTY = 5
RAISE_AFTER_CORRECT = 3
LOWER_AFTER_WRONG = 2


class SessionState(Enum):
    LOADING_BATCH = "loading_batch"
    LESSON = "lesson"
    SERVING_QUESTION = "serving_question"
    ANSWER_SUBMITTED = "answer_submitted"
    ENDED = "ended"


class EventKind(Enum):
    QUESTION_SERVED = "question_served"
    ANSWER_RESULT = "answer_result"
    MASTERY = "mastery"
    XP = "xp"
    ACHIEVEMENT = "achievement"
    RANK_UP = "rank_up"
    LESSON_READY = "lesson_ready"
    ERROR = "error"
    SESSION_ENDED = "session_ended"


@dataclass
class SessionEvent:
    kind: EventKind
    payload: Any = None


@dataclass
class AnswerResult:
    question: GeneratedQuestion
    user_answer: str
    correct: bool
    match: Optional[MatchResult] = None
    was_review: bool = False
    mastery: Optional[MasteryEvent] = None
    difficulty: int = MIN_DIFFICULTY


@dataclass
class SubtopicSessionStats:
    answered: int = 0
    correct: int = 0


class SessionStateError(RuntimeError):
    pass


class SessionOrchestrator:
    """Drives one quiz session."""

    def __init__(
        self,
        db_path: str,
        generator: Optional[ContentGenerator],
        gamification: GamificationEngine,
        settings: Optional[Settings] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.db_path = db_path
        self.generator = generator
        self.gamification = gamification
        self.settings = settings or get_settings()
        self.clock = clock or datetime.now
        self.mastery = MasteryTracker(db_path, gamification)
        self.depth = LearningDepth(self.settings.learning_depth)

        self.state = SessionState.LOADING_BATCH
        self.topic: Optional[Topic] = None
        self.focus_subtopic: Optional[str] = None
        self.question_format = QuestionFormat.MIXED
        self.queue = QuestionQueue(on_accept=self._cache_accepted)
        self.review_queue: list[ReviewItem] = []
        self.current_question: Optional[GeneratedQuestion] = None
        self.current_review: Optional[ReviewItem] = None
        self.current_lesson: Optional[LessonPayload] = None
        self.pending_lesson: Optional[LessonPayload] = None
        self.pending_mastery: Optional[MasteryEvent] = None

        self.questions_answered = 0
        self.correct_answers = 0
        self.answer_streak = 0
        self.consecutive_correct = 0
        self.consecutive_wrong = 0
        self.current_difficulty = MIN_DIFFICULTY
        self.max_difficulty = MIN_DIFFICULTY
        self.subtopic_stats: dict[str, SubtopicSessionStats] = defaultdict(SubtopicSessionStats)
        self.mastered_this_session: list[str] = []
        self.wrong_answers: list[tuple[GeneratedQuestion, str]] = []

        self.events: list[SessionEvent] = []
        self._prefetch: Optional[PrefetchWorker] = None
        self._ended = False

    # --- Setup ---

    async def start(
        self,
        topic: Topic,
        initial_questions: Iterable[GeneratedQuestion] = (),
        initial_lesson: Optional[LessonPayload] = None,
        focus_subtopic: Optional[str] = None,
        question_format: QuestionFormat = QuestionFormat.MIXED,
    ) -> None:
        self.topic = topic
        self.question_format = question_format
        now = self.clock()

        progress = get_subtopic_progress(self.db_path, topic.id)
        if focus_subtopic:
            self.focus_subtopic = focus_subtopic
        elif topic.subtopics_ordered:
            self.focus_subtopic = first_unmastered_subtopic(progress, topic.id)

        self.review_queue = due_items(get_review_items(self.db_path, topic.id), now)

        cached = [c.to_question() for c in get_cached_questions(self.db_path, topic.id)]
        self.queue.push(filter_questions(
            list(initial_questions) + cached, self.focus_subtopic, self.question_format,
        ))

        self._prefetch = PrefetchWorker(
            self.queue,
            self._fetch_batch,
            self._remaining,
            threshold=self.settings.prefetch_threshold,
            pacing=self.settings.prefetch_pacing,
            max_failures=self.settings.prefetch_max_failures,
        )

        lesson = initial_lesson
        if lesson is None and self.focus_subtopic:
            lesson = get_lesson(self.db_path, topic.id, self.focus_subtopic)
        if lesson is not None and not self._lesson_viewed(lesson.subtopic):
            self.current_lesson = lesson
            self.state = SessionState.LESSON
            self._emit(EventKind.LESSON_READY, lesson)
            self._prefetch.start()
            return

        self._prefetch.start()
        await self.serve_next_question()

    async def start_review_only(self) -> None:
        """Session over every due review item, with no generated content."""
        self.topic = None
        self.review_queue = due_items(get_review_items(self.db_path), self.clock())
        await self.serve_next_question()

    def _lesson_viewed(self, subtopic: str) -> bool:
        progress = get_progress_for_subtopic(self.db_path, self.topic.id, subtopic)
        return progress is not None and progress.lesson_viewed

    # --- Lesson flow ---

    async def dismiss_lesson(self) -> Optional[GeneratedQuestion]:
        lesson = self.current_lesson
        if lesson is not None and self.topic is not None:
            self._persist("save lesson", save_lesson, self.db_path, self.topic.id, lesson, viewed=True)
        self.current_lesson = None
        return await self.serve_next_question()

    def dismiss_mastery_celebration(self) -> None:
        """Move the focus to the next subtopic on the learning path."""
        mastery, self.pending_mastery = self.pending_mastery, None
        if self.current_lesson is not None:
            self.focus_subtopic = self.current_lesson.subtopic
            self.state = SessionState.LESSON
            self._emit(EventKind.LESSON_READY, self.current_lesson)
        elif mastery is not None and mastery.next_subtopic:
            self.focus_subtopic = mastery.next_subtopic

    # --- Question flow ---

    async def serve_next_question(self) -> Optional[GeneratedQuestion]:
        """Serve the next review item or queued question, or end the session."""
        if self.state is SessionState.ENDED:
            return None
        self.current_question = None
        self.current_review = None

        if self.questions_answered >= self.settings.max_questions:
            await self.end_session()
            return None

        if self.review_queue:
            self.current_review = self.review_queue.pop(0)
            return self._serve(self.current_review.to_question())

        if not len(self.queue):
            if self.topic is None:
                await self.end_session()
                return None
            self.state = SessionState.LOADING_BATCH
            await self._refill()
            if not len(self.queue):
                await self.end_session()
                return None

        question = self.queue.pop()
        if self._prefetch is not None:
            self._prefetch.notify()
        return self._serve(question)

    def _serve(self, question: GeneratedQuestion) -> GeneratedQuestion:
        self.current_question = question
        self.state = SessionState.SERVING_QUESTION
        self._emit(EventKind.QUESTION_SERVED, question)
        return question

    def _remaining(self) -> int:
        return self.settings.max_questions - self.questions_answered

    async def _refill(self) -> None:
        try:
            added = await self.queue.refill(self._fetch_batch)
            if added is None and not len(self.queue):
                await self.queue.refill(self._fetch_batch)
        except GenerationError as e:
            logger.warning(f"Question batch failed: {e}")
            self._emit(EventKind.ERROR, str(e))
        except Exception as e:
            logger.exception(f"Question batch crashed: {e}")
            self._emit(EventKind.ERROR, str(e))

    async def _fetch_batch(self) -> list[GeneratedQuestion]:
        topic = self.topic
        focus = self.focus_subtopic
        following = next_subtopic(topic.subtopics, focus) if focus else None
        questions, lesson = await self.generator.generate_question_batch(
            topic.name,
            [focus] if focus else list(topic.subtopics),
            self.current_difficulty,
            self._previous_questions(),
            focus_subtopic=focus,
            next_subtopic=following,
            depth=self.depth,
        )
        if lesson is not None and following and lesson.subtopic == following:
            self.pending_lesson = lesson
            self._persist("store next lesson", save_lesson, self.db_path, topic.id, lesson)
        return filter_questions(questions, focus, self.question_format)

    def _previous_questions(self) -> list[str]:
        history = self._persist(
            "load asked questions", get_asked_question_texts, self.db_path, self.topic.id,
        ) or []
        seen = dict.fromkeys(history + self.queue.asked)
        return list(seen)

    def _cache_accepted(self, questions: list[GeneratedQuestion]) -> None:
        if self.topic is not None:
            self._persist("cache questions", cache_questions, self.db_path, self.topic.id, questions)

    # --- Answers ---

    async def submit_answer(self, answer: str) -> AnswerResult:
        if self.state is not SessionState.SERVING_QUESTION or self.current_question is None:
            raise SessionStateError("No question is waiting for an answer")
        self.state = SessionState.ANSWER_SUBMITTED
        question = self.current_question
        review = self.current_review
        answer = answer.strip()
        now = self.clock()

        match = None
        if question.is_multiple_choice:
            correct = check_multiple_choice(answer, question.correct_answer)
        else:
            match = evaluate(answer, question.acceptable_answers, question.correct_answer)
            if match is MatchResult.UNCERTAIN:
                correct = await self._judge(answer, question)
            else:
                correct = match is MatchResult.CORRECT

        self._update_session_stats(question, answer, correct)

        if review is not None:
            self._persist("update review item", record_review_result, self.db_path, review, correct, now)
        elif not correct and self.topic is not None:
            self._persist("create review item", create_review_item, self.db_path, question, self.topic.id, now)

        mastery = None
        if self.topic is not None:
            self._persist("record answer", record_question, self.db_path, QuestionRecord(
                topic_id=self.topic.id,
                subtopic=question.subtopic,
                difficulty=question.difficulty,
                question_text=question.question_text,
                user_response=answer,
                correct_answer=question.correct_answer,
                was_correct=correct,
                explanation=question.explanation,
                date=now,
            ))
            mastery = self._persist(
                "update subtopic progress", self.mastery.record_answer,
                self.topic.id, question.subtopic, correct, now,
            )
            self._persist("touch topic", touch_topic, self.db_path, self.topic.id, now)

        self._update_daily_streak(now)
        if review is not None and not self.review_queue:
            due = self._persist("count due reviews", count_due_reviews, self.db_path, now)
            if due == 0:
                self.gamification.on_all_reviews_cleared()

        if mastery is not None:
            self._on_mastery(mastery)

        result = AnswerResult(
            question=question,
            user_answer=answer,
            correct=correct,
            match=match,
            was_review=review is not None,
            mastery=mastery,
            difficulty=self.current_difficulty,
        )
        self._emit(EventKind.ANSWER_RESULT, result)
        self._collect_rewards()
        return result

    async def _judge(self, answer: str, question: GeneratedQuestion) -> bool:
        if self.generator is None:
            return False
        try:
            return await self.generator.evaluate_uncertain_response(
                answer, question.correct_answer, question.question_text,
            )
        except Exception as e:
            logger.warning(f"Answer judgment failed, marking incorrect: {e}")
            return False

    def _update_session_stats(self, question: GeneratedQuestion, answer: str, correct: bool) -> None:
        self.questions_answered += 1
        stats = self.subtopic_stats[question.subtopic]
        stats.answered += 1
        if correct:
            self.correct_answers += 1
            self.answer_streak += 1
            self.consecutive_correct += 1
            self.consecutive_wrong = 0
            stats.correct += 1
            if self.consecutive_correct >= RAISE_AFTER_CORRECT and self.current_difficulty < MAX_DIFFICULTY:
                self.current_difficulty += 1
                self.consecutive_correct = 0
        else:
            self.answer_streak = 0
            self.consecutive_correct = 0
            self.consecutive_wrong += 1
            self.wrong_answers.append((question, answer))
            if self.consecutive_wrong >= LOWER_AFTER_WRONG and self.current_difficulty > MIN_DIFFICULTY:
                self.current_difficulty -= 1
                self.consecutive_wrong = 0
        self.max_difficulty = max(self.max_difficulty, self.current_difficulty)

    def _update_daily_streak(self, now: datetime) -> None:
        count = self._persist("record daily activity", record_daily_activity, self.db_path, now.date())
        if count != 1:
            return
        streak = self.gamification.current_streak()
        if streak in STREAK_MILESTONE_XP:
            self.gamification.on_streak_milestone(streak)

    def _on_mastery(self, mastery: MasteryEvent) -> None:
        self.mastered_this_session.append(mastery.subtopic)
        self.pending_mastery = mastery
        pending = self.pending_lesson
        if pending is not None and pending.subtopic == mastery.next_subtopic:
            self.current_lesson = pending
            self.pending_lesson = None
        self._emit(EventKind.MASTERY, mastery)

    # --- End ---

    async def end_session(self) -> None:
        if self._ended:
            return
        self._ended = True
        self.state = SessionState.ENDED
        self.current_question = None
        try:
            if self._prefetch is not None:
                await self._prefetch.stop()
        finally:
            self.queue.clear()
            self.gamification.on_session_end(
                self.questions_answered, self.correct_answers, self.max_difficulty,
            )
            self._collect_rewards()
            self._emit(EventKind.SESSION_ENDED, self.summary())

    @property
    def ended(self) -> bool:
        return self._ended

    @property
    def accuracy(self) -> float:
        if self.questions_answered == 0:
            return 0.0
        return self.correct_answers / self.questions_answered * 100

    def summary(self) -> dict:
        return {
            "questions_answered": self.questions_answered,
            "correct_answers": self.correct_answers,
            "accuracy": self.accuracy,
            "max_difficulty": self.max_difficulty,
            "mastered": list(self.mastered_this_session),
            "wrong_answers": list(self.wrong_answers),
            "subtopics": {name: (s.answered, s.correct) for name, s in self.subtopic_stats.items()},
        }

    # --- Events ---

    def _emit(self, kind: EventKind, payload: Any = None) -> None:
        self.events.append(SessionEvent(kind, payload))

    def _collect_rewards(self) -> None:
        engine = self.gamification
        for xp in engine.pending_xp_events:
            self._emit(EventKind.XP, xp)
        for definition in engine.unlocked_achievements:
            self._emit(EventKind.ACHIEVEMENT, definition)
        for rank in engine.rank_ups:
            self._emit(EventKind.RANK_UP, rank)
        engine.clear_pending_events()

    def drain_events(self) -> list[SessionEvent]:
        events, self.events = self.events, []
        return events

    def _persist(self, description: str, func, *args, **kwargs):
        try:
            return func(*args, **kwargs)
        except sqlite3.Error as e:
            logger.warning(f"Could not {description}: {e}")
            return None
