"""XP, ranks and achievements awarded in response to progress events."""
import sqlite3
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional

from loguru import logger

from knowledge_trainer.achievements import (
    ACHIEVEMENTS, PROGRESS_IDS, RECORD_IDS, REVIEW_IDS, SESSION_IDS, STREAK_IDS,
    AchievementDefinition, get_unlocked_ids, insert_achievement,
)
from knowledge_trainer.models import Achievement, Rank, ScholarProfile
from knowledge_trainer.profile import get_profile, save_profile
from knowledge_trainer.quiz import get_question_records
from knowledge_trainer.review import count_due_reviews
from knowledge_trainer.stats import current_streak_with_freezes, get_daily_streaks, overall_accuracy
from knowledge_trainer.topics import (
    count_fully_mastered_topics, get_subtopic_progress, get_topic, is_topic_mastered,
)

SUBTOPIC_MASTERY_XP = 50
FIRST_SUBTOPIC_BONUS_XP = 100
TOPIC_MASTERY_XP = 200
FIRST_TOPIC_BONUS_XP = 100
PERFECT_SESSION_XP = 25
REVIEWS_CLEARED_XP = 30
STREAK_MILESTONE_XP = {7: 75, 14: 150, 30: 300}
MAX_DIFFICULTY = 5


@dataclass(frozen=True)
class XPEvent:
    amount: int
    reason: str


class GamificationEngine:
    """Converts progress events into XP awards and achievement unlocks.

    Everything awarded since the last clear_pending_events() call is kept on
    the instance so a front end can show it: pending_xp_events,
    unlocked_achievements and rank_ups.
    """

    def __init__(
        self,
        db_path: str,
        catalog: Optional[dict[str, AchievementDefinition]] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.db_path = db_path
        self.catalog = catalog if catalog is not None else ACHIEVEMENTS
        self.clock = clock or datetime.now
        self.pending_xp_events: list[XPEvent] = []
        self.unlocked_achievements: list[AchievementDefinition] = []
        self.rank_ups: list[Rank] = []

    @property
    def new_rank(self) -> Optional[Rank]:
        return self.rank_ups[-1] if self.rank_ups else None

    def get_profile(self) -> ScholarProfile:
        return get_profile(self.db_path, self.clock().date())

    def _save(self, profile: ScholarProfile) -> None:
        try:
            save_profile(self.db_path, profile)
        except sqlite3.Error as e:
            logger.warning(f"Could not save profile: {e}")

    # --- XP ---

    def award_xp(self, amount: int, reason: str, profile: ScholarProfile) -> Optional[Rank]:
        """Add XP and log it. Returns the new rank if this award crossed into one."""
        old_rank = profile.rank
        profile.total_xp += amount
        self.pending_xp_events.append(XPEvent(amount, reason))
        logger.debug(f"+{amount} XP: {reason}")
        new_rank = profile.rank
        if new_rank > old_rank:
            self.rank_ups.append(new_rank)
            logger.info(f"Rank up: {new_rank.title}")
            return new_rank
        return None

    # --- Event hooks ---

    def on_subtopic_mastered(self, subtopic_name: str, topic_id: str) -> None:
        profile = self.get_profile()
        self.award_xp(SUBTOPIC_MASTERY_XP, f"Mastered: {subtopic_name}", profile)

        progress = get_subtopic_progress(self.db_path)
        if sum(1 for p in progress if p.is_mastered) == 1:
            self.award_xp(FIRST_SUBTOPIC_BONUS_XP, "First subtopic ever mastered!", profile)

        self._check_topic_mastery(topic_id, profile, progress)

        profile.reset_daily_goal_if_needed(self.clock().date())
        profile.daily_goal_completed = True

        self.check_achievements(profile)
        self._save(profile)

    def _check_topic_mastery(self, topic_id: str, profile: ScholarProfile, progress) -> None:
        topic = get_topic(self.db_path, topic_id)
        if topic is None or not is_topic_mastered(topic, progress):
            return
        self.award_xp(TOPIC_MASTERY_XP, f"Mastered topic: {topic.name}", profile)
        if count_fully_mastered_topics(self.db_path) == 1:
            self.award_xp(FIRST_TOPIC_BONUS_XP, "First topic ever mastered!", profile)

    def on_session_end(self, questions_answered: int, correct_answers: int, max_difficulty: int) -> None:
        profile = self.get_profile()
        if questions_answered >= 5 and correct_answers == questions_answered:
            self.award_xp(PERFECT_SESSION_XP, "Perfect session!", profile)
        self.check_achievements(
            profile,
            session_questions=questions_answered,
            session_correct=correct_answers,
            session_max_difficulty=max_difficulty,
        )
        self._save(profile)

    def on_all_reviews_cleared(self) -> None:
        profile = self.get_profile()
        self.award_xp(REVIEWS_CLEARED_XP, "Cleared all due reviews", profile)
        self.check_achievements(profile, include_review_check=True)
        self._save(profile)

    def on_streak_milestone(self, days: int) -> None:
        profile = self.get_profile()
        if days in STREAK_MILESTONE_XP:
            self.award_xp(STREAK_MILESTONE_XP[days], f"{days}-day streak!", profile)
        self.check_achievements(profile)
        self._save(profile)

    def purchase_streak_freeze(self) -> bool:
        profile = self.get_profile()
        if not profile.purchase_streak_freeze():
            return False
        self._save(profile)
        return True

    # --- Achievements ---

    def current_streak(self, profile: Optional[ScholarProfile] = None) -> int:
        profile = profile or self.get_profile()
        return current_streak_with_freezes(
            get_daily_streaks(self.db_path),
            profile.streak_freeze_dates_used,
            self.clock().date(),
        )

    def protect_streak(self) -> bool:
        """Spend a held freeze on yesterday if it was missed and the streak was alive before it."""
        yesterday = self.clock().date() - timedelta(days=1)
        profile = self.get_profile()
        covered = {s.date for s in get_daily_streaks(self.db_path) if s.questions_completed > 0}
        covered.update(profile.streak_freeze_dates_used)
        if yesterday in covered or yesterday - timedelta(days=1) not in covered:
            return False
        if not profile.use_streak_freeze(yesterday):
            return False
        logger.info(f"Streak freeze used for {yesterday}")
        self._save(profile)
        return True

    def subtopics_mastered_today(self) -> int:
        today = self.clock().date()
        return sum(
            1 for p in get_subtopic_progress(self.db_path)
            if p.is_mastered and p.mastered_date is not None and p.mastered_date.date() == today
        )

    def check_achievements(
        self,
        profile: ScholarProfile,
        session_questions: int = 0,
        session_correct: int = 0,
        session_max_difficulty: int = 0,
        include_review_check: bool = False,
    ) -> list[AchievementDefinition]:
        """Unlock every achievement whose condition now holds.

        Conditions are evaluated in groups; a group is skipped entirely once
        all of its ids are unlocked, so its queries never run.
        """
        unlocked = get_unlocked_ids(self.db_path)
        if len(unlocked) >= len(self.catalog):
            return []
        newly: list[AchievementDefinition] = []

        def apply(checks):
            for achievement_id, condition in checks:
                if achievement_id not in unlocked and condition():
                    definition = self.unlock_achievement(achievement_id, profile)
                    if definition is not None:
                        unlocked.add(achievement_id)
                        newly.append(definition)

        if not SESSION_IDS <= unlocked:
            apply([
                ("perfect_session", lambda: session_questions >= 5 and session_correct == session_questions),
                ("difficulty_max", lambda: session_max_difficulty >= MAX_DIFFICULTY and session_correct > 0),
            ])

        if not PROGRESS_IDS <= unlocked:
            progress = get_subtopic_progress(self.db_path)
            total_mastered = sum(1 for p in progress if p.is_mastered)
            full_topics = count_fully_mastered_topics(self.db_path)
            apply([
                ("first_subtopic", lambda: total_mastered >= 1),
                ("first_topic", lambda: full_topics >= 1),
                ("five_topics", lambda: full_topics >= 5),
                ("ten_topics", lambda: full_topics >= 10),
                ("three_subtopics_one_day", lambda: self.subtopics_mastered_today() >= 3),
            ])

        if not RECORD_IDS <= unlocked:
            records = get_question_records(self.db_path)
            total = len(records)
            accuracy = overall_accuracy(records)
            apply([
                ("hundred_questions", lambda: total >= 100),
                ("five_hundred_questions", lambda: total >= 500),
                ("ninety_accuracy", lambda: total >= 100 and accuracy >= 90),
            ])

        if not STREAK_IDS <= unlocked:
            streak = self.current_streak(profile)
            apply([
                ("streak_7", lambda: streak >= 7),
                ("streak_14", lambda: streak >= 14),
                ("streak_30", lambda: streak >= 30),
            ])

        if include_review_check and not REVIEW_IDS <= unlocked:
            apply([
                ("review_clear", lambda: count_due_reviews(self.db_path, self.clock()) == 0),
            ])

        return newly

    def unlock_achievement(self, achievement_id: str, profile: ScholarProfile) -> Optional[AchievementDefinition]:
        definition = self.catalog.get(achievement_id)
        if definition is None:
            logger.debug(f"Unknown achievement id {achievement_id!r}, skipping")
            return None
        achievement = Achievement(id=achievement_id, unlocked_date=self.clock(), xp_awarded=definition.xp_reward)
        try:
            if not insert_achievement(self.db_path, achievement):
                return None
        except sqlite3.Error as e:
            logger.warning(f"Could not record achievement {achievement_id}: {e}")
            return None
        self.award_xp(definition.xp_reward, f"Achievement: {definition.name}", profile)
        self.unlocked_achievements.append(definition)
        return definition

    def achievement_progress(self) -> dict[str, tuple[int, int]]:
        """(current, target) for every countable achievement."""
        progress = get_subtopic_progress(self.db_path)
        total_mastered = sum(1 for p in progress if p.is_mastered)
        full_topics = count_fully_mastered_topics(self.db_path)
        total_questions = len(get_question_records(self.db_path))
        streak = self.current_streak()
        return {
            "first_subtopic": (min(total_mastered, 1), 1),
            "first_topic": (min(full_topics, 1), 1),
            "five_topics": (min(full_topics, 5), 5),
            "ten_topics": (min(full_topics, 10), 10),
            "streak_7": (min(streak, 7), 7),
            "streak_14": (min(streak, 14), 14),
            "streak_30": (min(streak, 30), 30),
            "hundred_questions": (min(total_questions, 100), 100),
            "five_hundred_questions": (min(total_questions, 500), 500),
            "ninety_accuracy": (min(total_questions, 100), 100),
        }

    def closest_achievement(self) -> Optional[tuple[AchievementDefinition, int, int]]:
        """The locked achievement with the most progress, if any has started."""
        unlocked = get_unlocked_ids(self.db_path)
        candidates = [
            (self.catalog[aid], current, target)
            for aid, (current, target) in self.achievement_progress().items()
            if aid not in unlocked and aid in self.catalog and current > 0
        ]
        if not candidates:
            return None
        return max(candidates, key=lambda c: c[1] / c[2])

    def clear_pending_events(self) -> None:
        self.pending_xp_events.clear()
        self.unlocked_achievements.clear()
        self.rank_ups.clear()
