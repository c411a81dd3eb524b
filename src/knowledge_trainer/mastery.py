"""Subtopic mastery detection."""
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from loguru import logger

from knowledge_trainer.gamification import GamificationEngine
from knowledge_trainer.topics import (
    get_progress_for_subtopic, get_subtopic_progress, get_topic, is_topic_mastered,
    next_subtopic, save_progress,
)


@dataclass(frozen=True)
class MasteryEvent:
    topic_id: str
    subtopic: str
    next_subtopic: Optional[str]
    topic_mastered: bool


class MasteryTracker:
    """Updates per-subtopic counters and fires mastery exactly once per subtopic."""

    def __init__(self, db_path: str, gamification: Optional[GamificationEngine] = None):
        self.db_path = db_path
        self.gamification = gamification

    def record_answer(
        self,
        topic_id: str,
        subtopic: str,
        correct: bool,
        now: Optional[datetime] = None,
    ) -> Optional[MasteryEvent]:
        progress = get_progress_for_subtopic(self.db_path, topic_id, subtopic)
        if progress is None:
            logger.debug(f"No progress row for subtopic {subtopic!r}, skipping")
            return None

        progress.questions_answered += 1
        if correct:
            progress.questions_correct += 1

        crossed = not progress.is_mastered and progress.has_mastery_threshold
        if crossed:
            progress.is_mastered = True
            progress.mastered_date = now or datetime.now()
        save_progress(self.db_path, progress)

        if not crossed:
            return None

        logger.info(f"Subtopic mastered: {subtopic}")
        if self.gamification is not None:
            self.gamification.on_subtopic_mastered(subtopic, topic_id)

        topic = get_topic(self.db_path, topic_id)
        following = next_subtopic(topic.subtopics, subtopic) if topic else None
        return MasteryEvent(
            topic_id=topic_id,
            subtopic=subtopic,
            next_subtopic=following,
            topic_mastered=self.is_topic_mastered(topic_id),
        )

    def is_topic_mastered(self, topic_id: str) -> bool:
        topic = get_topic(self.db_path, topic_id)
        if topic is None:
            return False
        return is_topic_mastered(topic, get_subtopic_progress(self.db_path, topic_id))
