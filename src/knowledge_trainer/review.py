"""Persisted review queue for missed questions."""
import json
from datetime import datetime, timedelta
from typing import Optional

from knowledge_trainer.db import get_connection
from knowledge_trainer.models import GeneratedQuestion, ReviewItem
from knowledge_trainer.sm2 import process_correct_review, process_incorrect_review


def create_review_item(
    db_path: str,
    question: GeneratedQuestion,
    topic_id: str,
    now: Optional[datetime] = None,
) -> ReviewItem:
    """Turn a missed question into a review card due tomorrow."""
    now = now or datetime.now()
    item = ReviewItem(
        question_text=question.question_text,
        correct_answer=question.correct_answer,
        acceptable_answers=list(question.acceptable_answers),
        explanation=question.explanation,
        choices=question.choices,
        topic_id=topic_id,
        subtopic=question.subtopic,
        date_missed=now,
        next_review_date=now + timedelta(days=1),
    )
    conn = get_connection(db_path)
    conn.execute(
        """INSERT INTO review_items
        (id, question_text, correct_answer, acceptable_answers, explanation, choices,
         topic_id, subtopic, date_missed, next_review_date, interval_days, ease_factor, review_count)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
        (
            item.id, item.question_text, item.correct_answer,
            json.dumps(item.acceptable_answers), item.explanation,
            json.dumps(item.choices) if item.choices is not None else None,
            item.topic_id, item.subtopic, item.date_missed.isoformat(),
            item.next_review_date.isoformat(), item.interval_days,
            item.ease_factor, item.review_count,
        ),
    )
    conn.commit()
    conn.close()
    return item


def save_review_item(db_path: str, item: ReviewItem) -> None:
    conn = get_connection(db_path)
    conn.execute(
        """UPDATE review_items SET next_review_date=?, interval_days=?, ease_factor=?, review_count=?
        WHERE id=?""",
        (item.next_review_date.isoformat(), item.interval_days, item.ease_factor, item.review_count, item.id),
    )
    conn.commit()
    conn.close()


def record_review_result(
    db_path: str,
    item: ReviewItem,
    correct: bool,
    now: Optional[datetime] = None,
) -> ReviewItem:
    if correct:
        process_correct_review(item, now)
    else:
        process_incorrect_review(item, now)
    save_review_item(db_path, item)
    return item


def get_review_items(db_path: str, topic_id: Optional[str] = None) -> list[ReviewItem]:
    conn = get_connection(db_path)
    if topic_id is None:
        rows = conn.execute("SELECT * FROM review_items ORDER BY next_review_date").fetchall()
    else:
        rows = conn.execute(
            "SELECT * FROM review_items WHERE topic_id = ? ORDER BY next_review_date",
            (topic_id,),
        ).fetchall()
    conn.close()
    return [ReviewItem.from_row(r) for r in rows]


def get_due_review_items(
    db_path: str,
    topic_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> list[ReviewItem]:
    now = (now or datetime.now()).isoformat()
    conn = get_connection(db_path)
    if topic_id is None:
        rows = conn.execute(
            "SELECT * FROM review_items WHERE next_review_date <= ? ORDER BY next_review_date",
            (now,),
        ).fetchall()
    else:
        rows = conn.execute(
            """SELECT * FROM review_items
            WHERE topic_id = ? AND next_review_date <= ?
            ORDER BY next_review_date""",
            (topic_id, now),
        ).fetchall()
    conn.close()
    return [ReviewItem.from_row(r) for r in rows]


def count_due_reviews(db_path: str, now: Optional[datetime] = None) -> int:
    conn = get_connection(db_path)
    count = conn.execute(
        "SELECT COUNT(*) FROM review_items WHERE next_review_date <= ?",
        ((now or datetime.now()).isoformat(),),
    ).fetchone()[0]
    conn.close()
    return count
