"""Answered-question history and the generated-question cache."""
import json
from datetime import datetime
from typing import Optional

from knowledge_trainer.db import get_connection
from knowledge_trainer.models import CachedQuestion, GeneratedQuestion, QuestionRecord


def check_multiple_choice(user_answer: str, correct_answer: str) -> bool:
    return user_answer.lower().strip() == correct_answer.lower().strip()


def record_question(db_path: str, record: QuestionRecord) -> None:
    """Append one entry to the answered-question log."""
    conn = get_connection(db_path)
    conn.execute(
        """INSERT INTO question_records
        (id, date, topic_id, subtopic, difficulty, question_text, user_response,
         correct_answer, was_correct, explanation)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
        (
            record.id, record.date.isoformat(), record.topic_id, record.subtopic,
            record.difficulty, record.question_text, record.user_response,
            record.correct_answer, int(record.was_correct), record.explanation,
        ),
    )
    conn.commit()
    conn.close()


def get_question_records(
    db_path: str,
    topic_id: Optional[str] = None,
    subtopic: Optional[str] = None,
) -> list[QuestionRecord]:
    query = "SELECT * FROM question_records"
    clauses, params = [], []
    if topic_id is not None:
        clauses.append("topic_id = ?")
        params.append(topic_id)
    if subtopic is not None:
        clauses.append("subtopic = ?")
        params.append(subtopic)
    if clauses:
        query += " WHERE " + " AND ".join(clauses)
    query += " ORDER BY date"
    conn = get_connection(db_path)
    rows = conn.execute(query, params).fetchall()
    conn.close()
    return [QuestionRecord.from_row(r) for r in rows]


def count_question_records(db_path: str) -> int:
    conn = get_connection(db_path)
    count = conn.execute("SELECT COUNT(*) FROM question_records").fetchone()[0]
    conn.close()
    return count


def get_asked_question_texts(db_path: str, topic_id: str) -> list[str]:
    conn = get_connection(db_path)
    rows = conn.execute(
        "SELECT DISTINCT question_text FROM question_records WHERE topic_id = ?", (topic_id,)
    ).fetchall()
    conn.close()
    return [r["question_text"] for r in rows]


def cache_questions(db_path: str, topic_id: str, questions: list[GeneratedQuestion]) -> int:
    """Persist generated questions for reuse. Returns how many were new."""
    conn = get_connection(db_path)
    added = 0
    for q in questions:
        cached = CachedQuestion.from_question(q, topic_id)
        cur = conn.execute(
            """INSERT OR IGNORE INTO cached_questions
            (id, topic_id, subtopic, question_text, correct_answer, acceptable_answers,
             explanation, difficulty, choices, date_created)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            (
                cached.id, topic_id, cached.subtopic, cached.question_text,
                cached.correct_answer, json.dumps(cached.acceptable_answers),
                cached.explanation, cached.difficulty,
                json.dumps(cached.choices) if cached.choices is not None else None,
                cached.date_created.isoformat(),
            ),
        )
        added += cur.rowcount
    conn.commit()
    conn.close()
    return added


def get_cached_questions(
    db_path: str,
    topic_id: str,
    subtopic: Optional[str] = None,
    unanswered_only: bool = True,
) -> list[CachedQuestion]:
    """Cached questions for a topic, oldest first.

    With unanswered_only, questions already present in the answer log for
    the topic are left out.
    """
    query = "SELECT c.* FROM cached_questions c WHERE c.topic_id = ?"
    params = [topic_id]
    if subtopic is not None:
        query += " AND c.subtopic = ?"
        params.append(subtopic)
    if unanswered_only:
        query += """ AND NOT EXISTS (
            SELECT 1 FROM question_records r
            WHERE r.topic_id = c.topic_id AND r.question_text = c.question_text)"""
    query += " ORDER BY c.date_created"
    conn = get_connection(db_path)
    rows = conn.execute(query, params).fetchall()
    conn.close()
    return [CachedQuestion.from_row(r) for r in rows]
