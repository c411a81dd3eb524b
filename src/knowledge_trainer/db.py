"""Database initialization and connection management."""
import sqlite3
from pathlib import Path

DEFAULT_DB_PATH = str(Path.home() / ".knowledge_trainer" / "trainer.db")

SCHEMA = """
CREATE TABLE IF NOT EXISTS topics (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    subtopics TEXT NOT NULL DEFAULT '[]',
    category TEXT DEFAULT 'Other',
    related_topics TEXT DEFAULT '[]',
    subtopics_ordered INTEGER DEFAULT 1,
    date_created TEXT NOT NULL,
    last_practiced TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS subtopic_progress (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    topic_id TEXT NOT NULL REFERENCES topics(id) ON DELETE CASCADE,
    subtopic_name TEXT NOT NULL,
    sort_order INTEGER NOT NULL,
    questions_answered INTEGER DEFAULT 0,
    questions_correct INTEGER DEFAULT 0,
    is_mastered INTEGER DEFAULT 0,
    mastered_date TEXT,
    lesson_overview TEXT DEFAULT '',
    lesson_key_facts TEXT DEFAULT '[]',
    lesson_misconceptions TEXT DEFAULT '[]',
    lesson_connections TEXT DEFAULT '[]',
    lesson_viewed INTEGER DEFAULT 0,
    UNIQUE(topic_id, subtopic_name)
);

CREATE TABLE IF NOT EXISTS question_records (
    id TEXT PRIMARY KEY,
    date TEXT NOT NULL,
    topic_id TEXT NOT NULL REFERENCES topics(id) ON DELETE CASCADE,
    subtopic TEXT NOT NULL,
    difficulty INTEGER NOT NULL,
    question_text TEXT NOT NULL,
    user_response TEXT NOT NULL,
    correct_answer TEXT NOT NULL,
    was_correct INTEGER NOT NULL,
    explanation TEXT DEFAULT ''
);

CREATE TABLE IF NOT EXISTS review_items (
    id TEXT PRIMARY KEY,
    question_text TEXT NOT NULL,
    correct_answer TEXT NOT NULL,
    acceptable_answers TEXT DEFAULT '[]',
    explanation TEXT DEFAULT '',
    choices TEXT,
    topic_id TEXT NOT NULL REFERENCES topics(id) ON DELETE CASCADE,
    subtopic TEXT NOT NULL,
    date_missed TEXT NOT NULL,
    next_review_date TEXT NOT NULL,
    interval_days REAL DEFAULT 1.0,
    ease_factor REAL DEFAULT 2.5,
    review_count INTEGER DEFAULT 0
);

CREATE TABLE IF NOT EXISTS cached_questions (
    id TEXT PRIMARY KEY,
    topic_id TEXT NOT NULL REFERENCES topics(id) ON DELETE CASCADE,
    subtopic TEXT NOT NULL,
    question_text TEXT NOT NULL,
    correct_answer TEXT NOT NULL,
    acceptable_answers TEXT DEFAULT '[]',
    explanation TEXT DEFAULT '',
    difficulty INTEGER DEFAULT 1,
    choices TEXT,
    date_created TEXT NOT NULL,
    UNIQUE(topic_id, subtopic, question_text)
);

CREATE TABLE IF NOT EXISTS scholar_profile (
    id INTEGER PRIMARY KEY CHECK (id = 1),
    total_xp INTEGER DEFAULT 0,
    streak_freezes INTEGER DEFAULT 0,
    streak_freeze_dates_used TEXT DEFAULT '[]',
    daily_goal_completed INTEGER DEFAULT 0,
    daily_goal_date TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS daily_streaks (
    date TEXT PRIMARY KEY,
    questions_completed INTEGER DEFAULT 0
);

CREATE TABLE IF NOT EXISTS achievements (
    id TEXT PRIMARY KEY,
    unlocked_date TEXT NOT NULL,
    xp_awarded INTEGER DEFAULT 0
);
"""


def get_connection(db_path: str = DEFAULT_DB_PATH) -> sqlite3.Connection:
    """Return a SQLite connection with row factory and foreign keys enabled."""
    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    return conn


def init_db(db_path: str = DEFAULT_DB_PATH) -> None:
    """Initialize the database, creating all tables if they don't exist."""
    Path(db_path).parent.mkdir(parents=True, exist_ok=True)
    conn = get_connection(db_path)
    conn.executescript(SCHEMA)
    conn.commit()
    conn.close()
