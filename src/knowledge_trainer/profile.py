"""Scholar profile persistence: XP, streak freezes, daily goal."""
import json
from datetime import date
from typing import Optional

from knowledge_trainer.db import get_connection
from knowledge_trainer.models import ScholarProfile


def get_profile(db_path: str, today: Optional[date] = None) -> ScholarProfile:
    """Load the single profile row, creating it on first use."""
    conn = get_connection(db_path)
    row = conn.execute("SELECT * FROM scholar_profile WHERE id = 1").fetchone()
    if row is None:
        conn.execute(
            "INSERT INTO scholar_profile (id, daily_goal_date) VALUES (1, ?)",
            ((today or date.today()).isoformat(),),
        )
        conn.commit()
        row = conn.execute("SELECT * FROM scholar_profile WHERE id = 1").fetchone()
    conn.close()
    return ScholarProfile.from_row(row)


def save_profile(db_path: str, profile: ScholarProfile) -> None:
    conn = get_connection(db_path)
    conn.execute(
        """UPDATE scholar_profile
        SET total_xp=?, streak_freezes=?, streak_freeze_dates_used=?,
            daily_goal_completed=?, daily_goal_date=?
        WHERE id = 1""",
        (
            profile.total_xp,
            profile.streak_freezes,
            json.dumps([d.isoformat() for d in profile.streak_freeze_dates_used]),
            int(profile.daily_goal_completed),
            profile.daily_goal_date.isoformat(),
        ),
    )
    conn.commit()
    conn.close()


def purchase_streak_freeze(db_path: str) -> bool:
    profile = get_profile(db_path)
    if not profile.purchase_streak_freeze():
        return False
    save_profile(db_path, profile)
    return True


def use_streak_freeze(db_path: str, day: date) -> bool:
    profile = get_profile(db_path)
    if day in profile.streak_freeze_dates_used or not profile.use_streak_freeze(day):
        return False
    save_profile(db_path, profile)
    return True


def daily_goal_status(db_path: str, today: Optional[date] = None) -> bool:
    """Whether today's goal (one subtopic mastered) is done."""
    today = today or date.today()
    profile = get_profile(db_path, today)
    return profile.daily_goal_completed and profile.is_daily_goal_current(today)
