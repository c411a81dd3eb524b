"""SM-2 derived spaced repetition scheduling for missed questions."""
import math
from datetime import datetime, timedelta
from typing import Optional

from knowledge_trainer.models import ReviewItem

MIN_EASE = 1.3
MAX_EASE = 2.5


def sm2_update(
    correct: bool,
    review_count: int,
    ease_factor: float,
    interval_days: float,
) -> dict:
    """Calculate next review parameters.

    Args:
        correct: Whether the review was answered correctly
        review_count: Consecutive correct reviews so far
        ease_factor: Current ease factor, kept within [1.3, 2.5]
        interval_days: Current interval in days (fractional)

    Returns:
        Dict with updated interval_days, review_count, ease_factor and
        days_until_next (the rounded interval used for the due date).
    """
    if correct:
        new_count = review_count + 1
        if new_count == 1:
            new_interval = 1.0
        elif new_count == 2:
            new_interval = 3.0
        else:
            new_interval = interval_days * ease_factor
        new_ef = min(MAX_EASE, ease_factor + 0.1)
        # Halves round up, so 4.5 days schedules 5 out
        days = int(math.floor(new_interval + 0.5))
    else:
        # Incorrect: reset
        new_count = 0
        new_interval = 1.0
        new_ef = max(MIN_EASE, ease_factor - 0.2)
        days = 1

    return {
        "interval_days": new_interval,
        "review_count": new_count,
        "ease_factor": round(new_ef, 2),
        "days_until_next": days,
    }


def _apply(item: ReviewItem, correct: bool, now: Optional[datetime]) -> None:
    updated = sm2_update(correct, item.review_count, item.ease_factor, item.interval_days)
    item.interval_days = updated["interval_days"]
    item.review_count = updated["review_count"]
    item.ease_factor = updated["ease_factor"]
    item.next_review_date = (now or datetime.now()) + timedelta(days=updated["days_until_next"])


def process_correct_review(item: ReviewItem, now: Optional[datetime] = None) -> None:
    _apply(item, True, now)


def process_incorrect_review(item: ReviewItem, now: Optional[datetime] = None) -> None:
    _apply(item, False, now)


def is_due(item: ReviewItem, now: Optional[datetime] = None) -> bool:
    return item.next_review_date <= (now or datetime.now())


def due_items(items: list[ReviewItem], now: Optional[datetime] = None) -> list[ReviewItem]:
    now = now or datetime.now()
    return [item for item in items if item.next_review_date <= now]
