"""
Incremental rating aggregation.

Each user carries ``(rating, rating_count)``; individual ratings are not
kept.  A new rating *x* is folded in as an exact running mean::

    count'  = count + 1
    rating' = round((rating * count + x) / count', 2)

The fold itself is pure; ``services.rating`` runs it inside a store
transaction so two concurrent ratings of the same user cannot lose an
update.
"""

from __future__ import annotations

from typing import Optional

from .errors import InvalidRating

DEFAULT_RATING = 5.0
MIN_RATING = 1
MAX_RATING = 5


def validate_rating(value: object) -> int:
    """Return *value* if it is a whole number 1..5, else raise ``InvalidRating``."""
    # bool is an int subclass; True must not count as a 1-star rating
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidRating(f"Rating must be an integer, got {value!r}")
    if not MIN_RATING <= value <= MAX_RATING:
        raise InvalidRating(
            f"Rating must be between {MIN_RATING} and {MAX_RATING}, got {value}"
        )
    return value


def fold_rating(
    rating: Optional[float], count: Optional[int], value: int
) -> tuple[float, int]:
    """Fold *value* into ``(rating, count)``.  Missing state means a new user."""
    value = validate_rating(value)
    current = DEFAULT_RATING if rating is None else float(rating)
    current_count = count or 0

    next_count = current_count + 1
    next_rating = (current * current_count + value) / next_count
    return round(next_rating, 2), next_count
