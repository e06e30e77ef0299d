"""
Query Builder - turns an age threshold into a Gmail search filter
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional


logger = logging.getLogger(__name__)


def _subtract_years(moment: datetime, years: int) -> datetime:
    """Same calendar date `years` earlier; Feb 29 falls back to Feb 28"""
    try:
        return moment.replace(year=moment.year - years)
    except ValueError:
        return moment.replace(year=moment.year - years, day=28)


def compute_cutoff(
    years: Optional[int] = None,
    days: Optional[int] = None,
    now: Optional[datetime] = None
) -> datetime:
    """Return `now` minus the given number of years or days.

    Exactly one of `years` and `days` must be set. Zero is accepted and yields
    a cutoff equal to `now`.
    """
    if (years is None) == (days is None):
        raise ValueError("Specify exactly one of years or days")

    amount = years if years is not None else days
    if amount < 0:
        raise ValueError(f"Age threshold must not be negative, got {amount}")

    now = now or datetime.now(timezone.utc)
    if years is not None:
        return _subtract_years(now, years)
    return now - timedelta(days=days)


def build_query(
    cutoff: datetime,
    in_trash: bool = False,
    protect_starred: bool = False,
    protect_important: bool = False
) -> str:
    """Render a Gmail search matching threads older than `cutoff`.

    Gmail accepts epoch seconds for `before:`, which avoids the day-granular,
    timezone-dependent YYYY/MM/DD form.

    Gmail evaluates `before:` per message and returns a thread when any of
    its messages matches, so a thread with an old message and a recent reply
    is still selected and acted on as a whole.
    """
    terms = []
    if in_trash:
        terms.append("in:trash")
    terms.append(f"before:{int(cutoff.timestamp())}")
    if protect_starred:
        terms.append("-is:starred")
    if protect_important:
        terms.append("-is:important")

    query = " ".join(terms)
    logger.debug(f"Built search query {query!r} for cutoff {cutoff.isoformat()}")
    return query
