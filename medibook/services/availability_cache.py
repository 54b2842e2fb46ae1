"""Read-through cache for per-doctor, per-date availability views.

Views are keyed by doctor, date and a generation counter. Every write path
that can change what is bookable on a date (slot create/update/delete,
booking, cancellation, reschedule) calls :func:`invalidate`, which bumps
the generation. A reader captures the generation before it queries and
stores its view under that generation, so a view computed while an
invalidation was in flight lands under a key nobody reads again. Redis
outages degrade to cache misses.
"""

from __future__ import annotations

import logging
from datetime import date
from typing import Iterable, Optional

import redis

from medibook.services.cache import cache_get, cache_incr, cache_set

LOGGER = logging.getLogger(__name__)
AVAILABILITY_PREFIX = "medibook:availability:"
GENERATION_PREFIX = "medibook:availability-generation:"

# Must outlive any view TTL; an expired counter restarts at "0".
GENERATION_TTL_SECONDS = 7 * 24 * 60 * 60


def _generation_key(doctor_id: int, day: date) -> str:
    return f"{GENERATION_PREFIX}{doctor_id}:{day.isoformat()}"


def _availability_key(doctor_id: int, day: date, generation: str) -> str:
    return f"{AVAILABILITY_PREFIX}{doctor_id}:{day.isoformat()}:{generation}"


def current_generation(doctor_id: int, day: date) -> Optional[str]:
    """Return the generation to read and write views under.

    None means Redis is unreachable and caching is skipped for this read.
    """

    try:
        generation = cache_get(_generation_key(doctor_id, day))
    except redis.RedisError as exc:
        LOGGER.warning("Availability generation read failed: doctor=%s date=%s error=%s", doctor_id, day, exc)
        return None
    return str(generation) if generation is not None else "0"


def load_view(doctor_id: int, day: date, generation: Optional[str]) -> Optional[str]:
    """Return the cached JSON view, or None on a miss."""

    if generation is None:
        return None
    try:
        return cache_get(_availability_key(doctor_id, day, generation))
    except redis.RedisError as exc:
        LOGGER.warning("Availability cache read failed: doctor=%s date=%s error=%s", doctor_id, day, exc)
        return None


def store_view(
    doctor_id: int,
    day: date,
    generation: Optional[str],
    payload: str,
    ttl_seconds: int,
) -> None:
    """Cache a serialized view for ``ttl_seconds`` under ``generation``."""

    if generation is None or ttl_seconds <= 0:
        return
    try:
        cache_set(_availability_key(doctor_id, day, generation), payload, ex=ttl_seconds)
    except redis.RedisError as exc:
        LOGGER.warning("Availability cache write failed: doctor=%s date=%s error=%s", doctor_id, day, exc)


def invalidate(doctor_id: int, days: Iterable[date]) -> None:
    """Retire cached views for the given doctor and dates."""

    for day in set(days):
        try:
            cache_incr(_generation_key(doctor_id, day), ex=GENERATION_TTL_SECONDS)
        except redis.RedisError as exc:
            LOGGER.warning(
                "Availability cache invalidation failed: doctor=%s date=%s error=%s",
                doctor_id,
                day,
                exc,
            )
