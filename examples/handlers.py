"""Example job handlers.

Run a worker against them with:

    DURABLE_JOBS_HANDLERS_MODULE=examples.handlers python -m durable_jobs.worker_main
"""

import logging
from typing import Any

from durable_jobs import HandlerRegistry

logger = logging.getLogger(__name__)

registry = HandlerRegistry(
    [
        "booking.created",
        "booking.cancelled",
        "reward_friend",
    ]
)


@registry.handler("booking.created")
async def booking_created(payload: dict[str, Any], job_id, created_at):
    """Sync a new booking to the CRM."""
    logger.info(f"Job {job_id}: syncing booking {payload.get('booking_id')} (received {created_at})")

    if not payload.get("booking_id"):
        # Raising records the failure and schedules a retry
        raise ValueError("booking_id missing from payload")


@registry.handler("booking.cancelled")
async def booking_cancelled(payload: dict[str, Any], job_id, created_at):
    logger.info(f"Job {job_id}: releasing booking {payload.get('booking_id')}")


@registry.handler("reward_friend")
async def reward_friend(payload: dict[str, Any], job_id, created_at):
    """Second stage of the referral lifecycle."""
    logger.info(f"Job {job_id}: rewarding {payload.get('friend_email')} for referral")
