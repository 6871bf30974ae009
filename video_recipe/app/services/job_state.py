# video_recipe/app/services/job_state.py
"""
Processing state machine for recipe jobs and the push-based status watcher.

    pending -> processing -> completed
       |            |
       +----------> failed

Terminal states never change. The recipe row mirrors the queue status.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional

from starlette.concurrency import run_in_threadpool

from video_recipe.app.domain.errors import (
    InvalidTransitionError,
    JobNotFoundError,
)
from video_recipe.app.domain.models import (
    ProcessingQueueEntry,
    QueueStatus,
    Recipe,
    RecipeStatus,
)
from video_recipe.app.infra.db.base import RecipeJobRepository
from video_recipe.app.infra.db.supabase_recipes_repo import row_to_queue_entry
from video_recipe.app.infra.realtime.base import ChangeFeed, Subscription

logger = logging.getLogger(__name__)

QUEUE_TABLE = "processing_queue"
DRAFT_DESCRIPTION = "Recipe details will be added after processing"

ALLOWED_TRANSITIONS: dict[QueueStatus, frozenset[QueueStatus]] = {
    QueueStatus.PENDING: frozenset({QueueStatus.PROCESSING, QueueStatus.FAILED}),
    QueueStatus.PROCESSING: frozenset({QueueStatus.COMPLETED, QueueStatus.FAILED}),
    QueueStatus.COMPLETED: frozenset(),
    QueueStatus.FAILED: frozenset(),
}

RECIPE_STATUS_FOR: dict[QueueStatus, RecipeStatus] = {
    QueueStatus.PENDING: RecipeStatus.DRAFT,
    QueueStatus.PROCESSING: RecipeStatus.PROCESSING,
    QueueStatus.COMPLETED: RecipeStatus.COMPLETED,
    QueueStatus.FAILED: RecipeStatus.FAILED,
}


def draft_title(now: Optional[datetime] = None) -> str:
    now = now or datetime.now(timezone.utc)
    return f"Untitled Recipe {now.strftime('%Y-%m-%d')}"


def frame_failure_message(total: int, failed: int, min_success_rate: float) -> Optional[str]:
    """
    Decide whether frame description failures fail the job.

    Returns:
        An error message when the job must fail, otherwise None
    """
    if total <= 0:
        return "No frames could be extracted from the video"
    succeeded = total - failed
    if succeeded <= 0:
        return f"All {total} frame descriptions failed"
    rate = succeeded / total
    if rate < min_success_rate:
        return (
            f"Only {succeeded} of {total} frames were described "
            f"({rate:.0%} < required {min_success_rate:.0%})"
        )
    return None


class ProcessingStateMachine:
    """Owns every status write for recipes and their queue entries."""

    def __init__(self, repo: RecipeJobRepository):
        self._repo = repo

    def create_job(
        self,
        owner_id: str,
        title: Optional[str] = None,
        description: Optional[str] = None,
        thumbnail_url: Optional[str] = None,
    ) -> tuple[Recipe, ProcessingQueueEntry]:
        recipe, entry = self._repo.create_recipe_with_queue_entry(
            owner_id,
            title or draft_title(),
            description or DRAFT_DESCRIPTION,
            thumbnail_url=thumbnail_url,
        )
        logger.info("Job created: recipe=%s, owner=%s", recipe.id, owner_id)
        return recipe, entry

    def current(self, recipe_id: str) -> ProcessingQueueEntry:
        entry = self._repo.get_queue_entry(recipe_id)
        if entry is None:
            raise JobNotFoundError(recipe_id)
        return entry

    def transition(
        self,
        recipe_id: str,
        target: QueueStatus,
        error: Optional[str] = None,
    ) -> ProcessingQueueEntry:
        """
        Move a job to `target`.

        Raises:
            JobNotFoundError: If the job does not exist
            InvalidTransitionError: If the move is not allowed from the current state
            RepositoryError: If the status could not be written
        """
        entry = self.current(recipe_id)
        if target not in ALLOWED_TRANSITIONS[entry.status]:
            raise InvalidTransitionError(recipe_id, entry.status.value, target.value)

        started_at = datetime.now(timezone.utc) if target == QueueStatus.PROCESSING else None
        self._repo.update_job_status(
            recipe_id,
            target,
            RECIPE_STATUS_FOR[target],
            error=error,
            started_at=started_at,
        )
        logger.info("Job %s: %s -> %s", recipe_id, entry.status.value, target.value)

        return ProcessingQueueEntry(
            recipe_id=recipe_id,
            status=target,
            started_at=started_at or entry.started_at,
            error=error,
            created_at=entry.created_at,
        )

    def start_processing(self, recipe_id: str) -> ProcessingQueueEntry:
        return self.transition(recipe_id, QueueStatus.PROCESSING)

    def complete(self, recipe_id: str) -> ProcessingQueueEntry:
        return self.transition(recipe_id, QueueStatus.COMPLETED)

    def fail(self, recipe_id: str, message: str) -> ProcessingQueueEntry:
        logger.error("Job %s failed: %s", recipe_id, message)
        return self.transition(recipe_id, QueueStatus.FAILED, error=message)


# =============================================================================
# Status watcher
# =============================================================================

StatusCallback = Callable[[ProcessingQueueEntry], None]


@dataclass
class WatchHandle:
    """One observer's view of one recipe job."""
    recipe_id: str
    on_status: StatusCallback
    subscription: Optional[Subscription] = None
    last_status: Optional[ProcessingQueueEntry] = None

    @property
    def active(self) -> bool:
        return self.subscription is not None and self.subscription.active


class JobStatusWatcher:
    """
    Push subscription to a job's queue entry.

    The feed is at-most-once with no replay, so the current row is fetched right
    after subscribing and again on every refresh().
    """

    def __init__(self, feed: ChangeFeed, repo: RecipeJobRepository):
        self._feed = feed
        self._repo = repo

    def _deliver(self, handle: WatchHandle, entry: ProcessingQueueEntry) -> None:
        handle.last_status = entry
        handle.on_status(entry)

    async def refresh(self, handle: WatchHandle) -> Optional[ProcessingQueueEntry]:
        entry = await run_in_threadpool(self._repo.get_queue_entry, handle.recipe_id)
        if entry is not None:
            self._deliver(handle, entry)
        return entry

    async def watch(self, recipe_id: str, on_status: StatusCallback) -> WatchHandle:
        handle = WatchHandle(recipe_id=recipe_id, on_status=on_status)

        def _on_change(record: dict) -> None:
            if not handle.active:
                return
            try:
                entry = row_to_queue_entry(record)
            except (KeyError, ValueError) as e:
                logger.warning("Ignoring malformed queue change for %s: %s", recipe_id, e)
                return
            self._deliver(handle, entry)

        handle.subscription = await self._feed.subscribe(QUEUE_TABLE, "recipe_id", recipe_id, _on_change)
        await self.refresh(handle)
        return handle

    async def stop(self, handle: WatchHandle) -> None:
        if handle.subscription is not None:
            await self._feed.unsubscribe(handle.subscription)

    async def switch(self, handle: WatchHandle, recipe_id: str) -> WatchHandle:
        """Tear down the old subscription and watch another recipe with the same callback."""
        await self.stop(handle)
        return await self.watch(recipe_id, handle.on_status)
