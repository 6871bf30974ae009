# video_recipe/app/services/upload_progress.py
"""
Upload progress reporting.

Uploaders report progress through a ProgressCallback(bytes_uploaded, total_bytes).
UploadProgressTracker persists it to the `upload_progress` row observers subscribe to.
SimulatedProgress drives the same callback on a timer for transports that cannot
count bytes.
"""
from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Optional

from video_recipe.app.domain.errors import RepositoryError
from video_recipe.app.domain.models import UploadProgress, UploadStatus
from video_recipe.app.infra.db.base import UploadProgressRepository

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int], None]
Clock = Callable[[], float]

SIMULATED_TICK_SECONDS = 0.5
SIMULATED_EXPECTED_SECONDS = 30.0
SIMULATED_CAP = 0.95


class UploadProgressTracker:
    """Writes one ephemeral progress row per in-flight upload."""

    def __init__(
        self,
        repo: UploadProgressRepository,
        recipe_id: str,
        total_bytes: int,
        clock: Clock = time.monotonic,
    ):
        self._repo = repo
        self.recipe_id = recipe_id
        self.total_bytes = total_bytes
        self._clock = clock
        self._started_at: Optional[float] = None
        self.bytes_uploaded = 0

    def _write(self, progress: UploadProgress) -> None:
        # Progress rows are best-effort; a lost update must not fail the upload.
        try:
            self._repo.upsert_progress(progress)
        except RepositoryError as e:
            logger.warning("Upload progress write failed for %s: %s", self.recipe_id, e)

    def _speed(self) -> float:
        if self._started_at is None:
            return 0.0
        elapsed = self._clock() - self._started_at
        return self.bytes_uploaded / elapsed if elapsed > 0 else 0.0

    def start(self) -> None:
        self._started_at = self._clock()
        self.bytes_uploaded = 0
        self._write(UploadProgress(self.recipe_id, 0, self.total_bytes))

    def update(self, bytes_uploaded: int, total_bytes: Optional[int] = None) -> None:
        if self._started_at is None:
            self.start()
        if total_bytes:
            self.total_bytes = total_bytes
        self.bytes_uploaded = min(bytes_uploaded, self.total_bytes)
        self._write(
            UploadProgress(
                self.recipe_id,
                self.bytes_uploaded,
                self.total_bytes,
                speed=round(self._speed(), 2),
            )
        )

    __call__ = update

    def complete(self) -> None:
        self.bytes_uploaded = self.total_bytes
        self._write(
            UploadProgress(
                self.recipe_id,
                self.total_bytes,
                self.total_bytes,
                speed=round(self._speed(), 2),
                status=UploadStatus.COMPLETED,
            )
        )
        try:
            self._repo.delete_progress(self.recipe_id)
        except RepositoryError as e:
            logger.warning("Could not remove progress row for %s: %s", self.recipe_id, e)

    def fail(self, error: str) -> None:
        try:
            self._repo.mark_failed(self.recipe_id, error)
        except RepositoryError as e:
            logger.warning("Could not mark progress failed for %s: %s", self.recipe_id, e)


class SimulatedProgress:
    """
    Interval-simulated progress capped below 100% until the upload settles.

    Use as a context manager around the upload call; the timer thread is always
    stopped on exit, and a clean exit reports the full size.
    """

    def __init__(
        self,
        on_progress: ProgressCallback,
        total_bytes: int,
        expected_seconds: float = SIMULATED_EXPECTED_SECONDS,
        tick_seconds: float = SIMULATED_TICK_SECONDS,
        cap: float = SIMULATED_CAP,
        clock: Clock = time.monotonic,
    ):
        self._on_progress = on_progress
        self.total_bytes = total_bytes
        self.expected_seconds = expected_seconds
        self.tick_seconds = tick_seconds
        self.cap = cap
        self._clock = clock
        self._started_at: Optional[float] = None
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def tick(self) -> int:
        """Report the simulated byte count for the current clock reading."""
        if self._started_at is None:
            self._started_at = self._clock()
        elapsed = self._clock() - self._started_at
        fraction = min(elapsed / self.expected_seconds, self.cap) if self.expected_seconds > 0 else self.cap
        simulated = int(self.total_bytes * fraction)
        self._on_progress(simulated, self.total_bytes)
        return simulated

    def _run(self) -> None:
        while not self._stop.wait(self.tick_seconds):
            self.tick()

    def start(self) -> None:
        self._started_at = self._clock()
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="simulated-progress", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join()
            self._thread = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def __enter__(self) -> "SimulatedProgress":
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.stop()
        if exc_type is None:
            self._on_progress(self.total_bytes, self.total_bytes)
