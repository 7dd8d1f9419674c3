"""
Batch capture scheduler.

Drives the camera through a queue of (resolution, count) jobs, one item at a
time:

    start -> [reconfigure camera] -> stabilize wait -> capture -> inter-item wait -> next ...

Failed reconfigures and failed captures skip the item and move straight on
to the next one, so a run always ends in COMPLETED or STOPPED. All timing goes
through an injected clock (`after(seconds, callback) -> token`,
`cancel(token)`); the scheduler itself never sleeps or spawns threads.
"""

import random
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from config import DEFAULT_CAPTURE_DELAY, STABILIZE_DELAY
from logger import log


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------
class BatchCaptureError(Exception):
    pass


class EmptyQueue(BatchCaptureError):
    """No job spec with a positive count; the run never starts."""


class SchedulerStateError(BatchCaptureError):
    """Control request issued in a state that does not allow it."""


class CameraReconfigureFailed(BatchCaptureError):
    def __init__(self, item):
        super().__init__(f"camera could not switch to {item.resolution}")
        self.item = item


class CaptureFailed(BatchCaptureError):
    def __init__(self, item):
        super().__init__(f"capture failed at {item.resolution} ({item.sequence_index}/{item.group_total})")
        self.item = item


# ---------------------------------------------------------------------------
# Data model
# ---------------------------------------------------------------------------
class BatchStatus(Enum):
    IDLE      = "idle"
    RUNNING   = "running"
    PAUSED    = "paused"
    COMPLETED = "completed"
    STOPPED   = "stopped"


@dataclass(frozen=True)
class CaptureJobSpec:
    width: int
    height: int
    count: int = 1

    def __post_init__(self):
        if self.width <= 0 or self.height <= 0:
            raise ValueError(f"resolution must be positive, got {self.width}x{self.height}")
        if self.count < 0:
            raise ValueError(f"count must be >= 0, got {self.count}")


@dataclass(frozen=True)
class CaptureJobItem:
    width: int
    height: int
    sequence_index: int   # 1-based within its resolution group
    group_total: int

    @property
    def resolution(self):
        return f"{self.width}x{self.height}"


@dataclass
class BatchRunState:
    queue: tuple = ()
    cursor: int = 0
    completed_count: int = 0
    skipped_count: int = 0
    consecutive_failures: int = 0
    status: BatchStatus = BatchStatus.IDLE
    current_item: Optional[CaptureJobItem] = None
    inter_item_delay: float = DEFAULT_CAPTURE_DELAY


@dataclass(frozen=True)
class BatchProgress:
    percent: float
    current_resolution: str
    current_index: int
    total_for_resolution: int
    status: BatchStatus = BatchStatus.IDLE
    completed_count: int = 0
    skipped_count: int = 0
    total: int = 0


# ---------------------------------------------------------------------------
# Queue builder
# ---------------------------------------------------------------------------
def build_queue(specs, randomize=False, rng=None):
    """
    Expand job specs into individual capture items.

    Specs with count <= 0 are dropped. Without randomize the result keeps spec
    order, each group in ascending sequence_index. With randomize the fully
    expanded list is Fisher-Yates shuffled, so resolutions interleave.
    """
    enabled = [spec for spec in specs if spec.count > 0]
    if not enabled:
        raise EmptyQueue("select at least one resolution with a count greater than 0")

    items = [
        CaptureJobItem(spec.width, spec.height, index, spec.count)
        for spec in enabled
        for index in range(1, spec.count + 1)
    ]

    if randomize:
        rng = rng or random.Random()
        for i in range(len(items) - 1, 0, -1):
            j = rng.randint(0, i)
            items[i], items[j] = items[j], items[i]

    return tuple(items)


# ---------------------------------------------------------------------------
# Run controller
# ---------------------------------------------------------------------------
class BatchScheduler:
    """
    Owns one BatchRunState at a time and moves it through
    IDLE -> RUNNING <-> PAUSED -> COMPLETED | STOPPED.

    start_camera(width, height) -> bool and capture_image() -> bool are the
    camera and sink collaborators. Exceptions raised by them count as failure.
    """

    def __init__(
        self,
        start_camera: Callable[[int, int], bool],
        capture_image: Callable[[], bool],
        clock,
        stabilize_delay: float = STABILIZE_DELAY,
        max_consecutive_failures: Optional[int] = None,
        rng: Optional[random.Random] = None,
        on_progress: Optional[Callable[[BatchProgress], None]] = None,
        on_completed: Optional[Callable[[int], None]] = None,
        on_stopped: Optional[Callable[[int], None]] = None,
        on_item_skipped: Optional[Callable[[CaptureJobItem, BatchCaptureError], None]] = None,
    ):
        if max_consecutive_failures is not None and max_consecutive_failures < 1:
            raise ValueError("max_consecutive_failures must be >= 1 or None")
        self._start_camera = start_camera
        self._capture_image = capture_image
        self._clock = clock
        self._rng = rng
        self.stabilize_delay = stabilize_delay
        self.max_consecutive_failures = max_consecutive_failures

        self.on_progress = on_progress
        self.on_completed = on_completed
        self.on_stopped = on_stopped
        self.on_item_skipped = on_item_skipped

        self.state = BatchRunState()
        self._timer = None
        # Bumped whenever pending timers must become no-ops (start, pause, stop)
        self._generation = 0

    # ── Queries ──────────────────────────────────────────────────────────────

    @property
    def status(self):
        return self.state.status

    @property
    def is_active(self):
        """True while the batch owns the camera (running or paused)."""
        return self.state.status in (BatchStatus.RUNNING, BatchStatus.PAUSED)

    def progress(self):
        state = self.state
        total = len(state.queue)
        item = state.current_item
        if state.status is BatchStatus.COMPLETED:
            percent = 100.0
        elif total:
            percent = state.cursor / total * 100
        else:
            percent = 0.0
        return BatchProgress(
            percent=percent,
            current_resolution=item.resolution if item else "",
            current_index=item.sequence_index if item else 0,
            total_for_resolution=item.group_total if item else 0,
            status=state.status,
            completed_count=state.completed_count,
            skipped_count=state.skipped_count,
            total=total,
        )

    # ── Control surface ──────────────────────────────────────────────────────

    def start(self, specs, inter_item_delay=DEFAULT_CAPTURE_DELAY, randomize=False):
        if self.is_active:
            raise SchedulerStateError(f"batch already {self.state.status.value}")
        if inter_item_delay < 0:
            raise ValueError("inter_item_delay must be >= 0")

        queue = build_queue(specs, randomize, self._rng)

        self._cancel_timer()
        self.state = BatchRunState(
            queue=queue,
            status=BatchStatus.RUNNING,
            inter_item_delay=inter_item_delay,
        )
        log.info(f"Batch started: {len(queue)} images, delay={inter_item_delay}s, randomize={randomize}")
        self._process_next()

    def pause(self):
        if self.state.status is not BatchStatus.RUNNING:
            raise SchedulerStateError(f"cannot pause while {self.state.status.value}")
        self._cancel_timer()
        self.state.status = BatchStatus.PAUSED
        log.info(f"Batch paused at item {self.state.cursor + 1}/{len(self.state.queue)}")
        self._emit_progress()

    def resume(self):
        if self.state.status is not BatchStatus.PAUSED:
            raise SchedulerStateError(f"cannot resume while {self.state.status.value}")
        self.state.status = BatchStatus.RUNNING
        log.info(f"Batch resumed at item {self.state.cursor + 1}/{len(self.state.queue)}")
        self._process_next()

    def toggle_pause(self):
        if self.state.status is BatchStatus.PAUSED:
            self.resume()
        else:
            self.pause()

    def stop(self):
        if not self.is_active:
            raise SchedulerStateError(f"cannot stop while {self.state.status.value}")
        self._finish(BatchStatus.STOPPED)

    # ── State machine ────────────────────────────────────────────────────────

    def _process_next(self):
        state = self.state
        while state.status is BatchStatus.RUNNING:
            if state.cursor >= len(state.queue):
                self._finish(BatchStatus.COMPLETED)
                return

            item = state.queue[state.cursor]
            state.current_item = item
            self._emit_progress()
            if state is not self.state or state.status is not BatchStatus.RUNNING:
                return

            log.debug(f"Item {state.cursor + 1}/{len(state.queue)}: {item.resolution} "
                      f"({item.sequence_index}/{item.group_total})")
            ok = self._call(self._start_camera, item.width, item.height)
            if state is not self.state or state.status is not BatchStatus.RUNNING:
                return
            if ok:
                self._schedule(self.stabilize_delay, self._on_stabilized)
                return
            if not self._skip(item, CameraReconfigureFailed(item)):
                return

    def _on_stabilized(self):
        state = self.state
        item = state.current_item
        ok = self._call(self._capture_image)
        # Counts freeze once the run is stopped, even from inside the sink
        if state is not self.state or not self.is_active:
            return

        if ok:
            state.completed_count += 1
            state.cursor += 1
            state.consecutive_failures = 0
            log.info(f"Captured {item.resolution} {item.sequence_index}/{item.group_total} "
                     f"({state.completed_count} done, {len(state.queue) - state.cursor} left)")
            self._emit_progress()
            if state.status is BatchStatus.RUNNING:
                self._schedule(state.inter_item_delay, self._process_next)
        elif self._skip(item, CaptureFailed(item)):
            self._process_next()

    def _skip(self, item, error):
        """Advance past a failed item. Returns False if the run is no longer running."""
        state = self.state
        state.cursor += 1
        state.skipped_count += 1
        state.consecutive_failures += 1
        log.warning(f"Skipping item: {error}")
        if self.on_item_skipped:
            self.on_item_skipped(item, error)
            # The callback may have paused or stopped the run
            if state is not self.state or state.status is not BatchStatus.RUNNING:
                return False

        cap = self.max_consecutive_failures
        if cap is not None and state.consecutive_failures >= cap:
            log.error(f"{state.consecutive_failures} consecutive failures, stopping batch")
            self._finish(BatchStatus.STOPPED)
            return False
        return True

    def _finish(self, status):
        self._cancel_timer()
        state = self.state
        state.status = status
        self._emit_progress()
        if status is BatchStatus.COMPLETED:
            log.info(f"Batch complete. Captured {state.completed_count}/{len(state.queue)} images "
                     f"({state.skipped_count} skipped)")
            if self.on_completed:
                self.on_completed(state.completed_count)
        else:
            log.info(f"Batch stopped. Captured {state.completed_count} images")
            if self.on_stopped:
                self.on_stopped(state.completed_count)

    # ── Timers ───────────────────────────────────────────────────────────────

    def _schedule(self, delay, step):
        generation = self._generation

        def fire():
            if generation != self._generation or self.state.status is not BatchStatus.RUNNING:
                log.debug("Ignoring stale batch timer")
                return
            self._timer = None
            step()

        self._timer = self._clock.after(delay, fire)

    def _cancel_timer(self):
        self._generation += 1
        if self._timer is not None:
            self._clock.cancel(self._timer)
            self._timer = None

    # ── Helpers ──────────────────────────────────────────────────────────────

    def _call(self, fn, *args):
        try:
            return bool(fn(*args))
        except Exception as exc:
            log.exception(f"Batch collaborator raised: {exc}")
            return False

    def _emit_progress(self):
        if self.on_progress:
            self.on_progress(self.progress())
