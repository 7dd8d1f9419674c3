import heapq
import itertools

import numpy as np
import pytest
from PyQt6.QtCore import QCoreApplication

from batch_scheduler import BatchScheduler


class FakeClock:
    """Virtual-time clock: callbacks run only when the test advances time."""

    def __init__(self):
        self.now = 0.0
        self._heap = []
        self._live = set()
        self._ids = itertools.count()

    def after(self, seconds, callback):
        token = next(self._ids)
        heapq.heappush(self._heap, (self.now + seconds, token, callback))
        self._live.add(token)
        return token

    def cancel(self, token):
        self._live.discard(token)

    @property
    def pending(self):
        return len(self._live)

    def advance(self, seconds):
        target = self.now + seconds
        while self._heap and self._heap[0][0] <= target + 1e-9:
            when, token, callback = heapq.heappop(self._heap)
            if token not in self._live:
                continue
            self._live.discard(token)
            self.now = when
            callback()
        self.now = target

    def run_all(self, limit=100000):
        for _ in range(limit):
            live = [entry for entry in self._heap if entry[1] in self._live]
            if not live:
                return
            self.advance(min(live)[0] - self.now)
        raise AssertionError("clock did not settle")


class LeakyClock(FakeClock):
    """cancel() does nothing, so every scheduled callback still fires."""

    def cancel(self, token):
        pass


class FakeRig:
    """Camera + sink pair; the sink records the resolution active when it fires."""

    def __init__(self, camera_fail=(), capture_fail=()):
        self.camera_fail = set(camera_fail)     # 1-based call numbers that fail
        self.capture_fail = set(capture_fail)
        self.camera_calls = []
        self.capture_calls = 0
        self.captured = []
        self.active = None

    def start_camera(self, width, height):
        self.camera_calls.append((width, height))
        if len(self.camera_calls) in self.camera_fail:
            self.active = None
            return False
        self.active = (width, height)
        return True

    def capture_image(self):
        self.capture_calls += 1
        if self.capture_calls in self.capture_fail:
            return False
        self.captured.append(self.active)
        return True


class Recorder:
    def __init__(self):
        self.progress = []
        self.completed = []
        self.stopped = []
        self.skipped = []

    def kwargs(self):
        return dict(
            on_progress=self.progress.append,
            on_completed=self.completed.append,
            on_stopped=self.stopped.append,
            on_item_skipped=lambda item, error: self.skipped.append((item, error)),
        )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def rig():
    return FakeRig()


@pytest.fixture
def recorder():
    return Recorder()


@pytest.fixture
def make_scheduler(clock, rig, recorder):
    def factory(rig=rig, clock=clock, **kwargs):
        params = recorder.kwargs()
        params.update(kwargs)
        return BatchScheduler(rig.start_camera, rig.capture_image, clock, **params)
    return factory


class FakeFrameCamera:
    def __init__(self, width=640, height=480, active=True):
        self.is_active = active
        self.frame = np.zeros((height, width, 3), dtype=np.uint8)
        self.frame[:, : width // 2] = (0, 128, 255)

    def read_frame(self):
        return self.frame


@pytest.fixture
def frame_camera():
    return FakeFrameCamera()


@pytest.fixture(scope="session")
def app():
    return QCoreApplication.instance() or QCoreApplication([])
