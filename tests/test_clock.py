from PyQt6.QtCore import QTimer

from batch_scheduler import BatchScheduler, BatchStatus, CaptureJobSpec
from clock import QtClock
from conftest import FakeRig


def run_loop(app, ms):
    QTimer.singleShot(ms, app.quit)
    app.exec()


def test_after_fires_once(app):
    clock = QtClock()
    fired = []
    clock.after(0.01, lambda: fired.append("a"))
    assert clock.pending == 1
    run_loop(app, 100)
    assert fired == ["a"]
    assert clock.pending == 0


def test_cancel_prevents_callback(app):
    clock = QtClock()
    fired = []
    token = clock.after(0.01, lambda: fired.append("a"))
    clock.after(0.01, lambda: fired.append("b"))
    clock.cancel(token)
    run_loop(app, 100)
    assert fired == ["b"]


def test_scheduler_runs_on_event_loop(app):
    clock = QtClock()
    rig = FakeRig(camera_fail={2})
    done = []

    def on_completed(count):
        done.append(count)
        app.quit()

    scheduler = BatchScheduler(rig.start_camera, rig.capture_image, clock,
                               stabilize_delay=0.0, on_completed=on_completed)
    scheduler.start([CaptureJobSpec(640, 480, 2), CaptureJobSpec(1280, 720, 1)], 0.0)
    guard = QTimer()
    guard.setSingleShot(True)
    guard.timeout.connect(app.quit)
    guard.start(2000)
    app.exec()
    guard.stop()

    assert scheduler.status is BatchStatus.COMPLETED
    assert done == [2]
    assert rig.captured == [(640, 480), (1280, 720)]
