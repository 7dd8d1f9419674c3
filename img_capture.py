"""
Headless batch capture: captures labeled images at one or more resolutions
without opening the GUI.

Usage:
  python img_capture.py --project dataset --label cat --res 640x480:20 --res 1280x720:10
  python img_capture.py --project dataset --label cat --res 640x480:5 --randomize --delay 1 --metadata

Ctrl+C stops the batch; images already saved are kept.
"""

import os
import signal
import sys

from PyQt6.QtCore import QCoreApplication, QTimer

from batch_scheduler import BatchScheduler, CaptureJobSpec, EmptyQueue
from camera import CameraController
from capture_session import CaptureSession, lookup_location
from clock import QtClock
from config import build_batch_parser
from logger import log, setup_logging
from metadata import MetadataExportError, export_metadata


def run_batch(args, app, camera, session):
    """Run one batch to a terminal state on app's event loop. Returns the exit code."""
    clock = QtClock()
    result = {}

    def on_progress(progress):
        if progress.current_resolution:
            print(f"\r[{progress.percent:5.1f}%] {progress.current_resolution} "
                  f"{progress.current_index}/{progress.total_for_resolution}", end="", flush=True)

    def finished(kind):
        def handler(completed):
            result["kind"] = kind
            result["completed"] = completed
            app.quit()
        return handler

    scheduler = BatchScheduler(
        start_camera=camera.start_camera,
        capture_image=session.capture_image,
        clock=clock,
        stabilize_delay=args.stabilize,
        max_consecutive_failures=args.max_failures,
        on_progress=on_progress,
        on_completed=finished("complete"),
        on_stopped=finished("stopped"),
    )

    def on_sigint(*_):
        print("\nStopping batch...")
        if scheduler.is_active:
            scheduler.stop()

    previous_handler = signal.signal(signal.SIGINT, on_sigint)
    # Give the interpreter a chance to run the signal handler while Qt waits
    heartbeat = QTimer()
    heartbeat.timeout.connect(lambda: None)
    heartbeat.start(200)

    specs = [CaptureJobSpec(w, h, count) for w, h, count in args.jobs]
    try:
        scheduler.start(specs, args.delay, args.randomize)
        if scheduler.is_active:
            app.exec()
    except EmptyQueue as exc:
        print(f"Error: {exc}")
        return 2
    finally:
        heartbeat.stop()
        clock.cancel_all()
        signal.signal(signal.SIGINT, previous_handler)
    print()

    state = scheduler.state
    print(f"Batch capture {result.get('kind', state.status.value)}. "
          f"Captured {state.completed_count}/{len(state.queue)} images ({state.skipped_count} skipped).")
    return 0 if state.completed_count == len(state.queue) else 1


def main(argv=None):
    args = build_batch_parser().parse_args(argv)
    setup_logging(debug=args.debug)

    if not args.project or not args.label:
        print("Error: --project and --label are required")
        return 2

    print("\n" + "=" * 50)
    print("  BATCH CAPTURE")
    print("=" * 50)

    camera  = CameraController(args.camera)
    session = CaptureSession(
        camera,
        scenario=args.scenario,
        location=None if args.no_location else lookup_location(),
    )
    session.set_manual_location(args.building, args.floor, args.room)
    os.makedirs(args.project, exist_ok=True)
    session.set_project_folder(args.project)
    session.add_label(args.label)
    print(f"Saving to: {session.label_folder}")

    app = QCoreApplication.instance() or QCoreApplication(sys.argv[:1])
    try:
        code = run_batch(args, app, camera, session)
    finally:
        camera.stop()

    if args.metadata is not None and session.images:
        try:
            path = export_metadata(session, args.metadata or None)
            print(f"Metadata exported to {path}")
        except MetadataExportError as exc:
            log.error(str(exc))
            print(f"Error: {exc}")
            code = code or 1
    return code


if __name__ == "__main__":
    sys.exit(main())
