"""
Shared constants and command-line parsing for the capture tools.
"""

import argparse
import os

SCRIPT_DIR = os.path.dirname(os.path.abspath(__file__))
LOG_DIR    = os.path.join(SCRIPT_DIR, "logs")

# ---------------------------------------------------------------------------
# Camera
# ---------------------------------------------------------------------------
# OV2640 modes plus common webcam modes
RESOLUTIONS = [
    (160,  120,  "QQVGA (160x120)"),
    (320,  240,  "QVGA (320x240)"),
    (640,  480,  "VGA (640x480)"),
    (800,  600,  "SVGA (800x600)"),
    (1024, 768,  "XGA (1024x768)"),
    (1280, 720,  "HD (1280x720)"),
    (1280, 1024, "SXGA (1280x1024)"),
    (1600, 1200, "UXGA (1600x1200)"),
    (1920, 1080, "FHD (1920x1080)"),
]

DEFAULT_CAMERA     = 0
DEFAULT_RESOLUTION = (640, 480)
MAX_CAMERA_PROBE   = 5      # indices probed when listing cameras
WARMUP_FRAMES      = 2      # frames read after opening to confirm the stream works
PREVIEW_INTERVAL   = 33     # ms between preview refreshes (~30 fps)
JPEG_QUALITY       = 92

# ---------------------------------------------------------------------------
# Batch
# ---------------------------------------------------------------------------
DEFAULT_CAPTURE_DELAY = 2.0   # seconds between captures
MIN_CAPTURE_DELAY     = 0.5
CAPTURE_DELAY_STEP    = 0.5
STABILIZE_DELAY       = 1.0   # seconds after reconfiguring before grabbing

# ---------------------------------------------------------------------------
# Dataset
# ---------------------------------------------------------------------------
DEFAULT_LABELS     = ["dog", "cat", "car", "person"]
METADATA_FILENAME  = "tensorflow_metadata.json"


def parse_resolution(text):
    """'1280x720' -> (1280, 720)."""
    try:
        w, h = text.lower().split("x")
        width, height = int(w), int(h)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid resolution '{text}', expected WxH")
    if width <= 0 or height <= 0:
        raise argparse.ArgumentTypeError(f"resolution must be positive: '{text}'")
    return width, height


def parse_job(text):
    """'1280x720:5' -> (1280, 720, 5). Count defaults to 1."""
    res, _, count = text.partition(":")
    width, height = parse_resolution(res)
    try:
        count = int(count) if count else 1
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid count in '{text}'")
    if count < 0:
        raise argparse.ArgumentTypeError(f"count must be >= 0: '{text}'")
    return width, height, count


def non_negative_float(text):
    try:
        value = float(text)
    except ValueError:
        raise argparse.ArgumentTypeError(f"not a number: '{text}'")
    if value < 0:
        raise argparse.ArgumentTypeError(f"must be >= 0: '{text}'")
    return value


def positive_int(text):
    try:
        value = int(text)
    except ValueError:
        raise argparse.ArgumentTypeError(f"not an integer: '{text}'")
    if value < 1:
        raise argparse.ArgumentTypeError(f"must be >= 1: '{text}'")
    return value


def _add_common_args(parser):
    parser.add_argument("--camera", type=int, default=DEFAULT_CAMERA,
                        help=f"Camera index (default {DEFAULT_CAMERA})")
    parser.add_argument("--project", metavar="DIR", help="Project folder; images go to DIR/<label>/")
    parser.add_argument("--label", help="Label (class name) for captured images")
    parser.add_argument("--scenario", default="", help="Free-text scenario stored with each image")
    parser.add_argument("--stabilize", type=non_negative_float, default=STABILIZE_DELAY,
                        help=f"Seconds to wait after switching resolution (default {STABILIZE_DELAY})")
    parser.add_argument("--no-location", action="store_true",
                        help="Skip automatic location lookup and record manual location fields")
    parser.add_argument("--debug", action="store_true", help="Verbose console logging")


def build_gui_parser():
    parser = argparse.ArgumentParser(description="Labeled Camera Capture")
    _add_common_args(parser)
    return parser


def build_batch_parser():
    parser = argparse.ArgumentParser(description="Headless batch capture")
    _add_common_args(parser)
    parser.add_argument("--res", dest="jobs", type=parse_job, action="append", required=True,
                        metavar="WxH[:COUNT]", help="Resolution and image count; repeatable")
    parser.add_argument("--delay", type=non_negative_float, default=DEFAULT_CAPTURE_DELAY,
                        help=f"Seconds between captures (default {DEFAULT_CAPTURE_DELAY})")
    parser.add_argument("--randomize", action="store_true", help="Shuffle capture order across resolutions")
    parser.add_argument("--max-failures", type=positive_int, default=None, metavar="N",
                        help="Stop the run after N consecutive failed items")
    parser.add_argument("--metadata", nargs="?", const="", default=None, metavar="PATH",
                        help=f"Export metadata when done (default PROJECT/{METADATA_FILENAME})")
    parser.add_argument("--building", default="")
    parser.add_argument("--floor", default="")
    parser.add_argument("--room", default="")
    return parser
