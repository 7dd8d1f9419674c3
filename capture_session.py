"""
Capture session: project folder, labels, scenario/location context and the
list of images captured so far.

capture_image() is the capture sink used both by the single-shot button and
by the batch scheduler. It grabs the camera's current frame, JPEG-encodes it
with OpenCV and writes it to <project>/<label>/<label>_<W>x<H>_<date>.jpg.
"""

import os
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Optional

import cv2

from config import DEFAULT_LABELS, JPEG_QUALITY
from logger import log

# Placeholder used until a real geolocation service is wired in
_PLACEHOLDER_LOCATION = {
    "latitude": 37.7749,
    "longitude": -122.4194,
    "city": "San Francisco",
    "country": "United States",
}


def _utc_now():
    return datetime.now(timezone.utc)


def lookup_location():
    """Current location as {latitude, longitude, city, country}, or None if unavailable."""
    return dict(_PLACEHOLDER_LOCATION)


def manual_location(building="", floor="", room=""):
    return {"manual": True, "building": building, "floor": floor, "room": room}


@dataclass
class CapturedImage:
    id: int
    label: str
    filename: str
    path: str
    resolution: str
    timestamp: str
    scenario: str = ""
    location: Optional[dict] = None

    def to_dict(self):
        return asdict(self)


@dataclass
class CaptureSession:
    camera: object
    project_folder: str = ""
    labels: list = field(default_factory=lambda: list(DEFAULT_LABELS))
    current_label: str = ""
    scenario: str = ""
    location: Optional[dict] = None
    manual: dict = field(default_factory=manual_location)
    images: list = field(default_factory=list)
    last_error: str = ""
    now: object = field(default_factory=lambda: _utc_now, repr=False)

    # ── Labels / folder ───────────────────────────────────────────────────────

    def add_label(self, name):
        """Add and select a label. An existing label is just selected."""
        name = name.strip()
        if not name:
            raise ValueError("Label cannot be empty")
        if name in self.labels:
            log.info(f'Label "{name}" already exists')
        else:
            self.labels.append(name)
            log.info(f"Added new label: {name}")
        self.current_label = name
        return name

    def select_label(self, name):
        """Make name the active label. An empty name clears the selection."""
        if not name:
            self.current_label = ""
            return
        if name not in self.labels:
            raise ValueError(f'Unknown label "{name}"')
        self.current_label = name

    def set_project_folder(self, path):
        self.project_folder = os.path.abspath(path)
        log.info(f"Project folder set to: {self.project_folder}")

    def set_manual_location(self, building="", floor="", room=""):
        self.manual = manual_location(building, floor, room)

    @property
    def label_folder(self):
        if not (self.project_folder and self.current_label):
            return ""
        return os.path.join(self.project_folder, self.current_label)

    def not_ready_reason(self):
        if not self.camera.is_active:
            return "Camera is not active"
        if not self.current_label:
            return "Please select a label first"
        if not self.project_folder:
            return "Please select a project folder first"
        return ""

    # ── Capture sink ──────────────────────────────────────────────────────────

    def capture_image(self):
        reason = self.not_ready_reason()
        if reason:
            return self._fail(reason)

        frame = self.camera.read_frame()
        if frame is None:
            return self._fail("Failed to grab frame")

        h, w = frame.shape[:2]
        now = self.now()
        date_str = now.strftime("%Y-%m-%dT%H-%M-%S")
        label = self.current_label
        folder = self.label_folder
        filename = self._unique_name(folder, f"{label}_{w}x{h}_{date_str}")
        path = os.path.join(folder, filename)

        ok, buf = cv2.imencode(".jpg", frame, [cv2.IMWRITE_JPEG_QUALITY, JPEG_QUALITY])
        if not ok:
            return self._fail(f"Could not encode {w}x{h} frame as JPEG")
        try:
            os.makedirs(folder, exist_ok=True)
            with open(path, "wb") as fh:
                fh.write(buf.tobytes())
        except OSError as exc:
            return self._fail(f"Error saving image: {exc}")

        image_id = int(now.timestamp() * 1000)
        if self.images and image_id <= self.images[-1].id:
            image_id = self.images[-1].id + 1

        self.images.append(CapturedImage(
            id=image_id,
            label=label,
            filename=filename,
            path=path,
            resolution=f"{w}x{h}",
            timestamp=now.isoformat(),
            scenario=self.scenario,
            location=dict(self.location) if self.location else dict(self.manual),
        ))
        self.last_error = ""
        log.info(f"Saved: {path}")
        return True

    def remove_image(self, image_id):
        """Drop a record from the session. The file on disk is left alone."""
        before = len(self.images)
        self.images = [img for img in self.images if img.id != image_id]
        return len(self.images) != before

    def images_by_label(self):
        grouped = {}
        for img in self.images:
            grouped.setdefault(img.label, []).append(img)
        return grouped

    # ── Helpers ───────────────────────────────────────────────────────────────

    def _fail(self, reason):
        self.last_error = reason
        log.warning(reason)
        return False

    @staticmethod
    def _unique_name(folder, stem):
        name = f"{stem}.jpg"
        n = 1
        while os.path.exists(os.path.join(folder, name)):
            name = f"{stem}_{n}.jpg"
            n += 1
        return name
