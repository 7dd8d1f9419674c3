# Owns the OpenCV capture handle and switches it between resolutions

import cv2

from config import DEFAULT_CAMERA, DEFAULT_RESOLUTION, MAX_CAMERA_PROBE, WARMUP_FRAMES
from logger import log


def list_cameras(max_index=MAX_CAMERA_PROBE, capture_factory=cv2.VideoCapture):
    """Return the indices of cameras that open, probing 0..max_index-1."""
    found = []
    for index in range(max_index):
        cap = capture_factory(index)
        try:
            if cap.isOpened():
                found.append(index)
        finally:
            cap.release()
    log.debug(f"Cameras found: {found}")
    return found


class CameraController:
    """
    start_camera() closes any open stream and reopens it at the requested
    resolution. The driver may pick the nearest mode it supports; the mode it
    actually delivers is kept in `resolution`.
    """

    def __init__(self, index=DEFAULT_CAMERA, capture_factory=cv2.VideoCapture):
        self.index = index
        self._factory = capture_factory
        self._cap = None
        self.requested = DEFAULT_RESOLUTION
        self.resolution = None

    @property
    def is_active(self):
        return self._cap is not None

    def start_camera(self, width, height):
        self.stop()
        self.requested = (width, height)

        cap = self._factory(self.index)
        if not cap.isOpened():
            log.error(f"Could not open camera {self.index}")
            cap.release()
            return False

        cap.set(cv2.CAP_PROP_FRAME_WIDTH,  width)
        cap.set(cv2.CAP_PROP_FRAME_HEIGHT, height)

        frame = None
        for _ in range(WARMUP_FRAMES):
            ret, frame = cap.read()
            if not ret:
                frame = None
        if frame is None:
            log.error(f"Camera {self.index} opened but returned no frames at {width}x{height}")
            cap.release()
            return False

        self._cap = cap
        h, w = frame.shape[:2]
        self.resolution = (w, h)
        if self.resolution != self.requested:
            log.warning(f"Requested {width}x{height}, camera delivers {w}x{h}")
        log.info(f"Camera {self.index} started at {w}x{h}")
        return True

    def stop(self):
        if self._cap is not None:
            self._cap.release()
            self._cap = None
            self.resolution = None
            log.debug(f"Camera {self.index} released")

    def read_frame(self):
        """Latest BGR frame, or None if the camera is inactive or the grab failed."""
        if self._cap is None:
            return None
        ret, frame = self._cap.read()
        if not ret:
            return None
        return frame

    def select(self, index):
        """Switch to another device, restarting at the same resolution if streaming."""
        if index == self.index:
            return True
        was_active = self.is_active
        self.stop()
        self.index = index
        if was_active:
            return self.start_camera(*self.requested)
        return True
