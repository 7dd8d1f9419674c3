"""
Labeled Camera Capture — operator GUI

Workflow:
  Pick project folder + label → Start Camera → Capture (single shot)
  or configure resolutions/counts → Start Batch Capture → Export Metadata

Run: python run_gui.py [--camera N] [--project DIR] [--label NAME]

Uses PyQt6 for GUI. Preview and batch timers share the main thread, so the
OpenCV capture handle never crosses threads.
"""

import os
import sys

import cv2
from PyQt6.QtCore import Qt, QTimer
from PyQt6.QtGui import QFont, QImage, QPixmap
from PyQt6.QtWidgets import (
    QApplication, QCheckBox, QComboBox, QDoubleSpinBox, QFileDialog, QFormLayout,
    QGroupBox, QHBoxLayout, QHeaderView, QLabel, QLineEdit, QListWidget,
    QListWidgetItem, QMainWindow, QProgressBar, QPushButton, QSizePolicy, QSpinBox,
    QTableWidget, QVBoxLayout, QWidget,
)

from batch_scheduler import BatchCaptureError, BatchScheduler, BatchStatus, CaptureJobSpec
from camera import CameraController, list_cameras
from capture_session import CaptureSession, lookup_location
from clock import QtClock
from config import (
    CAPTURE_DELAY_STEP, DEFAULT_CAPTURE_DELAY, DEFAULT_RESOLUTION, MIN_CAPTURE_DELAY,
    PREVIEW_INTERVAL, RESOLUTIONS, build_gui_parser,
)
from logger import log, setup_logging
from metadata import MetadataExportError, default_metadata_path, export_metadata

GALLERY_SIZE = 20   # most recent captures listed
MAX_COUNT    = 9999


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------
def frame_to_qimage(frame):
    """Convert BGR numpy frame to an owned QImage."""
    rgb = cv2.cvtColor(frame, cv2.COLOR_BGR2RGB)
    rh, rw, ch = rgb.shape
    return QImage(rgb.data, rw, rh, ch * rw, QImage.Format.Format_RGB888).copy()


def batch_specs_from_rows(rows):
    """rows: iterable of (width, height, enabled, count) → enabled CaptureJobSpecs."""
    return [CaptureJobSpec(w, h, count) for w, h, enabled, count in rows if enabled and count > 0]


# ---------------------------------------------------------------------------
# Main Window
# ---------------------------------------------------------------------------
class MainWindow(QMainWindow):
    def __init__(self, camera, session):
        super().__init__()
        self.setWindowTitle("Camera Capture for TensorFlow Training")
        self.resize(1400, 860)

        self.camera  = camera
        self.session = session
        self.clock   = QtClock(self)
        self.scheduler = BatchScheduler(
            start_camera=self._batch_start_camera,
            capture_image=self._batch_capture,
            clock=self.clock,
            on_progress=self._on_batch_progress,
            on_completed=self._on_batch_completed,
            on_stopped=self._on_batch_stopped,
            on_item_skipped=self._on_batch_skipped,
        )

        self.preview_timer = QTimer(self)
        self.preview_timer.timeout.connect(self._on_preview_tick)

        self._build_ui()
        self._apply_state()

    # ── UI Construction ──────────────────────────────────────────────────────

    def _build_ui(self):
        central = QWidget()
        self.setCentralWidget(central)
        root = QHBoxLayout(central)
        root.setContentsMargins(16, 16, 16, 16)
        root.setSpacing(16)
        root.addWidget(self._build_left_panel(),  stretch=0)
        root.addWidget(self._build_right_panel(), stretch=1)

    def _build_left_panel(self):
        panel = QWidget()
        panel.setFixedWidth(380)
        layout = QVBoxLayout(panel)
        layout.setSpacing(12)
        layout.setContentsMargins(0, 0, 0, 0)

        # Project / label
        project_box = QGroupBox("Project")
        form = QFormLayout(project_box)

        folder_row = QHBoxLayout()
        self.folder_edit = QLineEdit(self.session.project_folder)
        self.folder_edit.setReadOnly(True)
        self.folder_edit.setPlaceholderText("No folder selected")
        self.btn_folder = QPushButton("Browse…")
        self.btn_folder.clicked.connect(self._on_select_folder)
        folder_row.addWidget(self.folder_edit)
        folder_row.addWidget(self.btn_folder)

        self.label_combo = QComboBox()
        self.label_combo.addItem("")
        self.label_combo.addItems(self.session.labels)
        self.label_combo.setCurrentText(self.session.current_label)
        self.label_combo.currentTextChanged.connect(self._on_label_changed)

        label_row = QHBoxLayout()
        self.new_label_edit = QLineEdit()
        self.new_label_edit.setPlaceholderText("New label")
        self.new_label_edit.returnPressed.connect(self._on_add_label)
        self.btn_add_label = QPushButton("Add")
        self.btn_add_label.clicked.connect(self._on_add_label)
        label_row.addWidget(self.new_label_edit)
        label_row.addWidget(self.btn_add_label)

        self.scenario_edit = QLineEdit(self.session.scenario)
        self.scenario_edit.setPlaceholderText("e.g. indoor, low light")
        self.scenario_edit.textChanged.connect(self._on_scenario_changed)

        form.addRow("Folder:",    folder_row)
        form.addRow("Label:",     self.label_combo)
        form.addRow("",           label_row)
        form.addRow("Scenario:",  self.scenario_edit)
        layout.addWidget(project_box)

        # Location
        location_box = QGroupBox("Location")
        loc_form = QFormLayout(location_box)
        loc = self.session.location
        self.location_label = QLabel(
            f"{loc['city']}, {loc['country']} ({loc['latitude']}, {loc['longitude']})" if loc
            else "Location unavailable — manual entry used"
        )
        self.location_label.setWordWrap(True)
        self.building_edit = QLineEdit()
        self.floor_edit    = QLineEdit()
        self.room_edit     = QLineEdit()
        for w in (self.building_edit, self.floor_edit, self.room_edit):
            w.textChanged.connect(self._on_manual_location_changed)
        loc_form.addRow(self.location_label)
        loc_form.addRow("Building:", self.building_edit)
        loc_form.addRow("Floor:",    self.floor_edit)
        loc_form.addRow("Room:",     self.room_edit)
        layout.addWidget(location_box)

        # Camera
        camera_box = QGroupBox("Camera")
        cam_form = QFormLayout(camera_box)
        self.camera_combo = QComboBox()
        cameras = list_cameras()
        for index in cameras:
            self.camera_combo.addItem(f"Camera {index + 1}", index)
        if self.camera.index in cameras:
            self.camera_combo.setCurrentIndex(cameras.index(self.camera.index))
        self.camera_combo.currentIndexChanged.connect(self._on_camera_changed)

        self.res_combo = QComboBox()
        for w, h, text in RESOLUTIONS:
            self.res_combo.addItem(text, (w, h))
        self.res_combo.setCurrentIndex([(w, h) for w, h, _ in RESOLUTIONS].index(DEFAULT_RESOLUTION))
        self.res_combo.currentIndexChanged.connect(self._on_resolution_changed)

        cam_buttons = QHBoxLayout()
        self.btn_camera = QPushButton("Start Camera")
        self.btn_camera.clicked.connect(self._on_toggle_camera)
        self.btn_capture = QPushButton("Capture")
        self.btn_capture.setFont(QFont("Arial", 11, QFont.Weight.Bold))
        self.btn_capture.clicked.connect(self._on_capture)
        cam_buttons.addWidget(self.btn_camera)
        cam_buttons.addWidget(self.btn_capture)

        cam_form.addRow("Device:",     self.camera_combo)
        cam_form.addRow("Resolution:", self.res_combo)
        cam_form.addRow(cam_buttons)
        layout.addWidget(camera_box)

        layout.addWidget(self._build_batch_box(), stretch=1)

        self.btn_export = QPushButton("Export Metadata")
        self.btn_export.setMinimumHeight(36)
        self.btn_export.clicked.connect(self._on_export_metadata)
        layout.addWidget(self.btn_export)

        return panel

    def _build_batch_box(self):
        box = QGroupBox("Automatic Capture")
        layout = QVBoxLayout(box)

        self.res_table = QTableWidget(len(RESOLUTIONS), 3)
        self.res_table.setHorizontalHeaderLabels(["Enable", "Resolution", "Count"])
        self.res_table.verticalHeader().setVisible(False)
        self.res_table.horizontalHeader().setSectionResizeMode(1, QHeaderView.ResizeMode.Stretch)
        self._res_rows = []
        for row, (w, h, text) in enumerate(RESOLUTIONS):
            check = QCheckBox()
            count = QSpinBox()
            count.setRange(0, MAX_COUNT)
            count.setEnabled(False)
            check.toggled.connect(lambda on, c=count: self._on_row_toggled(on, c))
            count.valueChanged.connect(lambda value, c=check: self._on_row_count(value, c))
            self.res_table.setCellWidget(row, 0, check)
            self.res_table.setCellWidget(row, 1, QLabel(text))
            self.res_table.setCellWidget(row, 2, count)
            self._res_rows.append((w, h, check, count))
        layout.addWidget(self.res_table)

        self.total_label = QLabel("Total Images: 0")
        layout.addWidget(self.total_label)

        opts = QFormLayout()
        self.delay_spin = QDoubleSpinBox()
        self.delay_spin.setRange(MIN_CAPTURE_DELAY, 3600.0)
        self.delay_spin.setSingleStep(CAPTURE_DELAY_STEP)
        self.delay_spin.setValue(DEFAULT_CAPTURE_DELAY)
        self.delay_spin.setSuffix(" s")
        self.randomize_check = QCheckBox("Randomize capture order")
        opts.addRow("Delay between captures:", self.delay_spin)
        opts.addRow(self.randomize_check)
        layout.addLayout(opts)

        buttons = QHBoxLayout()
        self.btn_batch_start = QPushButton("Start Batch")
        self.btn_batch_start.clicked.connect(self._on_start_batch)
        self.btn_batch_pause = QPushButton("Pause")
        self.btn_batch_pause.clicked.connect(self._on_pause_batch)
        self.btn_batch_stop  = QPushButton("Stop Batch")
        self.btn_batch_stop.clicked.connect(self._on_stop_batch)
        for b in (self.btn_batch_start, self.btn_batch_pause, self.btn_batch_stop):
            buttons.addWidget(b)
        layout.addLayout(buttons)
        return box

    def _build_right_panel(self):
        panel = QWidget()
        layout = QVBoxLayout(panel)
        layout.setSpacing(12)
        layout.setContentsMargins(0, 0, 0, 0)

        self.camera_label = QLabel("Camera inactive")
        self.camera_label.setAlignment(Qt.AlignmentFlag.AlignCenter)
        self.camera_label.setStyleSheet(
            "background-color: #1a1a1a; color: #666666; border-radius: 6px; font-size: 14px;"
        )
        self.camera_label.setSizePolicy(QSizePolicy.Policy.Expanding, QSizePolicy.Policy.Expanding)
        self.camera_label.setMinimumHeight(450)
        layout.addWidget(self.camera_label, stretch=1)

        self.batch_label = QLabel("")
        self.batch_label.setFont(QFont("Arial", 13))
        layout.addWidget(self.batch_label)

        self.progress_bar = QProgressBar()
        self.progress_bar.setRange(0, 1000)
        self.progress_bar.setValue(0)
        self.progress_bar.setMinimumHeight(26)
        self.progress_bar.setFormat("0.0% Complete")
        layout.addWidget(self.progress_bar)

        gallery_row = QHBoxLayout()
        self.image_count_label = QLabel("Images: 0")
        self.btn_delete_image = QPushButton("Remove Selected")
        self.btn_delete_image.clicked.connect(self._on_delete_image)
        gallery_row.addWidget(self.image_count_label)
        gallery_row.addStretch()
        gallery_row.addWidget(self.btn_delete_image)
        layout.addLayout(gallery_row)

        self.gallery = QListWidget()
        self.gallery.setMaximumHeight(140)
        layout.addWidget(self.gallery)

        self.status_label = QLabel("Ready")
        self.status_label.setWordWrap(True)
        self.status_label.setFont(QFont("Arial", 11))
        self.status_label.setStyleSheet("color: #555555;")
        layout.addWidget(self.status_label)

        return panel

    # ── State ─────────────────────────────────────────────────────────────────

    def _apply_state(self):
        batch   = self.scheduler.is_active
        cam_on  = self.camera.is_active
        paused  = self.scheduler.status is BatchStatus.PAUSED

        # Batch owns the camera while running or paused
        for w in (self.btn_camera, self.camera_combo, self.res_combo, self.btn_folder,
                  self.label_combo, self.btn_add_label, self.new_label_edit, self.res_table,
                  self.delay_spin, self.randomize_check, self.btn_export):
            w.setEnabled(not batch)
        self.btn_capture.setEnabled(cam_on and not batch)
        self.btn_batch_start.setEnabled(cam_on and not batch and self._total_images() > 0)
        self.btn_batch_pause.setEnabled(batch)
        self.btn_batch_pause.setText("Resume" if paused else "Pause")
        self.btn_batch_stop.setEnabled(batch)
        self.btn_delete_image.setEnabled(not batch and bool(self.session.images))
        self.btn_export.setEnabled(not batch and bool(self.session.images) and bool(self.session.project_folder))

        self.btn_camera.setText("Stop Camera" if cam_on else "Start Camera")
        if cam_on and not self.preview_timer.isActive():
            self.preview_timer.start(PREVIEW_INTERVAL)
        elif not cam_on:
            self.preview_timer.stop()
            self.camera_label.setPixmap(QPixmap())
            self.camera_label.setText("Camera inactive")

    def _set_status(self, message):
        self.status_label.setText(message or "Ready")

    def _total_images(self):
        return sum(count.value() for _, _, check, count in self._res_rows if check.isChecked())

    # ── Camera ────────────────────────────────────────────────────────────────

    def _start_camera(self, width, height):
        ok = self.camera.start_camera(width, height)
        if ok:
            w, h = self.camera.resolution
            self._set_status(f"Camera started at resolution {w}x{h}")
        else:
            self._set_status(f"Error starting camera at {width}x{height}")
        self._apply_state()
        return ok

    def _on_toggle_camera(self):
        if self.camera.is_active:
            self.camera.stop()
            self._set_status("Camera stopped")
            self._apply_state()
            return
        self._start_camera(*self.res_combo.currentData())

    def _on_camera_changed(self, _):
        index = self.camera_combo.currentData()
        if index is None:
            return
        if not self.camera.select(index):
            self._set_status(f"Error starting camera {index + 1}")
        self._apply_state()

    def _on_resolution_changed(self, _):
        if self.camera.is_active:
            self._start_camera(*self.res_combo.currentData())

    def _on_preview_tick(self):
        frame = self.camera.read_frame()
        if frame is None:
            return
        pixmap = QPixmap.fromImage(frame_to_qimage(frame))
        self.camera_label.setPixmap(
            pixmap.scaled(
                self.camera_label.size(),
                Qt.AspectRatioMode.KeepAspectRatio,
                Qt.TransformationMode.SmoothTransformation,
            )
        )

    # ── Session ───────────────────────────────────────────────────────────────

    def _on_select_folder(self):
        folder = QFileDialog.getExistingDirectory(self, "Select project folder", self.session.project_folder)
        if not folder:
            return
        self.session.set_project_folder(folder)
        self.folder_edit.setText(self.session.project_folder)
        self._set_status(f"Project folder set to: {self.session.project_folder}")
        self._apply_state()

    def _on_label_changed(self, text):
        self.session.select_label(text)
        self._set_status(f"Saving to: {self.session.label_folder}" if self.session.label_folder else "")

    def _on_add_label(self):
        text = self.new_label_edit.text()
        try:
            existed = text.strip() in self.session.labels
            label = self.session.add_label(text)
        except ValueError as exc:
            self._set_status(str(exc))
            return
        if not existed:
            self.label_combo.addItem(label)
        self.label_combo.setCurrentText(label)
        self.new_label_edit.clear()
        self._set_status(f'Label "{label}" already exists' if existed else f"Added new label: {label}")

    def _on_scenario_changed(self, text):
        self.session.scenario = text

    def _on_manual_location_changed(self, _):
        self.session.set_manual_location(
            self.building_edit.text(), self.floor_edit.text(), self.room_edit.text()
        )

    def _refresh_gallery(self):
        self.gallery.clear()
        for img in reversed(self.session.images[-GALLERY_SIZE:]):
            item = QListWidgetItem(f"{img.label}  {img.resolution}  {img.filename}")
            item.setData(Qt.ItemDataRole.UserRole, img.id)
            self.gallery.addItem(item)
        self.image_count_label.setText(f"Images: {len(self.session.images)}")

    def _on_delete_image(self):
        item = self.gallery.currentItem()
        if item is None:
            return
        if self.session.remove_image(item.data(Qt.ItemDataRole.UserRole)):
            self._set_status("Image deleted")
        self._refresh_gallery()
        self._apply_state()

    # ── Capture ───────────────────────────────────────────────────────────────

    def _on_capture(self):
        if self.scheduler.is_active:
            return
        if self.session.capture_image():
            self._set_status(f"Image captured and saved to {self.session.label_folder}")
        else:
            self._set_status(self.session.last_error)
        self._refresh_gallery()
        self._apply_state()

    def _on_export_metadata(self):
        path, _ = QFileDialog.getSaveFileName(
            self, "Save Metadata", default_metadata_path(self.session), "JSON Files (*.json)"
        )
        if not path:
            self._set_status("Error exporting metadata: Operation canceled")
            return
        try:
            written = export_metadata(self.session, path)
        except MetadataExportError as exc:
            self._set_status(str(exc))
            return
        self._set_status(f"Metadata exported to {written}")

    # ── Batch ─────────────────────────────────────────────────────────────────

    def _on_row_toggled(self, enabled, count):
        count.setEnabled(enabled)
        # Enabling a row with no count asks for at least one image
        if enabled and count.value() == 0:
            count.setValue(1)
        self._update_total()

    def _on_row_count(self, value, check):
        check.setChecked(value > 0)
        self._update_total()

    def _update_total(self):
        self.total_label.setText(f"Total Images: {self._total_images()}")
        self._apply_state()

    def _batch_start_camera(self, width, height):
        return self._start_camera(width, height)

    def _batch_capture(self):
        ok = self.session.capture_image()
        if ok:
            self._refresh_gallery()
        return ok

    def _on_start_batch(self):
        reason = self.session.not_ready_reason()
        if reason:
            self._set_status(reason if self.camera.is_active else "Please start the camera first")
            return
        specs = batch_specs_from_rows(
            (w, h, check.isChecked(), count.value()) for w, h, check, count in self._res_rows
        )
        try:
            self.scheduler.start(specs, self.delay_spin.value(), self.randomize_check.isChecked())
        except BatchCaptureError as exc:
            self._set_status(str(exc))
        self._apply_state()

    def _on_pause_batch(self):
        self.scheduler.toggle_pause()
        paused = self.scheduler.status is BatchStatus.PAUSED
        self._set_status("Batch capture paused" if paused else "Batch capture resumed")
        self._apply_state()

    def _on_stop_batch(self):
        if self.scheduler.is_active:
            self.scheduler.stop()

    def _on_batch_progress(self, progress):
        self.progress_bar.setValue(int(progress.percent * 10))
        self.progress_bar.setFormat(f"{progress.percent:.1f}% Complete")
        if progress.current_resolution:
            self.batch_label.setText(
                f"Capturing {progress.current_index}/{progress.total_for_resolution} "
                f"at {progress.current_resolution}  ({progress.completed_count} saved, "
                f"{progress.skipped_count} skipped)"
            )

    def _on_batch_skipped(self, item, error):
        self._set_status(f"Skipped: {error}")

    def _on_batch_completed(self, completed):
        self._set_status(f"Batch capture complete. Captured {completed} images.")
        self._apply_state()

    def _on_batch_stopped(self, completed):
        self.progress_bar.setValue(0)
        self.progress_bar.setFormat("0.0% Complete")
        self._set_status(f"Batch capture stopped. Captured {completed} images.")
        self._apply_state()

    # ── Cleanup ───────────────────────────────────────────────────────────────

    def closeEvent(self, event):
        if self.scheduler.is_active:
            self.scheduler.stop()
        self.clock.cancel_all()
        self.preview_timer.stop()
        self.camera.stop()
        event.accept()


# ---------------------------------------------------------------------------
# Entry Point
# ---------------------------------------------------------------------------
def main(argv=None):
    args = build_gui_parser().parse_args(argv)
    setup_logging(debug=args.debug)

    camera  = CameraController(args.camera)
    session = CaptureSession(
        camera,
        scenario=args.scenario,
        location=None if args.no_location else lookup_location(),
    )
    if args.project:
        os.makedirs(args.project, exist_ok=True)
        session.set_project_folder(args.project)
    if args.label:
        session.add_label(args.label)

    app = QApplication(sys.argv[:1])
    app.setStyle("Fusion")
    window = MainWindow(camera, session)
    window.show()
    log.info("Capture GUI started")
    return app.exec()


if __name__ == "__main__":
    sys.exit(main())
