import json
import os
from datetime import datetime, timezone

import pytest

from capture_session import CaptureSession
from metadata import MetadataExportError, build_metadata, default_metadata_path, export_metadata


@pytest.fixture
def session(frame_camera, tmp_path):
    s = CaptureSession(frame_camera)
    s.set_project_folder(str(tmp_path / "pets"))
    s.add_label("cat")
    s.capture_image()
    s.capture_image()
    s.add_label("dog")
    s.capture_image()
    return s


def test_build_metadata_groups_by_label(session):
    created = datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
    data = build_metadata(session, created=created)

    info = data["projectInfo"]
    assert info["name"] == "pets"
    assert info["path"] == session.project_folder
    assert info["dateCreated"] == created.isoformat()
    assert info["totalImages"] == 3

    assert [(c["name"], c["count"]) for c in data["classes"]] == [("cat", 2), ("dog", 1)]
    assert data["classes"][0]["path"] == os.path.join(session.project_folder, "cat") + os.sep

    first = data["images"][0]
    assert set(first) == {"id", "label", "filename", "path", "resolution", "timestamp", "scenario", "location"}
    assert first["resolution"] == "640x480"


def test_export_writes_default_path(session):
    path = export_metadata(session)
    assert path == default_metadata_path(session)
    assert os.path.basename(path) == "tensorflow_metadata.json"
    with open(path, encoding="utf8") as fh:
        data = json.load(fh)
    assert data["projectInfo"]["totalImages"] == 3
    assert len(data["images"]) == 3


def test_export_to_custom_path(session, tmp_path):
    target = tmp_path / "out" / "meta.json"
    assert export_metadata(session, str(target)) == str(target)
    assert target.exists()


def test_export_requires_images(frame_camera, tmp_path):
    s = CaptureSession(frame_camera, project_folder=str(tmp_path))
    with pytest.raises(MetadataExportError, match="No images"):
        export_metadata(s)


def test_export_requires_project_folder(session):
    session.project_folder = ""
    with pytest.raises(MetadataExportError, match="project folder"):
        build_metadata(session)
