"""
Dataset metadata export.

The document groups the session's images by label:

    projectInfo  name, path, dateCreated, totalImages
    classes      one entry per label with its image count and folder
    images       one record per captured image
"""

import json
import os
from datetime import datetime, timezone

from config import METADATA_FILENAME
from logger import log


class MetadataExportError(Exception):
    pass


def build_metadata(session, created=None):
    if not session.images:
        raise MetadataExportError("No images captured yet")
    if not session.project_folder:
        raise MetadataExportError("Please select a project folder first")

    created = created or datetime.now(timezone.utc)
    project = session.project_folder
    grouped = session.images_by_label()

    return {
        "projectInfo": {
            "name": os.path.basename(os.path.normpath(project)),
            "path": project,
            "dateCreated": created.isoformat(),
            "totalImages": len(session.images),
        },
        "classes": [
            {"name": label, "count": len(images), "path": os.path.join(project, label) + os.sep}
            for label, images in grouped.items()
        ],
        "images": [img.to_dict() for img in session.images],
    }


def default_metadata_path(session):
    return os.path.join(session.project_folder, METADATA_FILENAME)


def export_metadata(session, path=None):
    """Write the metadata document as indented JSON and return the path written."""
    data = build_metadata(session)
    path = path or default_metadata_path(session)
    parent = os.path.dirname(os.path.abspath(path))
    try:
        os.makedirs(parent, exist_ok=True)
        with open(path, "w", encoding="utf8") as fh:
            json.dump(data, fh, indent=2)
    except OSError as exc:
        raise MetadataExportError(f"Error exporting metadata: {exc}") from exc
    log.info(f"Metadata exported to {path} ({data['projectInfo']['totalImages']} images)")
    return path
