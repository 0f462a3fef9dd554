"""Status file writer for dashboards"""

import json
import os
import tempfile
from datetime import datetime, timezone
from pathlib import Path

from youtube_sync.core.models import SyncResult


def write_status(result: SyncResult, status_file: Path) -> bool:
    data = {
        "status": "success",
        "last_sync_time": datetime.now(timezone.utc).isoformat(),
        "kind": result.kind.value,
        "youtube_id": result.remote_id,
        "videos_added": result.added,
        "videos_updated": result.updated,
        "videos_unchanged": result.kept,
        "videos_pinned": result.pinned,
        "videos_dropped": len(result.dropped),
        "duration": round(result.duration, 3),
        "last_error": None,
    }
    return _atomic_write(status_file, data)


def write_failure(error: str, status_file: Path) -> bool:
    data = {
        "status": "failed",
        "last_sync_time": datetime.now(timezone.utc).isoformat(),
        "last_error": error,
    }
    return _atomic_write(status_file, data)


def write_running_status(status_file: Path) -> bool:
    data = {
        "status": "running",
        "last_sync_time": datetime.now(timezone.utc).isoformat(),
        "last_error": None,
    }
    return _atomic_write(status_file, data)


def _atomic_write(path: Path, data: dict) -> bool:
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, temp_path = tempfile.mkstemp(dir=path.parent, prefix=".status_", suffix=".tmp")
        try:
            with os.fdopen(fd, 'w', encoding='utf-8') as f:
                json.dump(data, f, indent=2)
            os.replace(temp_path, path)
            return True
        except Exception:
            if os.path.exists(temp_path):
                os.unlink(temp_path)
            raise
    except Exception:
        return False
