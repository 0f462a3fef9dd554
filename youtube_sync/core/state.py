"""Local resource state stored as JSON"""

import json
import logging
import os
import tempfile
from datetime import datetime, timezone
from pathlib import Path

from youtube_sync.core.models import (
    Channel, IncompatibleResourceError, Playlist, RemoteVideo, ResourceKind,
    SyncResult, Video,
)

logger = logging.getLogger(__name__)

_COLLECTIONS = {
    ResourceKind.CHANNEL.value: Channel,
    ResourceKind.PLAYLIST.value: Playlist,
}


def _video_from_dict(data: dict) -> Video:
    return Video(
        youtube_id=data["youtube_id"],
        etag=data.get("etag", ""),
        title=data.get("title", ""),
        sync_enabled=data.get("sync_enabled", True),
    )


def _video_to_dict(video: Video) -> dict:
    return {
        "youtube_id": video.youtube_id,
        "etag": video.etag,
        "title": video.title,
        "sync_enabled": video.sync_enabled,
    }


def resource_from_dict(data: dict) -> Channel | Playlist | Video:
    kind = data.get("kind")

    if kind == ResourceKind.VIDEO.value:
        return _video_from_dict(data)

    cls = _COLLECTIONS.get(kind)
    if cls is None:
        raise IncompatibleResourceError(f"Unknown resource kind: {kind!r}")

    return cls(
        youtube_id=data["youtube_id"],
        synced_at=data.get("synced_at"),
        sync_enabled=data.get("sync_enabled", True),
        videos=[_video_from_dict(v) for v in data.get("videos", [])],
    )


def resource_to_dict(resource: Channel | Playlist | Video) -> dict:
    if isinstance(resource, Video):
        return {"kind": ResourceKind.VIDEO.value, **_video_to_dict(resource)}

    synced_at = resource.synced_at
    if isinstance(synced_at, datetime):
        synced_at = synced_at.isoformat()

    return {
        "kind": resource.kind.value,
        "youtube_id": resource.youtube_id,
        "synced_at": synced_at,
        "sync_enabled": resource.sync_enabled,
        "videos": [_video_to_dict(v) for v in resource.videos],
    }


def load_resource(path: Path) -> Channel | Playlist | Video:
    """Load a local resource. Missing or unreadable files raise."""
    data = json.loads(path.read_text(encoding="utf-8"))
    resource = resource_from_dict(data)
    logger.debug(f"Loaded {data.get('kind')} {resource.youtube_id} from {path}")
    return resource


def save_resource(path: Path, resource: Channel | Playlist | Video) -> None:
    """Write a local resource atomically."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, temp_path = tempfile.mkstemp(dir=path.parent, prefix=".resource_", suffix=".tmp")
    try:
        with os.fdopen(fd, 'w', encoding='utf-8') as f:
            json.dump(resource_to_dict(resource), f, indent=2)
        os.replace(temp_path, path)
    except Exception:
        if os.path.exists(temp_path):
            os.unlink(temp_path)
        raise


def _to_local(video: Video | RemoteVideo, previous: Video | None = None) -> Video:
    if isinstance(video, Video):
        return video
    return Video(
        youtube_id=video.id,
        etag=video.etag,
        title=video.title,
        sync_enabled=previous.sync_enabled if previous else True,
    )


def apply_result(resource: Channel | Playlist | Video,
                 result: SyncResult) -> Channel | Playlist | Video:
    """Build the updated local resource from a sync result."""
    now = datetime.now(timezone.utc)

    if isinstance(resource, Video):
        if result.video is None:
            return resource
        return _to_local(result.video, resource)

    previous = {v.youtube_id: v for v in resource.videos}
    videos = [
        _to_local(v, previous.get(v.id) if isinstance(v, RemoteVideo) else None)
        for v in (result.videos or [])
    ]

    if not result.full:
        # An incremental snapshot says nothing about older videos: keep them
        merged = {v.youtube_id for v in videos}
        videos.extend(v for v in resource.videos if v.youtube_id not in merged)

    return type(resource)(
        youtube_id=resource.youtube_id,
        synced_at=now,
        sync_enabled=resource.sync_enabled,
        videos=videos,
    )
