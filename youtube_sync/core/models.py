"""Data models for sync operations."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Iterator, List


class IncompatibleResourceError(Exception):
    """Raised when a resource (or the snapshot fetched for it) is of an unexpected kind."""
    pass


class ResourceKind(str, Enum):
    CHANNEL = "channel"
    PLAYLIST = "playlist"
    VIDEO = "video"


class Decision(str, Enum):
    """How a video ended up in the merged collection."""
    NEW = "new"              # remote only
    UPDATED = "updated"      # etag changed, remote wins
    UNCHANGED = "unchanged"  # etags equal, local kept
    PINNED = "pinned"        # etag changed but sync disabled, local kept


@dataclass
class Video:
    """A video as stored by the client."""
    youtube_id: str
    etag: str
    title: str = ""
    sync_enabled: bool = True

    def youtube_info(self) -> dict:
        return {"youtube_id": self.youtube_id, "etag": self.etag}


@dataclass
class Channel:
    """A channel as stored by the client."""
    youtube_id: str
    synced_at: datetime | str | None = None
    sync_enabled: bool = True
    videos: List[Video] = field(default_factory=list)

    kind = ResourceKind.CHANNEL

    def youtube_info(self) -> dict:
        return {"youtube_id": self.youtube_id}


@dataclass
class Playlist(Channel):
    """A playlist as stored by the client. Same shape as a channel."""

    kind = ResourceKind.PLAYLIST


@dataclass
class RemoteVideo:
    """A video parsed from the YouTube API."""
    id: str
    etag: str
    title: str
    description: str = ""
    channel_id: str = ""
    published_at: datetime | None = None
    thumbnail_url: str | None = None

    def youtube_info(self) -> dict:
        return {"id": self.id, "etag": self.etag}


@dataclass
class RemoteChannel:
    """A channel snapshot from the YouTube API."""
    id: str
    etag: str
    title: str
    videos: List[RemoteVideo] = field(default_factory=list)

    kind = ResourceKind.CHANNEL

    def set_videos(self, videos) -> None:
        self.videos = list(videos)


@dataclass
class RemotePlaylist(RemoteChannel):
    """A playlist snapshot from the YouTube API."""

    kind = ResourceKind.PLAYLIST


class VideoCollection:
    """Ordered, append-only list of merged videos with the decision behind each one."""

    def __init__(self):
        self._entries: list[tuple[Video | RemoteVideo, Decision]] = []

    def append(self, video: Video | RemoteVideo, decision: Decision) -> None:
        self._entries.append((video, decision))

    def all(self) -> list[Video | RemoteVideo]:
        return [video for video, _ in self._entries]

    def entries(self) -> list[tuple[Video | RemoteVideo, Decision]]:
        return list(self._entries)

    def count(self, decision: Decision) -> int:
        return sum(1 for _, d in self._entries if d == decision)

    def ids(self) -> list[str]:
        return [video_id(video) for video, _ in self._entries]

    def __iter__(self) -> Iterator[Video | RemoteVideo]:
        return iter(self.all())

    def __len__(self) -> int:
        return len(self._entries)

    def __getitem__(self, index: int) -> Video | RemoteVideo:
        return self._entries[index][0]

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, VideoCollection):
            return NotImplemented
        return self._entries == other._entries

    def __repr__(self) -> str:
        return f"VideoCollection({self.ids()!r})"


def video_id(video: Video | RemoteVideo) -> str:
    """Remote id of a local or remote video."""
    if isinstance(video, RemoteVideo):
        return video.id
    return video.youtube_id


@dataclass
class SyncResult:
    """Result of reconciling one resource."""
    kind: ResourceKind
    remote_id: str
    snapshot: RemoteChannel | RemoteVideo | None = None
    videos: VideoCollection | None = None
    video: RemoteVideo | None = None
    dropped: List[str] = field(default_factory=list)
    full: bool = True  # False when the snapshot only covers changes since the last sync
    duration: float = 0.0

    @property
    def added(self) -> int:
        return self.videos.count(Decision.NEW) if self.videos is not None else 0

    @property
    def updated(self) -> int:
        if self.videos is not None:
            return self.videos.count(Decision.UPDATED)
        return 1 if self.video is not None else 0

    @property
    def kept(self) -> int:
        return self.videos.count(Decision.UNCHANGED) if self.videos is not None else 0

    @property
    def pinned(self) -> int:
        return self.videos.count(Decision.PINNED) if self.videos is not None else 0

    @property
    def changed(self) -> bool:
        """True when applying this result would alter local data."""
        return bool(self.added or self.updated or self.dropped)

    @property
    def value(self) -> VideoCollection | RemoteVideo | None:
        """What ``Synchronizer.sync`` hands back to callers."""
        if self.kind == ResourceKind.VIDEO:
            return self.video
        return self.videos
