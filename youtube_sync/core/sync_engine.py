"""
Sync Engine

Reconciles a locally stored channel, playlist or video with a fresh
snapshot from the YouTube Data API.

Algorithm
---------
Collections (channels and playlists):

1. Request only what changed since the last sync (publishedAfter).
2. An empty answer is ambiguous ("nothing changed" vs "filter unsupported"),
   so re-request the full list once and use that instead.
3. Merge remote videos against an index of local videos:
   - no local match          -> remote video (new)
   - etags equal             -> local video
   - etags differ, sync on   -> remote video
   - etags differ, sync off  -> local video (local data is authoritative)
   Local-only videos are not carried into the result. After a full fetch
   they are reported as dropped; after an incremental one they were simply
   not part of the answer and are left alone.

Single videos: fetch the current representation and return it only when
sync is enabled and the etag changed.

Quota costs:
- channels.list / playlists.list / videos.list: 1 unit
- playlistItems.list: 1 unit
- search.list: 100 units
"""

import logging
import time
from datetime import datetime, timezone
from typing import Callable, Iterable, Protocol

from youtube_sync.core.models import (
    Channel, Decision, IncompatibleResourceError, Playlist, RemoteChannel,
    RemoteVideo, ResourceKind, SyncResult, Video, VideoCollection,
)

logger = logging.getLogger(__name__)


class YouTubeApiProtocol(Protocol):
    def channel(self, channel_id: str, since: str | None = None) -> RemoteChannel: ...
    def playlist(self, playlist_id: str, since: str | None = None) -> RemoteChannel: ...
    def video(self, video_id: str) -> RemoteVideo | None: ...


def format_synced_at(value: datetime | str) -> str:
    """Format a sync timestamp as ISO-8601 with offset, e.g. 2024-05-01T10:00:00+00:00."""
    if isinstance(value, str):
        value = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.isoformat(timespec="seconds")


def fetch_snapshot(fetch: Callable[..., RemoteChannel], youtube_id: str,
                   synced_at: datetime | str | None) -> tuple[RemoteChannel, bool]:
    """
    Fetch a collection snapshot, incremental first.

    Falls back to a single full fetch when the incremental one has no videos.
    Resources that were never synced go straight to the full fetch.
    Returns the snapshot and whether it is a full listing.
    """
    if synced_at is None:
        logger.debug(f"{youtube_id} never synced, fetching full snapshot")
        return fetch(youtube_id), True

    since = format_synced_at(synced_at)
    response = fetch(youtube_id, since)

    if isinstance(response, RemoteChannel) and not response.videos:
        logger.info(f"No videos for {youtube_id} since {since}, fetching full snapshot")
        return fetch(youtube_id), True

    return response, False


def tokens_equal(local: Video, remote: RemoteVideo) -> bool:
    """True when the remote video has not changed since it was stored locally."""
    return local.youtube_info()["etag"] == remote.youtube_info()["etag"]


def tokens_differ(local: Video, remote: RemoteVideo) -> bool:
    return not tokens_equal(local, remote)


def index_videos(videos: Iterable[Video]) -> dict[str, Video]:
    """Index local videos by YouTube id. The first of any duplicates wins."""
    index: dict[str, Video] = {}
    for video in videos:
        youtube_id = video.youtube_info()["youtube_id"]
        if youtube_id in index:
            logger.warning(f"Duplicate local video {youtube_id}, keeping first")
            continue
        index[youtube_id] = video
    return index


def merge_videos(local_videos: Iterable[Video],
                 remote_videos: Iterable[RemoteVideo]) -> VideoCollection:
    """Merge remote videos into local ones. Each remote video appears exactly once."""
    local_index = index_videos(local_videos)
    results = VideoCollection()

    for remote in remote_videos:
        local = local_index.get(remote.youtube_info()["id"])

        if local is None:
            results.append(remote, Decision.NEW)
        elif tokens_equal(local, remote):
            results.append(local, Decision.UNCHANGED)
        elif local.sync_enabled:
            results.append(remote, Decision.UPDATED)
        else:
            logger.debug(f"Sync disabled for {local.youtube_id}, keeping local copy")
            results.append(local, Decision.PINNED)

    return results


def _check_kind(resource, snapshot) -> None:
    """Raise if the fetched snapshot can't be reconciled with the local resource."""
    expected = resource.kind
    actual = getattr(snapshot, "kind", None)
    if not isinstance(snapshot, RemoteChannel) or actual != expected:
        raise IncompatibleResourceError(
            f"Expected {expected.value} snapshot for {resource.youtube_id}, "
            f"got {type(snapshot).__name__}"
        )


class Synchronizer:
    """Reconciles local resources with the YouTube API, one resource per call."""

    def __init__(self, api: YouTubeApiProtocol):
        self._api = api
        self._data: RemoteChannel | None = None

    @property
    def data(self) -> RemoteChannel | None:
        """The last successfully synced channel or playlist snapshot."""
        return self._data

    def get_youtube_id(self) -> str | None:
        """YouTube id of the last synced snapshot, None before the first sync."""
        return self._data.id if self._data is not None else None

    def sync(self, resource: Channel | Playlist | Video) -> VideoCollection | RemoteVideo | None:
        """
        Sync a resource.

        Returns the merged VideoCollection for channels and playlists, the
        remote video for a changed single video, or None when the video is
        unchanged or its sync is disabled. Raises IncompatibleResourceError
        (leaving held state untouched) when the resource or the snapshot
        fetched for it is of an unexpected kind.
        """
        result = self.reconcile(resource)
        if result.kind != ResourceKind.VIDEO:
            self._data = result.snapshot
        return result.value

    def reconcile(self, resource: Channel | Playlist | Video) -> SyncResult:
        """Like sync(), but returns the full SyncResult and keeps no state."""
        start = time.time()

        # Playlist first: it shares Channel's shape
        if isinstance(resource, Playlist):
            result = self._sync_collection(resource, self._api.playlist)
        elif isinstance(resource, Channel):
            result = self._sync_collection(resource, self._api.channel)
        elif isinstance(resource, Video):
            result = self._sync_video(resource)
        else:
            raise IncompatibleResourceError(
                f"Cannot sync {type(resource).__name__}: not a channel, playlist or video"
            )

        result.duration = time.time() - start
        return result

    def _sync_collection(self, resource: Channel,
                         fetch: Callable[..., RemoteChannel]) -> SyncResult:
        youtube_id = resource.youtube_info()["youtube_id"]

        response, full = fetch_snapshot(fetch, youtube_id, resource.synced_at)
        _check_kind(resource, response)

        logger.info(f"{resource.kind.value} {youtube_id}: {len(response.videos)} remote, "
                    f"{len(resource.videos)} local videos")

        videos = merge_videos(resource.videos, response.videos)
        remote_ids = set(videos.ids())
        local_only = [v.youtube_id for v in resource.videos if v.youtube_id not in remote_ids]
        dropped = local_only if full else []

        response.set_videos(videos)

        logger.info(f"Merged {youtube_id}: +{videos.count(Decision.NEW)} "
                    f"~{videos.count(Decision.UPDATED)} ={videos.count(Decision.UNCHANGED)} "
                    f"pinned {videos.count(Decision.PINNED)} "
                    f"dropped {len(dropped)} untouched {len(local_only) - len(dropped)}")

        return SyncResult(
            kind=resource.kind,
            remote_id=response.id,
            snapshot=response,
            videos=videos,
            dropped=dropped,
            full=full,
        )

    def _sync_video(self, resource: Video) -> SyncResult:
        youtube_id = resource.youtube_info()["youtube_id"]

        response = self._api.video(youtube_id)
        if not isinstance(response, RemoteVideo):
            # A deleted video comes back empty: the local and remote
            # resources are no longer the same kind of thing.
            raise IncompatibleResourceError(
                f"Expected video snapshot for {youtube_id}, got {type(response).__name__}"
            )

        changed = None
        if not resource.sync_enabled:
            logger.debug(f"Sync disabled for video {youtube_id}")
        elif tokens_differ(resource, response):
            logger.info(f"Video {youtube_id} changed ({resource.etag} -> {response.etag})")
            changed = response

        return SyncResult(
            kind=ResourceKind.VIDEO,
            remote_id=response.id,
            snapshot=response,
            video=changed,
        )
