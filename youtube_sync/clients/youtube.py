"""
YouTube Data API v3 Client

Handles authentication and read-only channel, playlist and video lookups.
Includes retry logic for rate limiting and transient errors.
"""

import json
import logging
import os
import time
from datetime import datetime
from pathlib import Path
from typing import Callable, TypeVar

from google.oauth2.credentials import Credentials
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from youtube_sync.core.models import RemoteChannel, RemotePlaylist, RemoteVideo

logger = logging.getLogger(__name__)

SCRIPT_DIR = Path(__file__).parent.parent
TOKEN_URI = "https://oauth2.googleapis.com/token"
SCOPES = ["https://www.googleapis.com/auth/youtube.readonly"]
MAX_RESULTS = 50  # API maximum for list calls

T = TypeVar('T')


class YouTubeAuthError(Exception):
    """YouTube authentication failed."""
    pass


class YouTubeAPIError(Exception):
    """YouTube API operation failed."""
    pass


class YouTubeQuotaExceededError(Exception):
    """YouTube API quota exceeded."""
    pass


def _load_client_credentials() -> tuple[str, str]:
    """Load OAuth client credentials from env vars or client_secrets.json."""
    # Try environment variables first
    client_id = os.environ.get("GOOGLE_CLIENT_ID")
    client_secret = os.environ.get("GOOGLE_CLIENT_SECRET")

    if client_id and client_secret:
        return client_id, client_secret

    # Fall back to client_secrets.json
    secrets_file = SCRIPT_DIR / "client_secrets.json"
    if secrets_file.exists():
        try:
            secrets = json.loads(secrets_file.read_text())
            creds = secrets.get("installed") or secrets.get("web")
            if creds:
                return creds["client_id"], creds["client_secret"]
        except Exception as e:
            logger.warning(f"Failed to parse client_secrets.json: {e}")

    raise YouTubeAuthError(
        "OAuth credentials not found. Set GOOGLE_CLIENT_ID/GOOGLE_CLIENT_SECRET "
        "or provide client_secrets.json"
    )


def _parse_timestamp(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


def _chunks(items: list[str], size: int) -> list[list[str]]:
    return [items[i:i + size] for i in range(0, len(items), size)]


class YouTubeClient:
    """YouTube Data API client with retry logic."""

    def __init__(self, refresh_token: str | None = None, api_key: str | None = None):
        try:
            if api_key:
                self._service = build("youtube", "v3", developerKey=api_key,
                                      cache_discovery=False)
            elif refresh_token:
                client_id, client_secret = _load_client_credentials()

                credentials = Credentials(
                    token=None,
                    refresh_token=refresh_token,
                    token_uri=TOKEN_URI,
                    client_id=client_id,
                    client_secret=client_secret,
                    scopes=SCOPES
                )

                self._service = build("youtube", "v3", credentials=credentials,
                                      cache_discovery=False)
            else:
                raise YouTubeAuthError("Either an API key or a refresh token is required")

            logger.info("YouTube client initialized")

        except YouTubeAuthError:
            raise
        except Exception as e:
            raise YouTubeAuthError(f"Failed to authenticate: {e}")

    def _retry(self, operation: Callable[[], T], name: str, max_retries: int = 3) -> T:
        """Execute operation with retry logic for transient errors."""
        for attempt in range(max_retries):
            try:
                return operation()
            except HttpError as e:
                status = e.resp.status if e.resp else 0
                error_str = str(e)

                # Quota exceeded - don't retry
                if status == 403 and "quotaExceeded" in error_str:
                    raise YouTubeQuotaExceededError(f"Quota exceeded: {e}")

                # Rate limit - wait and retry once
                if status == 403 and "rateLimitExceeded" in error_str and attempt == 0:
                    logger.warning(f"Rate limited on {name}, waiting 60s...")
                    time.sleep(60)
                    continue

                # Server error - retry with backoff
                if status >= 500 and attempt < max_retries - 1:
                    wait = 2 ** attempt
                    logger.warning(f"Server error on {name}, retrying in {wait}s...")
                    time.sleep(wait)
                    continue

                raise YouTubeAPIError(f"API error on {name}: {e}")

            except (ConnectionError, TimeoutError, OSError) as e:
                if attempt < max_retries - 1:
                    wait = 2 ** attempt
                    logger.warning(f"Network error on {name}, retrying in {wait}s...")
                    time.sleep(wait)
                    continue
                raise YouTubeAPIError(f"Network error on {name}: {e}")

        raise YouTubeAPIError(f"{name} failed after {max_retries} attempts")

    def channel(self, channel_id: str, since: str | None = None) -> RemoteChannel:
        """
        Get a channel and its videos, optionally only those published after `since`.

        A deleted channel comes back with no videos.
        """
        def do_get():
            return self._service.channels().list(
                part="snippet",
                id=channel_id
            ).execute()

        response = self._retry(do_get, f"get channel {channel_id}")
        items = response.get("items", [])
        if not items:
            logger.warning(f"Channel {channel_id} not found")
            return RemoteChannel(id=channel_id, etag="", title="")

        item = items[0]
        video_ids = self._search_channel_videos(channel_id, since)

        return RemoteChannel(
            id=item.get("id", channel_id),
            etag=item.get("etag", ""),
            title=item.get("snippet", {}).get("title", ""),
            videos=self.get_videos(video_ids)
        )

    def _search_channel_videos(self, channel_id: str, since: str | None) -> list[str]:
        """List the channel's video ids, newest first (search.list costs 100 units/page)."""
        video_ids = []
        page_token = None

        while True:
            def do_search():
                params = {
                    "part": "id",
                    "channelId": channel_id,
                    "type": "video",
                    "order": "date",
                    "maxResults": MAX_RESULTS,
                    "pageToken": page_token,
                }
                if since:
                    params["publishedAfter"] = since
                return self._service.search().list(**params).execute()

            response = self._retry(do_search, f"search channel {channel_id}")

            for item in response.get("items", []):
                video_id = item.get("id", {}).get("videoId")
                if video_id:
                    video_ids.append(video_id)

            page_token = response.get("nextPageToken")
            if not page_token:
                break

        logger.debug(f"Found {len(video_ids)} videos on channel {channel_id}")
        return video_ids

    def playlist(self, playlist_id: str, since: str | None = None) -> RemotePlaylist:
        """
        Get a playlist and its videos, optionally only those published after `since`.

        playlistItems.list has no date filter, so `since` is applied client side.
        A deleted playlist comes back with no videos.
        """
        def do_get():
            return self._service.playlists().list(
                part="snippet",
                id=playlist_id
            ).execute()

        response = self._retry(do_get, f"get playlist {playlist_id}")
        items = response.get("items", [])
        if not items:
            logger.warning(f"Playlist {playlist_id} not found")
            return RemotePlaylist(id=playlist_id, etag="", title="")

        item = items[0]
        video_ids = self._list_playlist_videos(playlist_id, _parse_timestamp(since))

        return RemotePlaylist(
            id=item.get("id", playlist_id),
            etag=item.get("etag", ""),
            title=item.get("snippet", {}).get("title", ""),
            videos=self.get_videos(video_ids)
        )

    def _list_playlist_videos(self, playlist_id: str, since: datetime | None) -> list[str]:
        """Get video ids from a playlist, in playlist order."""
        video_ids = []
        page_token = None

        while True:
            def do_list():
                return self._service.playlistItems().list(
                    part="snippet,contentDetails",
                    playlistId=playlist_id,
                    maxResults=MAX_RESULTS,
                    pageToken=page_token
                ).execute()

            response = self._retry(do_list, f"list playlist {playlist_id}")

            for item in response.get("items", []):
                content = item.get("contentDetails", {})
                video_id = content.get("videoId")
                if not video_id:
                    continue
                if since is not None:
                    # snippet.publishedAt is when the item was added to the playlist
                    added = _parse_timestamp(item.get("snippet", {}).get("publishedAt"))
                    if added is None or added < since:
                        continue
                video_ids.append(video_id)

            page_token = response.get("nextPageToken")
            if not page_token:
                break

        logger.debug(f"Found {len(video_ids)} videos in playlist {playlist_id}")
        return video_ids

    def video(self, video_id: str) -> RemoteVideo | None:
        """Get a single video. Returns None if it no longer exists."""
        videos = self.get_videos([video_id])
        return videos[0] if videos else None

    def get_videos(self, video_ids: list[str]) -> list[RemoteVideo]:
        """Fetch etag and snippet for videos, 50 ids per request. Missing videos are skipped."""
        videos = []

        for batch in _chunks(video_ids, MAX_RESULTS):
            def do_list():
                return self._service.videos().list(
                    part="snippet",
                    id=",".join(batch),
                    maxResults=MAX_RESULTS
                ).execute()

            response = self._retry(do_list, f"get {len(batch)} videos")

            found = {}
            for item in response.get("items", []):
                video = self._extract_video(item)
                if video:
                    found[video.id] = video

            # Keep request order; the API doesn't guarantee it
            videos.extend(found[vid] for vid in batch if vid in found)

        return videos

    def _extract_video(self, item: dict) -> RemoteVideo | None:
        """Extract RemoteVideo from API response."""
        video_id = item.get("id", "")
        etag = item.get("etag", "")
        if not video_id or not etag:
            return None

        snippet = item.get("snippet", {})
        thumbnails = snippet.get("thumbnails", {})
        thumbnail = thumbnails.get("high") or thumbnails.get("default") or {}

        return RemoteVideo(
            id=video_id,
            etag=etag,
            title=snippet.get("title", ""),
            description=snippet.get("description", ""),
            channel_id=snippet.get("channelId", ""),
            published_at=_parse_timestamp(snippet.get("publishedAt")),
            thumbnail_url=thumbnail.get("url")
        )
