"""Test configuration and fixtures"""

from datetime import datetime, timezone

import pytest

from youtube_sync.core.models import RemoteChannel, RemotePlaylist, RemoteVideo


class FakeYouTubeApi:
    """Records every fetch and answers from queued snapshots."""

    def __init__(self):
        self.calls = []
        self.responses = {"channel": [], "playlist": [], "video": []}

    def queue(self, kind, *responses):
        self.responses[kind].extend(responses)

    def _next(self, kind):
        queued = self.responses[kind]
        return queued.pop(0) if len(queued) > 1 else queued[0]

    def channel(self, channel_id, since=None):
        self.calls.append(("channel", channel_id, since))
        return self._next("channel")

    def playlist(self, playlist_id, since=None):
        self.calls.append(("playlist", playlist_id, since))
        return self._next("playlist")

    def video(self, video_id):
        self.calls.append(("video", video_id, None))
        return self._next("video")


@pytest.fixture
def api():
    return FakeYouTubeApi()


@pytest.fixture
def synced_at():
    return datetime(2024, 5, 1, 10, 0, 0, tzinfo=timezone.utc)


def remote_video(video_id, etag, title=None):
    return RemoteVideo(id=video_id, etag=etag, title=title or f"Remote {video_id}")


def remote_channel(channel_id="UC123", videos=()):
    return RemoteChannel(id=channel_id, etag="ch-etag", title="Channel", videos=list(videos))


def remote_playlist(playlist_id="PL123", videos=()):
    return RemotePlaylist(id=playlist_id, etag="pl-etag", title="Playlist", videos=list(videos))
