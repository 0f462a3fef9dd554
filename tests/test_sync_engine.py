"""Tests for the sync engine"""

from datetime import datetime, timedelta, timezone

import pytest

from conftest import remote_channel, remote_playlist, remote_video
from youtube_sync.core.models import (
    Channel, Decision, IncompatibleResourceError, Playlist, RemoteVideo, Video,
    VideoCollection,
)
from youtube_sync.core.sync_engine import (
    Synchronizer, fetch_snapshot, format_synced_at, index_videos, merge_videos,
    tokens_differ, tokens_equal,
)


class TestFormatSyncedAt:
    def test_aware_datetime(self):
        value = datetime(2024, 5, 1, 10, 0, 0, 123456, tzinfo=timezone(timedelta(hours=3)))
        assert format_synced_at(value) == "2024-05-01T10:00:00+03:00"

    def test_naive_datetime_is_utc(self):
        assert format_synced_at(datetime(2024, 5, 1, 10, 0)) == "2024-05-01T10:00:00+00:00"

    def test_string(self):
        assert format_synced_at("2024-05-01 10:00:00") == "2024-05-01T10:00:00+00:00"
        assert format_synced_at("2024-05-01T10:00:00Z") == "2024-05-01T10:00:00+00:00"
        assert format_synced_at("2024-05-01T10:00:00-05:00") == "2024-05-01T10:00:00-05:00"


class TestTokens:
    def test_equal(self):
        local = Video(youtube_id="a", etag="1")
        assert tokens_equal(local, remote_video("a", "1"))
        assert not tokens_differ(local, remote_video("a", "1"))

    def test_differ(self):
        local = Video(youtube_id="a", etag="1")
        assert tokens_differ(local, remote_video("a", "2"))
        assert not tokens_equal(local, remote_video("a", "2"))


class TestMergeVideos:
    def test_changed_etag_with_sync_enabled_takes_remote(self):
        local = [Video(youtube_id="a", etag="1", sync_enabled=True)]
        remote = [remote_video("a", "2")]

        result = merge_videos(local, remote)

        assert result.all() == [remote[0]]
        assert result.entries() == [(remote[0], Decision.UPDATED)]

    def test_changed_etag_with_sync_disabled_keeps_local(self):
        local = [Video(youtube_id="a", etag="1", sync_enabled=False)]
        remote = [remote_video("a", "2")]

        result = merge_videos(local, remote)

        assert result.all() == [local[0]]
        assert result.count(Decision.PINNED) == 1

    def test_same_etag_keeps_local(self):
        local = [Video(youtube_id="a", etag="1", title="Mine")]
        result = merge_videos(local, [remote_video("a", "1")])

        assert result.all() == [local[0]]
        assert result.count(Decision.UNCHANGED) == 1

    def test_same_etag_keeps_local_even_when_sync_disabled(self):
        local = [Video(youtube_id="a", etag="1", sync_enabled=False)]
        result = merge_videos(local, [remote_video("a", "1")])

        assert result.entries() == [(local[0], Decision.UNCHANGED)]

    def test_unmatched_remote_video_is_new(self):
        local = [Video(youtube_id="a", etag="1")]
        remote = [remote_video("b", "x")]

        result = merge_videos(local, remote)

        assert result.all() == [remote[0]]
        assert result.count(Decision.NEW) == 1

    def test_new_video_appended_once_regardless_of_local_count(self):
        local = [Video(youtube_id=i, etag="1") for i in ("a", "b", "c")]
        remote = [remote_video("d", "x")]

        result = merge_videos(local, remote)

        assert result.ids() == ["d"]

    def test_local_only_videos_are_dropped(self):
        local = [Video(youtube_id="a", etag="1"), Video(youtube_id="gone", etag="1")]
        result = merge_videos(local, [remote_video("a", "1")])

        assert result.ids() == ["a"]

    def test_follows_remote_order(self):
        local = [Video(youtube_id="a", etag="1"), Video(youtube_id="b", etag="1")]
        remote = [remote_video("c", "1"), remote_video("b", "2"), remote_video("a", "1")]

        result = merge_videos(local, remote)

        assert result.ids() == ["c", "b", "a"]
        assert [d for _, d in result.entries()] == [
            Decision.NEW, Decision.UPDATED, Decision.UNCHANGED
        ]

    def test_empty_inputs(self):
        assert len(merge_videos([], [])) == 0
        assert merge_videos([], [remote_video("a", "1")]).ids() == ["a"]

    def test_duplicate_local_ids_first_wins(self):
        first = Video(youtube_id="a", etag="1", sync_enabled=False)
        second = Video(youtube_id="a", etag="1", sync_enabled=True)

        assert index_videos([first, second]) == {"a": first}
        result = merge_videos([first, second], [remote_video("a", "2")])
        assert result.entries() == [(first, Decision.PINNED)]


class TestFetchSnapshot:
    def test_incremental_result_is_used(self, api, synced_at):
        api.queue("channel", remote_channel(videos=[remote_video("a", "1")]))

        response, full = fetch_snapshot(api.channel, "UC123", synced_at)

        assert [v.id for v in response.videos] == ["a"]
        assert full is False
        assert api.calls == [("channel", "UC123", "2024-05-01T10:00:00+00:00")]

    def test_empty_incremental_falls_back_to_full_fetch(self, api, synced_at):
        full = remote_channel(videos=[remote_video("a", "1")])
        api.queue("channel", remote_channel(), full)

        response, is_full = fetch_snapshot(api.channel, "UC123", synced_at)

        assert response is full
        assert is_full is True
        assert api.calls == [
            ("channel", "UC123", "2024-05-01T10:00:00+00:00"),
            ("channel", "UC123", None),
        ]

    def test_empty_full_fetch_is_returned_as_is(self, api, synced_at):
        api.queue("playlist", remote_playlist(), remote_playlist())

        response, full = fetch_snapshot(api.playlist, "PL123", synced_at)

        assert response.videos == []
        assert full is True
        assert len(api.calls) == 2

    def test_never_synced_does_one_full_fetch(self, api):
        api.queue("channel", remote_channel())

        _, full = fetch_snapshot(api.channel, "UC123", None)

        assert full is True
        assert api.calls == [("channel", "UC123", None)]


class TestSynchronizerRouting:
    def test_channel_uses_channel_fetch_only(self, api, synced_at):
        api.queue("channel", remote_channel(videos=[remote_video("a", "1")]))
        engine = Synchronizer(api)

        engine.sync(Channel(youtube_id="UC123", synced_at=synced_at))

        assert {kind for kind, _, _ in api.calls} == {"channel"}

    def test_playlist_uses_playlist_fetch_only(self, api, synced_at):
        api.queue("playlist", remote_playlist(videos=[remote_video("a", "1")]))
        engine = Synchronizer(api)

        engine.sync(Playlist(youtube_id="PL123", synced_at=synced_at))

        assert {kind for kind, _, _ in api.calls} == {"playlist"}

    def test_video_uses_video_fetch_only(self, api):
        api.queue("video", remote_video("a", "1"))
        engine = Synchronizer(api)

        engine.sync(Video(youtube_id="a", etag="1"))

        assert api.calls == [("video", "a", None)]

    def test_unknown_resource_raises(self, api):
        engine = Synchronizer(api)

        with pytest.raises(IncompatibleResourceError):
            engine.sync({"youtube_id": "a"})
        assert api.calls == []


class TestSynchronizerCollections:
    def test_returns_merged_collection_and_holds_snapshot(self, api, synced_at):
        api.queue("channel", remote_channel("UC123", [remote_video("a", "2"), remote_video("b", "x")]))
        local = Channel(youtube_id="UC123", synced_at=synced_at,
                        videos=[Video(youtube_id="a", etag="1")])
        engine = Synchronizer(api)

        result = engine.sync(local)

        assert isinstance(result, VideoCollection)
        assert result.ids() == ["a", "b"]
        assert all(isinstance(v, RemoteVideo) for v in result)
        assert engine.get_youtube_id() == "UC123"
        assert engine.data.videos == result.all()

    def test_fallback_issues_exactly_one_full_fetch(self, api, synced_at):
        api.queue("playlist", remote_playlist(), remote_playlist(videos=[remote_video("a", "1")]))
        local = Playlist(youtube_id="PL123", synced_at=synced_at,
                         videos=[Video(youtube_id="a", etag="1")])

        result = Synchronizer(api).sync(local)

        assert [since for _, _, since in api.calls] == ["2024-05-01T10:00:00+00:00", None]
        assert result.all() == local.videos

    def test_full_reconcile_reports_counts_and_dropped(self, api):
        api.queue("channel", remote_channel(videos=[
            remote_video("a", "1"), remote_video("b", "2"),
            remote_video("c", "2"), remote_video("d", "1"),
        ]))
        local = Channel(youtube_id="UC123", synced_at=None, videos=[
            Video(youtube_id="a", etag="1"),
            Video(youtube_id="b", etag="1"),
            Video(youtube_id="c", etag="1", sync_enabled=False),
            Video(youtube_id="gone", etag="1"),
        ])
        engine = Synchronizer(api)

        result = engine.reconcile(local)

        assert (result.added, result.updated, result.kept, result.pinned) == (1, 1, 1, 1)
        assert result.full is True
        assert result.dropped == ["gone"]
        assert result.changed
        assert engine.data is None

    def test_incremental_reconcile_drops_nothing(self, api, synced_at):
        api.queue("channel", remote_channel(videos=[remote_video("new", "1")]))
        local = Channel(youtube_id="UC123", synced_at=synced_at, videos=[
            Video(youtube_id="a", etag="1", sync_enabled=False),
            Video(youtube_id="b", etag="1"),
        ])

        result = Synchronizer(api).reconcile(local)

        assert result.full is False
        assert result.videos.ids() == ["new"]
        assert result.dropped == []
        assert result.changed

    def test_wrong_snapshot_kind_raises_and_keeps_state(self, api, synced_at):
        api.queue("channel", remote_channel("UC123", [remote_video("a", "1")]))
        engine = Synchronizer(api)
        engine.sync(Channel(youtube_id="UC123", synced_at=synced_at))
        held = engine.data

        api.queue("playlist", remote_video("x", "1"))
        with pytest.raises(IncompatibleResourceError):
            engine.sync(Playlist(youtube_id="PL999", synced_at=synced_at))

        assert engine.data is held
        assert engine.get_youtube_id() == "UC123"

    def test_channel_snapshot_for_playlist_raises(self, api, synced_at):
        api.queue("playlist", remote_channel("PL123", [remote_video("a", "1")]))

        with pytest.raises(IncompatibleResourceError):
            Synchronizer(api).sync(Playlist(youtube_id="PL123", synced_at=synced_at))

    def test_unknown_resource_keeps_state(self, api, synced_at):
        api.queue("channel", remote_channel("UC123", [remote_video("a", "1")]))
        engine = Synchronizer(api)
        engine.sync(Channel(youtube_id="UC123", synced_at=synced_at))

        with pytest.raises(IncompatibleResourceError):
            engine.sync(object())

        assert engine.get_youtube_id() == "UC123"

    def test_idempotent_without_remote_changes(self, api, synced_at):
        local = Channel(youtube_id="UC123", synced_at=synced_at, videos=[
            Video(youtube_id="a", etag="1"), Video(youtube_id="b", etag="1"),
        ])
        api.queue(
            "channel",
            remote_channel(videos=[remote_video("a", "1"), remote_video("b", "2"), remote_video("c", "1")]),
            remote_channel(videos=[remote_video("a", "1"), remote_video("b", "2"), remote_video("c", "1")]),
        )
        engine = Synchronizer(api)

        first = engine.sync(local)
        second = engine.sync(local)

        assert first == second

    def test_get_youtube_id_before_sync(self, api):
        assert Synchronizer(api).get_youtube_id() is None


class TestSynchronizerVideo:
    def test_unchanged_returns_none(self, api):
        api.queue("video", remote_video("a", "1"))
        engine = Synchronizer(api)

        assert engine.sync(Video(youtube_id="a", etag="1")) is None
        assert engine.data is None

    def test_changed_returns_remote(self, api):
        remote = remote_video("a", "2")
        api.queue("video", remote)

        assert Synchronizer(api).sync(Video(youtube_id="a", etag="1")) is remote

    def test_sync_disabled_returns_none_even_when_changed(self, api):
        api.queue("video", remote_video("a", "2"))

        result = Synchronizer(api).sync(Video(youtube_id="a", etag="1", sync_enabled=False))

        assert result is None

    def test_video_sync_does_not_touch_held_snapshot(self, api, synced_at):
        api.queue("channel", remote_channel("UC123", [remote_video("a", "1")]))
        api.queue("video", remote_video("a", "2"))
        engine = Synchronizer(api)
        engine.sync(Channel(youtube_id="UC123", synced_at=synced_at))

        engine.sync(Video(youtube_id="a", etag="1"))

        assert engine.get_youtube_id() == "UC123"

    def test_deleted_video_raises(self, api):
        api.queue("video", None)

        with pytest.raises(IncompatibleResourceError):
            Synchronizer(api).sync(Video(youtube_id="a", etag="1"))

    def test_reconcile_result(self, api):
        api.queue("video", remote_video("a", "2"))

        result = Synchronizer(api).reconcile(Video(youtube_id="a", etag="1"))

        assert result.remote_id == "a"
        assert result.updated == 1
        assert result.value is result.video
