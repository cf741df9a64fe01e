"""Tests for the progress event channel."""
import json
from datetime import datetime, timedelta

from maisoku_app.services.listing_pipeline.progress import (
    NullProgressChannel,
    ProgressChannel,
    ProgressEvent,
    Stage,
)


class TestProgressEvent:

    def test_sse_frame(self):
        event = ProgressEvent(session_id="s1", stage="extract", processed=1, total=3, message="物件 1/3")
        frame = event.to_sse()
        assert frame.startswith("event: extract\ndata: ")
        assert frame.endswith("\n\n")
        data = json.loads(frame.split("data: ", 1)[1])
        assert data['processed'] == 1
        assert data['message'] == "物件 1/3"

    def test_terminal_stages(self):
        assert ProgressEvent("s", Stage.COMPLETE.value).is_terminal
        assert ProgressEvent("s", Stage.ERROR.value).is_terminal
        assert not ProgressEvent("s", Stage.DETECT.value).is_terminal

    def test_timestamp_is_local_time(self):
        stamped = datetime.fromisoformat(ProgressEvent("s", Stage.DETECT.value).timestamp)
        assert abs(stamped - datetime.now()) < timedelta(minutes=1)


class TestProgressChannel:

    def test_events_read_by_index(self, progress_channel):
        progress_channel.open("s1")
        progress_channel.publish("s1", Stage.UPLOAD, 0, 2)
        progress_channel.publish("s1", Stage.UPLOAD, 1, 2)
        progress_channel.publish("s2", Stage.UPLOAD, 0, 1)

        assert [e.processed for e in progress_channel.events_since("s1")] == [0, 1]
        assert [e.processed for e in progress_channel.events_since("s1", 1)] == [1]
        assert progress_channel.events_since("missing") == []

    def test_terminal_event_closes_session(self, progress_channel):
        progress_channel.open("s1")
        assert not progress_channel.is_closed("s1")
        event = progress_channel.publish("s1", Stage.COMPLETE, message="done", level="success")
        assert event.stage == "complete"
        assert progress_channel.is_closed("s1")

    def test_close_marks_session_finished(self, progress_channel):
        progress_channel.close("s1")
        assert progress_channel.has_session("s1")
        assert progress_channel.is_closed("s1")

    def test_reopen_starts_fresh_log(self, progress_channel):
        progress_channel.open("s1")
        progress_channel.publish("s1", Stage.COMPLETE, message="done")
        progress_channel.open("s1")
        assert progress_channel.events_since("s1") == []
        assert not progress_channel.is_closed("s1")

    def test_finished_sessions_are_kept_for_late_readers(self, progress_channel):
        progress_channel.open("s1")
        progress_channel.publish("s1", Stage.COMPLETE, message="done")
        progress_channel.open("s2")
        assert [e.stage for e in progress_channel.events_since("s1")] == ["complete"]

    def test_finished_sessions_expire_after_retention(self):
        channel = ProgressChannel(retention_seconds=0)
        for i in range(50):
            channel.open(f"s{i}")
            channel.publish(f"s{i}", Stage.UPLOAD, 0, 1)
            channel.publish(f"s{i}", Stage.COMPLETE, message="done")

        assert channel.has_session("s49")
        assert not any(channel.has_session(f"s{i}") for i in range(49))

    def test_running_sessions_never_expire(self):
        channel = ProgressChannel(retention_seconds=0)
        channel.open("running")
        channel.publish("running", Stage.DETECT, 0, 1)
        for i in range(3):
            channel.open(f"s{i}")
            channel.publish(f"s{i}", Stage.ERROR, message="failed")
        assert [e.stage for e in channel.events_since("running")] == ["detect"]


def test_null_channel_drops_events():
    channel = NullProgressChannel()
    assert channel.publish("s1", Stage.DETECT) is None
    assert channel.events_since("s1") == []
