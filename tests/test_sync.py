import random

import pytest

from event_worker.models import AudioSegment, EventSource, FrameDetections
from event_worker.pipeline.sync import format_events, synchronize

from conftest import make_detections


def _segment(start, end, text):
    return AudioSegment(start=start, end=end, text=text)


@pytest.fixture
def detections():
    return [
        make_detections(0.0, 0, "person"),
        make_detections(1.0, 1, "car", "dog"),
        make_detections(2.0, 2),
        make_detections(3.0, 3, "person"),
    ]


@pytest.fixture
def segments():
    return [
        _segment(0.5, 1.5, "first words"),
        _segment(2.0, 3.5, "second line"),
    ]


class TestSynchronize:
    def test_timestamps_non_decreasing(self, detections, segments):
        events = synchronize(detections, segments)
        timestamps = [e.timestamp for e in events]
        assert timestamps == sorted(timestamps)
        assert len(events) == len(detections) + len(segments)

    def test_video_precedes_audio_on_equal_timestamps(self, detections, segments):
        events = synchronize(detections, segments)
        at_two = [e for e in events if e.timestamp == 2.0]
        assert [e.source for e in at_two] == [EventSource.VIDEO, EventSource.AUDIO]

    def test_tie_break_independent_of_input_order(self):
        events = synchronize(
            [make_detections(1.0, 0, "cat")],
            [_segment(1.0, 2.0, "meow")]
        )
        assert [e.source for e in events] == [EventSource.VIDEO, EventSource.AUDIO]
        assert events[0].audio_text == "meow"
        assert events[1].objects == events[0].objects

    def test_audio_text_uses_half_open_containment(self, detections, segments):
        events = synchronize(detections, segments)
        text_at = {(e.timestamp, e.source): e.audio_text for e in events}

        assert text_at[(0.0, EventSource.VIDEO)] == ""
        assert text_at[(1.0, EventSource.VIDEO)] == "first words"
        assert text_at[(2.0, EventSource.VIDEO)] == "second line"
        assert text_at[(3.0, EventSource.VIDEO)] == "second line"

    def test_segment_end_is_exclusive(self):
        events = synchronize([make_detections(1.5, 0, "car")], [_segment(0.5, 1.5, "gone")])
        video = [e for e in events if e.source == EventSource.VIDEO][0]
        assert video.audio_text == ""

    def test_earliest_starting_overlap_wins(self):
        events = synchronize(
            [make_detections(2.5, 0, "car")],
            [_segment(2.0, 4.0, "outer"), _segment(1.0, 3.0, "earlier")]
        )
        video = [e for e in events if e.source == EventSource.VIDEO][0]
        assert video.audio_text == "earlier"

    def test_ended_overlap_falls_through_to_later_segment(self):
        events = synchronize(
            [make_detections(3.5, 0, "car")],
            [_segment(1.0, 3.0, "earlier"), _segment(2.0, 4.0, "outer")]
        )
        assert events[-1].audio_text == "outer"

    def test_zero_tolerance_matches_exact_frame_only(self, detections, segments):
        events = synchronize(detections, segments, tolerance=0.0)
        by_key = {(e.timestamp, e.source): e for e in events}

        assert [o.label for o in by_key[(1.0, EventSource.VIDEO)].objects] == ["car", "dog"]
        assert by_key[(0.5, EventSource.AUDIO)].objects == ()
        assert [o.label for o in by_key[(2.0, EventSource.AUDIO)].objects] == []

    def test_tolerance_window_collects_neighbouring_frames(self, detections, segments):
        events = synchronize(detections, segments, tolerance=0.5)
        audio_first = [e for e in events if e.source == EventSource.AUDIO][0]

        assert audio_first.timestamp == 0.5
        assert [(o.timestamp, o.label) for o in audio_first.objects] == [
            (0.0, "person"), (1.0, "car"), (1.0, "dog")
        ]

    def test_objects_ordered_by_frame_then_detection(self, detections):
        events = synchronize(detections, [], tolerance=10.0)
        labels = [o.label for o in events[0].objects]
        assert labels == ["person", "car", "dog", "person"]

    def test_unsorted_inputs_are_sorted(self, detections, segments):
        expected = synchronize(detections, segments, tolerance=0.5)
        shuffled_d, shuffled_s = list(detections), list(segments)
        random.Random(7).shuffle(shuffled_d)
        random.Random(7).shuffle(shuffled_s)
        assert synchronize(shuffled_d, shuffled_s, tolerance=0.5) == expected

    def test_deterministic(self, detections, segments):
        runs = [synchronize(detections, segments, tolerance=0.25) for _ in range(5)]
        assert all(run == runs[0] for run in runs)

    def test_empty_inputs(self):
        assert synchronize([], []) == []

    def test_audio_only(self, segments):
        events = synchronize([], segments)
        assert [e.audio_text for e in events] == ["first words", "second line"]
        assert all(e.objects == () for e in events)

    def test_negative_tolerance_rejected(self, detections, segments):
        with pytest.raises(ValueError):
            synchronize(detections, segments, tolerance=-1.0)

    def test_frame_without_objects_still_emits_event(self):
        events = synchronize([FrameDetections(timestamp=4.0, index=0)], [])
        assert len(events) == 1
        assert events[0].objects == ()


class TestFormatEvents:
    def test_report_lists_objects_and_audio(self, detections, segments):
        report = format_events(synchronize(detections, segments), title="clip.mp4")

        assert report.startswith("Results for clip.mp4\n")
        assert "[00:00:01.000]" in report
        assert "Objects: car (0.90), dog (0.90)" in report
        assert "Audio: second line" in report
        assert report.rstrip().endswith("Total events: 6")
