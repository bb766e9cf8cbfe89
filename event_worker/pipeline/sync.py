"""
Merges frame detections and transcript spans into one timeline.

Video events (one per analyzed frame) and audio events (one per transcript
span, at its start) are merged with a two-pointer walk over both sorted
sequences. On equal timestamps the video event comes first.

Each event carries every detection whose frame timestamp lies within
`tolerance` seconds of the event, and the text of the span whose half-open
interval [start, end) contains the event timestamp. When spans overlap the
earliest-starting one wins.
"""

from typing import List, Sequence, Tuple

from ..models import AudioSegment, DetectedObject, EventSource, FrameDetections, TimelineEvent
from .util import format_timecode


class _ObjectWindow:
    """Sliding window over timestamp-sorted detections; queries must not go backwards"""

    def __init__(self, detections: Sequence[FrameDetections], tolerance: float):
        self.items: List[Tuple[float, DetectedObject]] = [
            (frame.timestamp, obj) for frame in detections for obj in frame.objects
        ]
        self.tolerance = tolerance
        self.lo = 0
        self.hi = 0

    def at(self, timestamp: float) -> Tuple[DetectedObject, ...]:
        while self.lo < len(self.items) and self.items[self.lo][0] < timestamp - self.tolerance:
            self.lo += 1
        self.hi = max(self.hi, self.lo)
        while self.hi < len(self.items) and self.items[self.hi][0] <= timestamp + self.tolerance:
            self.hi += 1
        return tuple(obj for _, obj in self.items[self.lo:self.hi])


class _TranscriptCursor:
    """Finds the earliest-starting span containing a non-decreasing timestamp"""

    def __init__(self, segments: Sequence[AudioSegment]):
        self.segments = segments
        self.started = 0
        self.first_alive = 0

    def at(self, timestamp: float) -> str:
        while self.started < len(self.segments) and self.segments[self.started].start <= timestamp:
            self.started += 1
        # A span that has ended before timestamp can never contain a later one
        while self.first_alive < self.started and self.segments[self.first_alive].end <= timestamp:
            self.first_alive += 1
        if self.first_alive < self.started:
            return self.segments[self.first_alive].text
        return ""


def synchronize(
    detections: Sequence[FrameDetections],
    segments: Sequence[AudioSegment],
    tolerance: float = 0.0
) -> List[TimelineEvent]:
    """
    Merge detections and transcript spans into a non-decreasing timeline.

    Args:
        detections: Per-frame detections, in any order
        segments: Transcript spans, in any order
        tolerance: Matching window in seconds for attaching detections to an event

    Returns:
        One TimelineEvent per frame and per span
    """
    if tolerance < 0:
        raise ValueError(f"tolerance must be >= 0, got {tolerance}")

    frames = sorted(detections, key=lambda d: d.timestamp)
    spans = sorted(segments, key=lambda s: s.start)

    objects = _ObjectWindow(frames, tolerance)
    transcript = _TranscriptCursor(spans)

    events = []
    i = j = 0
    while i < len(frames) or j < len(spans):
        if j >= len(spans) or (i < len(frames) and frames[i].timestamp <= spans[j].start):
            timestamp = frames[i].timestamp
            source = EventSource.VIDEO
            i += 1
        else:
            timestamp = spans[j].start
            source = EventSource.AUDIO
            j += 1

        events.append(TimelineEvent(
            timestamp=timestamp,
            objects=objects.at(timestamp),
            audio_text=transcript.at(timestamp),
            source=source
        ))

    return events


def format_events(events: Sequence[TimelineEvent], title: str = "") -> str:
    """Human-readable report of a timeline"""
    lines = []
    if title:
        lines.append(f"Results for {title}")
        lines.append("=" * 60)

    for event in events:
        lines.append(f"[{format_timecode(event.timestamp)}]")
        if event.objects:
            described = ", ".join(f"{obj.label} ({obj.confidence:.2f})" for obj in event.objects)
            lines.append(f"  Objects: {described}")
        if event.audio_text:
            lines.append(f"  Audio: {event.audio_text}")

    lines.append(f"Total events: {len(events)}")
    return "\n".join(lines) + "\n"
