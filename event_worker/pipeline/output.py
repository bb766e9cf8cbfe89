import csv
import json
import logging
from pathlib import Path
from typing import Dict, List, Sequence

from pydantic import BaseModel, Field, TypeAdapter

from ..errors import InputError, OutputError
from ..models import BoundingBox, DetectedObject, TimelineEvent
from .sync import format_events
from .util import PathLike, atomic_write

logger = logging.getLogger("event_worker")

CSV_COLUMNS = ["event", "timestamp", "label", "confidence", "x", "y", "w", "h", "audio_text"]


class ResultObject(BaseModel):
    """One detected object in a result entry"""
    label: str = Field(description="Object class label")
    confidence: float = Field(description="Confidence score 0-1", ge=0, le=1)
    bbox: List[float] = Field(description="Bounding box [x, y, w, h] in pixels", min_length=4, max_length=4)


class ResultEntry(BaseModel):
    """One timeline event as written to the result file"""
    timestamp: float = Field(description="Event time in seconds", ge=0)
    video_objects: List[ResultObject] = Field(default_factory=list)
    audio_text: str = ""


_ENTRIES = TypeAdapter(List[ResultEntry])


def to_entries(events: Sequence[TimelineEvent]) -> List[ResultEntry]:
    return [
        ResultEntry(
            timestamp=event.timestamp,
            video_objects=[
                ResultObject(label=obj.label, confidence=obj.confidence, bbox=obj.bbox.as_list())
                for obj in event.objects
            ],
            audio_text=event.audio_text
        )
        for event in events
    ]


def from_entries(entries: Sequence[ResultEntry]) -> List[TimelineEvent]:
    events = []
    for entry in entries:
        objects = tuple(
            DetectedObject(
                label=obj.label,
                confidence=obj.confidence,
                bbox=BoundingBox(*obj.bbox),
                timestamp=entry.timestamp
            )
            for obj in entry.video_objects
        )
        events.append(TimelineEvent(timestamp=entry.timestamp, objects=objects, audio_text=entry.audio_text))
    return events


def _write_json(events: Sequence[TimelineEvent], f) -> None:
    json.dump([entry.model_dump() for entry in to_entries(events)], f, indent=2, ensure_ascii=False)
    f.write("\n")


def _write_csv(events: Sequence[TimelineEvent], f) -> None:
    writer = csv.writer(f)
    writer.writerow(CSV_COLUMNS)
    for n, event in enumerate(events):
        if not event.objects:
            writer.writerow([n, repr(event.timestamp), "", "", "", "", "", "", event.audio_text])
            continue
        for obj in event.objects:
            writer.writerow([
                n, repr(event.timestamp), obj.label, repr(obj.confidence),
                *(repr(v) for v in obj.bbox.as_list()), event.audio_text
            ])


def _write_txt(events: Sequence[TimelineEvent], f, title: str) -> None:
    f.write(format_events(events, title=title))


def write_results(events: Sequence[TimelineEvent], path: PathLike, fmt: str = "json", title: str = "") -> Path:
    """
    Write a timeline to its final location in the requested format.

    The file appears at path only once it is complete; a failure leaves no
    partial file behind.

    Raises:
        OutputError: The write failed (primary result, fails the job)
    """
    if fmt not in ("json", "csv", "txt"):
        raise ValueError(f"Unsupported output format: {fmt}")

    try:
        with atomic_write(path, newline="" if fmt == "csv" else None) as f:
            if fmt == "json":
                _write_json(events, f)
            elif fmt == "csv":
                _write_csv(events, f)
            else:
                _write_txt(events, f, title)
    except OSError as e:
        raise OutputError(str(path), str(e), primary=True)

    logger.info(f"Wrote {len(events)} events to {path}")
    return Path(path)


def _read_csv(f) -> List[ResultEntry]:
    entries: Dict[int, ResultEntry] = {}
    for row in csv.DictReader(f):
        n = int(row["event"])
        entry = entries.get(n)
        if entry is None:
            entry = entries[n] = ResultEntry(timestamp=float(row["timestamp"]), audio_text=row["audio_text"])
        if row["label"]:
            entry.video_objects.append(ResultObject(
                label=row["label"],
                confidence=float(row["confidence"]),
                bbox=[float(row[k]) for k in ("x", "y", "w", "h")]
            ))
    return [entries[n] for n in sorted(entries)]


def read_results(path: PathLike, fmt: str = "json") -> List[TimelineEvent]:
    """Parse a JSON or CSV result file back into timeline events"""
    if fmt not in ("json", "csv"):
        raise ValueError(f"Cannot read results in format: {fmt}")

    try:
        if fmt == "json":
            with open(path, encoding="utf-8") as f:
                entries = _ENTRIES.validate_python(json.load(f))
        else:
            with open(path, encoding="utf-8", newline="") as f:
                entries = _read_csv(f)
    except (OSError, ValueError, KeyError) as e:
        raise InputError(str(path), f"Unreadable result file ({e})")

    return from_entries(entries)
