"""
Batch orchestration.

Runs the single-video pipeline over many inputs with a bounded worker pool.
Workers never touch the BatchSummary: they report through a queue, and a
single aggregator loop on the calling thread applies the updates in
completion order and notifies progress listeners.
"""

import json
import time
import queue
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Sequence, Set

from .backends.base import InferenceBackend
from .config import ProcessingConfig
from .errors import InputError, error_kind
from .logging_setup import log_exception
from .models import BatchSummary, JobRecord, VideoJob
from .processor import VideoProcessor
from .progress import ProgressListener
from .pipeline.util import PathLike, atomic_write, clean_filename, result_path

logger = logging.getLogger("event_worker")

SUMMARY_JSON = "batch_summary.json"
SUMMARY_TXT = "batch_summary.txt"
SKIPPED = "skipped"


@dataclass(frozen=True)
class JobEvent:
    """Message from a worker to the aggregator"""
    kind: str  # "started" or "finished"
    job: VideoJob
    record: Optional[JobRecord] = None


def discover_videos(input_dir: PathLike, extensions: Sequence[str]) -> List[str]:
    """
    List supported video files directly inside input_dir, sorted by name.

    Raises:
        InputError: input_dir does not exist or is not a directory
    """
    directory = Path(input_dir)
    if not directory.is_dir():
        raise InputError(str(directory), "Input directory not found")

    wanted = {ext.lower().lstrip('.') for ext in extensions}
    videos = [
        str(path) for path in sorted(directory.iterdir())
        if path.is_file() and path.suffix.lower().lstrip('.') in wanted
    ]
    logger.info(f"Found {len(videos)} video files in {directory}")
    return videos


def _make_jobs(paths: Sequence[str]) -> List[VideoJob]:
    """
    One job per path. The job id names the output directory, so ids are
    unique after filename cleaning and ignoring case (clip.mp4 and
    clip.avi become clip and clip_2).
    """
    jobs = []
    used: Set[str] = set()
    for path in paths:
        base = clean_filename(Path(path).stem)
        job_id = base
        n = 1
        while job_id.lower() in used:
            n += 1
            job_id = f"{base}_{n}"
        used.add(job_id.lower())
        jobs.append(VideoJob(id=job_id, source_path=str(path)))
    return jobs


class BatchOrchestrator:
    """Runs many videos concurrently with at most MAX_CONCURRENT_JOBS in Processing"""

    def __init__(
        self,
        config: ProcessingConfig,
        backend: InferenceBackend,
        processor: Optional[VideoProcessor] = None,
        listeners: Sequence[ProgressListener] = ()
    ):
        self.config = config
        self.backend = backend
        self.processor = processor or VideoProcessor(config, backend)
        self.listeners = list(listeners)
        self._cancel_event = threading.Event()
        self._events: "queue.Queue[JobEvent]" = queue.Queue()

    @property
    def cancelled(self) -> bool:
        return self._cancel_event.is_set()

    def cancel(self) -> None:
        """Stop admitting new jobs; running jobs abort at their next stage boundary"""
        if not self._cancel_event.is_set():
            logger.info("Cancellation requested, no new jobs will be started")
        self._cancel_event.set()

    def run(self, paths: Optional[Sequence[str]] = None) -> BatchSummary:
        """
        Process every video and build the batch summary.

        Args:
            paths: Videos to process; discovered from INPUT_DIR when omitted

        Returns:
            The finalized BatchSummary, also written to the output directory
        """
        start_time = time.time()
        if paths is None:
            paths = discover_videos(self.config.INPUT_DIR, self.config.extensions)

        jobs = _make_jobs(paths)
        summary = BatchSummary(total=len(jobs))
        self._notify('on_batch_started', len(jobs))

        to_run = []
        for job in jobs:
            if self.config.SKIP_EXISTING and self._has_result(job):
                logger.info(f"Skipping {job.id}, result already exists")
                self._record(summary, JobRecord.from_job(job, status=SKIPPED))
            else:
                to_run.append(job)

        logger.info(f"Starting batch: {len(to_run)} jobs to run, "
                    f"{len(jobs) - len(to_run)} skipped, {self.config.MAX_CONCURRENT_JOBS} concurrent")

        with ThreadPoolExecutor(max_workers=self.config.MAX_CONCURRENT_JOBS,
                                thread_name_prefix="video-job") as pool:
            for job in to_run:
                pool.submit(self._run_job, job)

            outstanding = len(to_run)
            while outstanding:
                event = self._events.get()
                if event.kind == "started":
                    self._notify('on_job_started', event.job)
                else:
                    self._record(summary, event.record)
                    outstanding -= 1

        summary.cancelled = self.cancelled
        summary.finalize(time.time() - start_time)
        self._write_summary(summary)
        self._notify('on_batch_finished', summary)

        logger.info(f"Batch completed: {summary.succeeded}/{summary.total} succeeded, "
                    f"{summary.failed} failed, {summary.skipped} skipped in {summary.elapsed_sec:.2f}s")
        return summary

    def _run_job(self, job: VideoJob) -> None:
        """Worker body. Every outcome is reported to the aggregator, never raised."""
        if self._cancel_event.is_set():
            record = JobRecord(
                job_id=job.id, source_path=job.source_path, status=SKIPPED,
                elapsed_sec=0.0, error="Batch cancelled before job started", error_kind="cancelled"
            )
            self._events.put(JobEvent("finished", job, record))
            return

        start_time = time.time()
        job.start()
        self._events.put(JobEvent("started", job))

        try:
            result = self.processor.process_video(job, self._cancel_event)
            if result.success:
                job.frame_count = result.metrics.get('frames_count', 0)
                job.segment_count = result.metrics.get('transcript_segments', 0)
                job.complete(result.output_path, result.processing_time_sec)
            else:
                job.fail(result.error, result.error_kind, result.processing_time_sec)
        except Exception as e:
            log_exception(logger, f"Unexpected error in job {job.id}: {str(e)}")
            job.fail(f"Unexpected error: {str(e)}", error_kind(e), time.time() - start_time)

        self._events.put(JobEvent("finished", job, JobRecord.from_job(job)))

    def _record(self, summary: BatchSummary, record: JobRecord) -> None:
        summary.record(record)
        self._notify('on_job_finished', record, summary)

    def _has_result(self, job: VideoJob) -> bool:
        return result_path(self.config.output_dir(), job.id, self.config.OUTPUT_FORMAT).exists()

    def _notify(self, hook: str, *args) -> None:
        for listener in self.listeners:
            try:
                getattr(listener, hook)(*args)
            except Exception as e:
                logger.warning(f"Progress listener {type(listener).__name__}.{hook} failed: {e}")

    def _write_summary(self, summary: BatchSummary) -> None:
        output_dir = self.config.output_dir()
        try:
            with atomic_write(output_dir / SUMMARY_JSON) as f:
                json.dump(summary.to_dict(), f, indent=2)
                f.write("\n")
            with atomic_write(output_dir / SUMMARY_TXT) as f:
                f.write(format_summary(summary))
            logger.info(f"Batch summary written to {output_dir}")
        except OSError as e:
            log_exception(logger, f"Failed to write batch summary to {output_dir}: {e}")


def format_summary(summary: BatchSummary) -> str:
    """Plain-text batch report"""
    lines = [
        "Batch Processing Summary",
        "=" * 50,
        f"Total videos: {summary.total}",
        f"Succeeded: {summary.succeeded}",
        f"Failed: {summary.failed}",
        f"Skipped: {summary.skipped}",
        f"Cancelled: {'yes' if summary.cancelled else 'no'}",
        f"Elapsed: {summary.elapsed_sec:.2f}s",
        "",
    ]
    for record in summary.records:
        line = f"{record.job_id}: {record.status} ({record.elapsed_sec:.2f}s)"
        if record.output_path:
            line += f" -> {record.output_path}"
        if record.error:
            line += f" [{record.error_kind}] {record.error}"
        lines.append(line)
    return "\n".join(lines) + "\n"
