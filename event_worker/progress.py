"""
Batch progress notifications.

Listeners are called from the orchestrator's aggregator loop on the
calling thread, never from a worker, so a slow listener cannot stall
in-flight jobs.
"""

import logging
from typing import Optional

from tqdm import tqdm

from .models import BatchSummary, JobRecord, VideoJob

logger = logging.getLogger("event_worker")


class ProgressListener:
    """Base listener; every hook is a no-op"""

    def on_batch_started(self, total: int) -> None:
        pass

    def on_job_started(self, job: VideoJob) -> None:
        pass

    def on_job_finished(self, record: JobRecord, summary: BatchSummary) -> None:
        pass

    def on_batch_finished(self, summary: BatchSummary) -> None:
        pass


class TqdmProgress(ProgressListener):
    """Progress bar over the jobs of a batch"""

    def __init__(self, desc: str = "videos", disable: Optional[bool] = None):
        self.desc = desc
        self.disable = disable
        self.bar: Optional[tqdm] = None

    def on_batch_started(self, total: int) -> None:
        self.bar = tqdm(total=total, desc=self.desc, unit="video", disable=self.disable)

    def on_job_finished(self, record: JobRecord, summary: BatchSummary) -> None:
        if self.bar is None:
            return
        self.bar.update(1)
        self.bar.set_postfix(ok=summary.succeeded, failed=summary.failed, skipped=summary.skipped)

    def on_batch_finished(self, summary: BatchSummary) -> None:
        if self.bar is not None:
            self.bar.close()
            self.bar = None


class LoggingProgress(ProgressListener):
    """Logs one line per finished job"""

    def __init__(self):
        self.total = 0

    def on_batch_started(self, total: int) -> None:
        self.total = total

    def on_job_started(self, job: VideoJob) -> None:
        logger.debug(f"Job {job.id} started: {job.source_path}")

    def on_job_finished(self, record: JobRecord, summary: BatchSummary) -> None:
        done = summary.succeeded + summary.failed + summary.skipped
        if record.error:
            logger.info(f"[{done}/{self.total}] {record.job_id}: {record.status} ({record.error_kind}) "
                        f"in {record.elapsed_sec:.2f}s")
        else:
            logger.info(f"[{done}/{self.total}] {record.job_id}: {record.status} in {record.elapsed_sec:.2f}s")

    def on_batch_finished(self, summary: BatchSummary) -> None:
        logger.info(f"Batch finished: {summary.succeeded} succeeded, {summary.failed} failed, "
                    f"{summary.skipped} skipped in {summary.elapsed_sec:.2f}s")
