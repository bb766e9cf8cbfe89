"""
Single-video processing pipeline.

Runs one video through probe, frame analysis, audio analysis,
synchronization and result output, checking for cancellation between
stages.
"""

import time
import logging
import threading
from pathlib import Path
from typing import Callable, Optional

from .backends.base import InferenceBackend
from .config import ProcessingConfig
from .errors import JobCancelled, OutputError, error_kind
from .logging_setup import log_exception
from .models import ProcessingResult, VideoJob
from .pipeline.frames import FrameAnalyzer
from .pipeline.media import VideoSource
from .pipeline.output import write_results
from .pipeline.sync import format_events, synchronize
from .pipeline.transcribe import AudioAnalyzer, save_srt
from .pipeline.util import clean_filename, get_audio_path, get_frames_dir, get_video_output_dir, result_path

logger = logging.getLogger("event_worker")

SourceFactory = Callable[[str, ProcessingConfig], VideoSource]


class VideoProcessor:
    """Handles single-video pipeline execution"""

    def __init__(
        self,
        config: ProcessingConfig,
        backend: InferenceBackend,
        source_factory: Optional[SourceFactory] = None
    ):
        self.config = config
        self.backend = backend
        self.source_factory = source_factory or VideoSource

    def process_video(self, job: VideoJob, cancel_event: Optional[threading.Event] = None) -> ProcessingResult:
        """
        Process a single video through the complete pipeline.

        Args:
            job: Job holding the source path
            cancel_event: Set by the orchestrator to abort between stages

        Returns:
            ProcessingResult with success status, error kind and metrics
        """
        start_time = time.time()
        stages_completed = []

        try:
            logger.info(f"Processing job {job.id}: {job.source_path}")
            source = self.source_factory(job.source_path, self.config)

            # Step 1: Read container metadata before any decode work
            meta = source.metadata
            logger.info(f"PROBE: {job.id} is {meta.duration_sec:.2f}s, {meta.width}x{meta.height} "
                        f"@ {meta.fps:.2f}fps, audio={meta.has_audio}")
            stages_completed.append("probe")
            self._check_cancelled(cancel_event, job)

            # Step 2: Backend must be usable before any per-unit call
            self.backend.load()
            stages_completed.append("backend")

            # Step 3: Sample and analyze frames
            logger.info(f"FRAMES: Starting frame analysis for {job.id}")
            frame_analyzer = FrameAnalyzer(
                self.backend,
                confidence_threshold=self.config.CONFIDENCE_THRESHOLD,
                max_concurrent=self.config.FRAME_WORKERS,
                frames_dir=self._frames_dir(job)
            )
            detections = frame_analyzer.analyze(source.iter_frames(), job.id, cancel_event)
            stages_completed.append("frames")
            self._check_cancelled(cancel_event, job)

            # Step 4: Extract, segment and transcribe audio
            logger.info(f"AUDIO: Starting transcription for {job.id}")
            if self.config.SAVE_AUDIO:
                self._save_audio(source, job)
            audio_analyzer = AudioAnalyzer(self.backend, min_confidence=self.config.CONFIDENCE_THRESHOLD)
            segments = audio_analyzer.analyze(source.iter_chunks(), job.id, cancel_event)
            if self.config.SAVE_AUDIO and segments:
                self._save_subtitles(segments, job)
            stages_completed.append("audio")

            # Step 5: Merge both timelines
            events = synchronize(detections, segments, tolerance=self.config.MATCH_TOLERANCE_SEC)
            stages_completed.append("sync")
            self._check_cancelled(cancel_event, job)

            # Step 6: Publish the primary result
            output_path = write_results(
                events,
                result_path(self.config.output_dir(), job.id, self.config.OUTPUT_FORMAT),
                self.config.OUTPUT_FORMAT,
                title=Path(job.source_path).name
            )
            stages_completed.append("output")

            processing_time = time.time() - start_time
            logger.info(f"READY: Pipeline completed for {job.id} in {processing_time:.2f}s "
                        f"({len(events)} events)")

            return ProcessingResult(
                success=True,
                stages_completed=stages_completed,
                events=events,
                output_path=str(output_path),
                processing_time_sec=processing_time,
                metrics={
                    'processing_time_sec': processing_time,
                    'frames_count': len(detections),
                    'objects_count': sum(len(d.objects) for d in detections),
                    'transcript_segments': len(segments),
                    'events_count': len(events),
                    'frame_warnings': frame_analyzer.warnings,
                    'audio_warnings': audio_analyzer.warnings,
                    'frames_saved': len(frame_analyzer.saved_frames)
                }
            )

        except Exception as e:
            processing_time = time.time() - start_time
            if isinstance(e, JobCancelled):
                error_msg = f"Pipeline cancelled for {job.id}: {str(e)}"
                logger.warning(error_msg)
            else:
                error_msg = f"Pipeline failed for {job.id}: {str(e)}"
                log_exception(logger, error_msg)

            return ProcessingResult(
                success=False,
                stages_completed=stages_completed,
                error=error_msg,
                error_kind=error_kind(e),
                processing_time_sec=processing_time,
                metrics={
                    'processing_time_sec': processing_time,
                    'failed_at_stage': stages_completed[-1] if stages_completed else 'start'
                }
            )

    def _check_cancelled(self, cancel_event: Optional[threading.Event], job: VideoJob) -> None:
        if cancel_event is not None and cancel_event.is_set():
            raise JobCancelled(f"Batch cancelled while processing {job.id}")

    def _frames_dir(self, job: VideoJob) -> Optional[str]:
        if not self.config.SAVE_FRAMES:
            return None
        try:
            return str(get_frames_dir(self.config.output_dir(), job.id))
        except OSError as e:
            logger.warning(f"Frame persistence disabled for {job.id}: {e}")
            return None

    def _save_audio(self, source: VideoSource, job: VideoJob) -> None:
        try:
            audio_path = source.save_audio(str(get_audio_path(self.config.output_dir(), job.id)))
            if audio_path:
                logger.info(f"Saved audio track for {job.id}: {audio_path}")
        except OutputError as e:
            logger.warning(f"Could not save audio track for {job.id}: {e}")

    def _save_subtitles(self, segments, job: VideoJob) -> None:
        srt_path = get_video_output_dir(self.config.output_dir(), job.id) / "transcript.srt"
        try:
            save_srt(segments, srt_path)
        except OutputError as e:
            logger.warning(f"Could not save subtitles for {job.id}: {e}")


def process_single(
    video_path: str,
    config: ProcessingConfig,
    backend: InferenceBackend,
    cancel_event: Optional[threading.Event] = None
) -> VideoJob:
    """
    Process one video file outside of a batch.

    Returns:
        The terminal VideoJob
    """
    job = VideoJob(id=clean_filename(Path(video_path).stem), source_path=str(video_path))
    processor = VideoProcessor(config, backend)

    job.start()
    result = processor.process_video(job, cancel_event)

    if result.success:
        job.frame_count = result.metrics.get('frames_count', 0)
        job.segment_count = result.metrics.get('transcript_segments', 0)
        job.complete(result.output_path, result.processing_time_sec)
        logger.info(format_events(result.events, title=Path(video_path).name))
    else:
        job.fail(result.error, result.error_kind, result.processing_time_sec)

    logger.info(f"Job {job.id} finished with status {job.status.value} in {job.elapsed_sec:.2f}s")
    return job
