import io
import os
import wave
import logging
from typing import List, Optional

import numpy as np
from openai import OpenAI

from ..errors import BackendUnavailable
from ..models import AudioChunk, AudioSegment

logger = logging.getLogger("event_worker")


def encode_wav(samples: np.ndarray, sample_rate: int) -> bytes:
    """Pack a mono float waveform as 16-bit PCM WAV bytes"""
    pcm = (np.clip(samples, -1.0, 1.0) * 32767).astype(np.int16)
    buffer = io.BytesIO()
    with wave.open(buffer, 'wb') as wav:
        wav.setnchannels(1)
        wav.setsampwidth(2)
        wav.setframerate(sample_rate)
        wav.writeframes(pcm.tobytes())
    return buffer.getvalue()


def logprob_confidence(avg_logprob: Optional[float]) -> float:
    if avg_logprob is None:
        return 1.0
    return float(min(max(np.exp(avg_logprob), 0.0), 1.0))


class WhisperApiTranscriber:
    """Transcribes audio windows with the OpenAI Whisper API"""

    def __init__(self, model: str = "whisper-1"):
        self.model = model
        self._client: Optional[OpenAI] = None

    def load(self) -> None:
        if not os.getenv("OPENAI_API_KEY"):
            raise BackendUnavailable("openai-whisper-api", "OPENAI_API_KEY is not set")
        self._client = OpenAI()

    def transcribe(self, chunk: AudioChunk) -> List[AudioSegment]:
        audio_file = io.BytesIO(encode_wav(chunk.samples, chunk.sample_rate))
        audio_file.name = f"chunk_{chunk.index:04d}.wav"

        transcript = self._client.audio.transcriptions.create(
            model=self.model,
            file=audio_file,
            response_format="verbose_json",
            timestamp_granularities=["segment"]
        )

        segments = []
        if getattr(transcript, 'segments', None):
            for segment in transcript.segments:
                text = segment.text.strip()
                start = chunk.start + float(segment.start)
                end = min(chunk.start + float(segment.end), chunk.end)
                if text and end > start:
                    segments.append(AudioSegment(
                        start=start,
                        end=end,
                        text=text,
                        confidence=logprob_confidence(getattr(segment, 'avg_logprob', None))
                    ))
        elif getattr(transcript, 'text', "").strip():
            # Fallback if no segments
            segments.append(AudioSegment(start=chunk.start, end=chunk.end, text=transcript.text.strip()))

        return segments
