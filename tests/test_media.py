import ffmpeg
import pytest

from event_worker.errors import InputError, OutputError
from event_worker.pipeline import media
from event_worker.pipeline.media import probe_video, sample_timestamps, save_frame

from conftest import make_frame


def _probe_result(duration="10.0", audio=True):
    streams = [{
        'codec_type': 'video',
        'width': 640,
        'height': 360,
        'duration': duration,
        'avg_frame_rate': '30000/1001',
    }]
    if audio:
        streams.append({'codec_type': 'audio'})
    return {'streams': streams, 'format': {'format_name': 'mov,mp4,m4a,3gp,3g2,mj2', 'duration': duration}}


@pytest.fixture
def video_file(tmp_path):
    path = tmp_path / "clip.mp4"
    path.write_bytes(b"\x00" * 16)
    return path


class TestSampleTimestamps:
    def test_ten_second_video_at_one_fps_excludes_boundary(self):
        timestamps = sample_timestamps(10.0, 1.0)
        assert len(timestamps) == 10
        assert timestamps[0] == 0.0
        assert timestamps[-1] == 9.0
        assert 10.0 not in timestamps

    def test_partial_last_interval_is_sampled(self):
        assert sample_timestamps(10.5, 1.0)[-1] == 10.0
        assert len(sample_timestamps(10.5, 1.0)) == 11

    def test_float_noise_does_not_add_boundary_frame(self):
        assert len(sample_timestamps(0.3, 0.1)) == 3

    def test_interval_longer_than_video(self):
        assert sample_timestamps(0.5, 2.0) == [0.0]

    def test_empty_video(self):
        assert sample_timestamps(0.0, 1.0) == []

    def test_timestamps_are_increasing(self):
        timestamps = sample_timestamps(7.3, 0.25)
        assert all(a < b for a, b in zip(timestamps, timestamps[1:]))

    def test_non_positive_interval_rejected(self):
        with pytest.raises(ValueError):
            sample_timestamps(10.0, 0.0)


class TestProbeVideo:
    def test_reads_metadata(self, video_file, monkeypatch):
        monkeypatch.setattr(media.ffmpeg, "probe", lambda path: _probe_result())

        meta = probe_video(str(video_file))

        assert meta.duration_sec == 10.0
        assert (meta.width, meta.height) == (640, 360)
        assert meta.fps == pytest.approx(29.97, abs=0.01)
        assert meta.has_audio is True

    def test_missing_file(self, tmp_path):
        with pytest.raises(InputError, match="not found"):
            probe_video(str(tmp_path / "missing.mp4"))

    def test_unsupported_extension(self, tmp_path):
        path = tmp_path / "notes.txt"
        path.write_text("not a video")
        with pytest.raises(InputError, match="Unsupported container"):
            probe_video(str(path))

    def test_extension_match_is_case_insensitive(self, tmp_path, monkeypatch):
        path = tmp_path / "CLIP.MOV"
        path.write_bytes(b"\x00")
        monkeypatch.setattr(media.ffmpeg, "probe", lambda p: _probe_result(audio=False))
        assert probe_video(str(path)).has_audio is False

    def test_unreadable_container(self, video_file, monkeypatch):
        def broken_probe(path):
            raise ffmpeg.Error("ffprobe", b"", b"moov atom not found")

        monkeypatch.setattr(media.ffmpeg, "probe", broken_probe)
        with pytest.raises(InputError, match="moov atom not found"):
            probe_video(str(video_file))

    def test_no_video_stream(self, video_file, monkeypatch):
        monkeypatch.setattr(media.ffmpeg, "probe", lambda p: {'streams': [{'codec_type': 'audio'}], 'format': {}})
        with pytest.raises(InputError, match="No video stream"):
            probe_video(str(video_file))

    def test_zero_duration(self, video_file, monkeypatch):
        monkeypatch.setattr(media.ffmpeg, "probe", lambda p: _probe_result(duration="0"))
        with pytest.raises(InputError, match="Invalid video geometry"):
            probe_video(str(video_file))


class TestSaveFrame:
    def test_writes_jpeg_named_by_index(self, tmp_path):
        path = save_frame(make_frame(7, 7.0), str(tmp_path))
        assert path.endswith("frame_0007.jpg")
        with open(path, "rb") as f:
            assert f.read(2) == b"\xff\xd8"

    def test_released_frame_is_an_artifact_error(self, tmp_path):
        frame = make_frame(0, 0.0)
        frame.release()
        with pytest.raises(OutputError) as exc_info:
            save_frame(frame, str(tmp_path))
        assert exc_info.value.primary is False


class TestFrame:
    def test_dimensions_inferred_from_pixels(self):
        frame = make_frame(0, 0.0)
        assert (frame.width, frame.height) == (64, 48)

    def test_negative_timestamp_rejected(self):
        with pytest.raises(ValueError):
            make_frame(0, -0.5)

    def test_release_drops_pixels(self):
        frame = make_frame(0, 0.0)
        frame.release()
        assert frame.pixels is None
