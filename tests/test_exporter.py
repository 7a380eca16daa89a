#!/usr/bin/env python3

"""
Export orchestration tests with the ffmpeg recorder swapped out.
"""

# Standard Library
import os
import sys
import threading
import wave

import numpy
import PIL.Image
import pytest

REPO_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if REPO_ROOT not in sys.path:
	sys.path.insert(0, REPO_ROOT)

from tutorlib.core import audiograph
from tutorlib.core import exporter
from tutorlib.core import recorder
from tutorlib.core import utils
from tutorlib.core.assets import AssetLoader
from tutorlib.core.assets import LoadedSceneAssets
from tutorlib.core.clock import OfflineClock
from tutorlib.core.errors import ExportCancelledError
from tutorlib.core.errors import ExportFailedError
from tutorlib.core.errors import NoExportableScenesError
from tutorlib.core.errors import UnsupportedRecordingFormatError
from tutorlib.core.loader import ExportSettings
from tutorlib.core.recorder import Blob
from tutorlib.core.recorder import RecordingFormat
from tutorlib.core.scene import Scene

#============================================

WEBM = RecordingFormat('video/webm', 'webm', 'libvpx', 'libvorbis', 'webm')
FRAME_MS = 1000.0 / 60.0

#============================================

class FakeRecorder():
	"""
	Stands in for StreamRecorder; samples the surface instead of encoding it.
	"""
	instances = []
	fail_after = None

	def __init__(self, surface, destination, recording_format, fps=30,
		video_bitrate="5M", temp_dir=None):
		self.surface = surface
		self.destination = destination
		self.format = recording_format
		self.fps = fps
		self.temp_dir = temp_dir
		self.state = 'inactive'
		self.chunks = []
		self.captures = []
		self.pixels = []
		self.origin_ms = None
		self.end_ms = None
		self.aborted = False
		FakeRecorder.instances.append(self)

	def start(self, origin_ms, timeslice_ms=100):
		self.origin_ms = origin_ms
		self.state = 'recording'

	def capture(self, now_ms):
		if FakeRecorder.fail_after is not None and len(self.captures) >= FakeRecorder.fail_after:
			raise RuntimeError("encoder pipe closed")
		self.captures.append(now_ms)
		self.pixels.append(self.surface.read_pixel(2, 2))

	def stop(self, end_ms):
		self.end_ms = end_ms
		self.state = 'inactive'
		self.chunks = [b"fake-", b"movie"]
		return Blob(self.chunks, self.format.mime_type)

	def abort(self):
		self.aborted = True
		self.state = 'inactive'

	@property
	def duration_ms(self):
		return self.end_ms - self.origin_ms

#============================================

def _write_wav(path: str, seconds: float, sample_rate: int = 48000) -> str:
	frames = int(round(seconds * sample_rate))
	samples = numpy.full(frames, 1000, dtype='<i2')
	with wave.open(path, 'wb') as handle:
		handle.setnchannels(1)
		handle.setsampwidth(2)
		handle.setframerate(sample_rate)
		handle.writeframes(samples.tobytes())
	return path

#============================================

def _write_png(path: str, color: tuple) -> str:
	PIL.Image.new("RGB", (64, 36), color=color).save(path)
	return path

#============================================

def _settings() -> ExportSettings:
	settings = ExportSettings()
	settings.width = 160
	settings.height = 90
	settings.clock = 'offline'
	return settings

#============================================

@pytest.fixture(autouse=True)
def fake_recording(monkeypatch):
	FakeRecorder.instances = []
	FakeRecorder.fail_after = None
	monkeypatch.setattr(exporter, "StreamRecorder", FakeRecorder)
	monkeypatch.setattr(exporter, "select_format", lambda preferences=None: WEBM)
	utils.set_quiet_mode(True)
	yield
	utils.set_quiet_mode(False)

#============================================

def _run(scenes, output_file, settings=None, on_progress=None, cancel_event=None):
	run = exporter.ExportRun(scenes, on_progress=on_progress,
		settings=settings or _settings(), output_file=output_file,
		cancel_event=cancel_event, clock=OfflineClock(60.0))
	return run

#============================================

def test_three_scene_story_runs_about_23_5_seconds(tmp_path) -> None:
	"""Audio-defined scenes plus one default-length scene, back to back."""
	image = _write_png(str(tmp_path / "still.png"), (200, 10, 10))
	scenes = [
		Scene("s1", script="Welcome to the lesson.", image_uri=image,
			audio_uri=_write_wav(str(tmp_path / "s1.wav"), 12.0)),
		Scene("s2", script="Second point.", image_uri=image,
			audio_uri=_write_wav(str(tmp_path / "s2.wav"), 6.5)),
		Scene("s3", script="Wrap up.", image_uri=image),
	]
	messages = []
	output_file = str(tmp_path / "movie.webm")
	run = _run(scenes, output_file, on_progress=messages.append)
	result = run.run()

	assert run.state == exporter.COMPLETE
	assert [segment[0] for segment in result.segments] == ["s1", "s2", "s3"]
	lengths = [end - start for (_, start, end) in result.segments]
	for (length, expected) in zip(lengths, (12000.0, 6500.0, 5000.0)):
		assert expected <= length < expected + FRAME_MS + 0.001
	assert result.duration_ms == pytest.approx(23500.0, abs=4 * FRAME_MS)
	for previous, current in zip(result.segments, result.segments[1:]):
		assert current[1] >= previous[2]
	with open(output_file, 'rb') as handle:
		assert handle.read() == b"fake-movie"
	assert result.size == 10
	assert result.chunk_count == 2
	assert result.mime_type == 'video/webm'
	assert result.url.startswith("file://")

	assert messages[0] == "Pre-loading media assets..."
	assert messages[-1] == "Export complete."
	render_messages = [message for message in messages if message.startswith("Rendering")]
	assert render_messages == [
		"Rendering scene 1/3...",
		"Rendering scene 2/3...",
		"Rendering scene 3/3...",
	]
	assert messages.index("Starting Render...") < messages.index("Rendering scene 1/3...")
	assert messages.index("Finalizing video...") > messages.index("Rendering scene 3/3...")

#============================================

def test_missing_assets_fall_back_to_placeholder(tmp_path) -> None:
	scenes = [
		Scene("broken", script="", image_uri=str(tmp_path / "missing.png"),
			audio_uri=str(tmp_path / "missing.wav")),
	]
	run = _run(scenes, str(tmp_path / "movie.webm"))
	result = run.run()
	recorder = FakeRecorder.instances[0]
	assert len(recorder.pixels) > 0
	assert set(recorder.pixels) == {(0x22, 0x22, 0x22)}
	(_, start, end) = result.segments[0]
	assert 5000.0 <= end - start < 5000.0 + FRAME_MS + 0.001

#============================================

def test_no_eligible_scenes_rejected_before_output(tmp_path) -> None:
	output_file = str(tmp_path / "movie.webm")
	with pytest.raises(NoExportableScenesError) as caught:
		_run([], output_file).run()
	assert str(caught.value) == "No completed scenes to export."
	scenes = [
		Scene("pending", image_uri="a.png", status="generating"),
		Scene("blind", status="completed"),
	]
	run = _run(scenes, output_file)
	with pytest.raises(NoExportableScenesError):
		run.run()
	assert run.state == exporter.FAILED
	assert not os.path.exists(output_file)
	assert FakeRecorder.instances == []

#============================================

def test_status_is_case_insensitive(tmp_path) -> None:
	image = _write_png(str(tmp_path / "still.png"), (0, 0, 200))
	settings = _settings()
	settings.default_duration_ms = 200.0
	scenes = [Scene("s1", image_uri=image, status="Completed")]
	result = _run(scenes, str(tmp_path / "movie.webm"), settings=settings).run()
	assert [segment[0] for segment in result.segments] == ["s1"]

#============================================

def test_resources_released_after_success(tmp_path) -> None:
	image = _write_png(str(tmp_path / "still.png"), (10, 200, 10))
	settings = _settings()
	settings.default_duration_ms = 300.0
	run = _run([Scene("s1", image_uri=image)], str(tmp_path / "movie.webm"),
		settings=settings)
	run.run()
	assert run.graph.state == audiograph.CLOSED
	assert not os.path.exists(run.temp_dir)
	assert run.loaded[0].image.image is None
	assert FakeRecorder.instances[0].aborted is False

#============================================

def test_resources_released_after_failure(tmp_path) -> None:
	image = _write_png(str(tmp_path / "still.png"), (10, 200, 10))
	audio = _write_wav(str(tmp_path / "s1.wav"), 1.0)
	output_file = str(tmp_path / "movie.webm")
	FakeRecorder.fail_after = 5
	run = _run([Scene("s1", image_uri=image, audio_uri=audio)], output_file)
	with pytest.raises(ExportFailedError) as caught:
		run.run()
	assert isinstance(caught.value.__cause__, RuntimeError)
	assert run.state == exporter.FAILED
	assert FakeRecorder.instances[0].aborted is True
	assert run.graph.state == audiograph.CLOSED
	assert not os.path.exists(run.temp_dir)
	assert not os.path.exists(output_file)

#============================================

def test_unsupported_format_fails_before_loading(tmp_path, monkeypatch) -> None:
	def no_format(preferences=None):
		raise UnsupportedRecordingFormatError()
	monkeypatch.setattr(exporter, "select_format", no_format)
	image = _write_png(str(tmp_path / "still.png"), (10, 10, 10))
	messages = []
	run = _run([Scene("s1", image_uri=image)], str(tmp_path / "movie.webm"),
		on_progress=messages.append)
	with pytest.raises(UnsupportedRecordingFormatError):
		run.run()
	assert messages == []
	assert FakeRecorder.instances == []

#============================================

def test_cancel_between_scenes(tmp_path) -> None:
	image = _write_png(str(tmp_path / "still.png"), (10, 10, 10))
	settings = _settings()
	settings.default_duration_ms = 200.0
	cancel_event = threading.Event()
	def on_progress(message: str) -> None:
		if message == "Rendering scene 2/3...":
			cancel_event.set()
	scenes = [Scene(f"s{index}", image_uri=image) for index in range(1, 4)]
	output_file = str(tmp_path / "movie.webm")
	run = _run(scenes, output_file, settings=settings, on_progress=on_progress,
		cancel_event=cancel_event)
	with pytest.raises(ExportCancelledError):
		run.run()
	assert run.segments[0][0] == "s1"
	assert len(run.segments) == 1
	assert FakeRecorder.instances[0].aborted is True
	assert not os.path.exists(output_file)

#============================================

def test_export_story_to_video_writes_default_name(tmp_path, monkeypatch) -> None:
	monkeypatch.chdir(tmp_path)
	image = _write_png(str(tmp_path / "still.png"), (10, 10, 10))
	settings = _settings()
	settings.default_duration_ms = 100.0
	result = exporter.export_story_to_video([Scene("s1", image_uri=image)],
		settings=settings)
	name = os.path.basename(result.path)
	assert name.startswith("VisionaryTutor_FullMovie_")
	assert name.endswith(".webm")
	assert os.path.isfile(result.path)

#============================================

class ReleaseTracker():
	def __init__(self):
		self.released = False

	def release(self) -> None:
		self.released = True

#============================================

def test_loaded_scenes_released_when_later_load_fails(tmp_path, monkeypatch) -> None:
	videos = []

	class SecondSceneFails(AssetLoader):
		def load_scene(self, scene):
			if scene.scene_id == "s2":
				raise RuntimeError("scene 2 fetch exploded")
			video = ReleaseTracker()
			videos.append(video)
			return LoadedSceneAssets(scene, video=video, duration_ms=1000.0)

	monkeypatch.setattr(exporter, "AssetLoader", SecondSceneFails)
	scenes = [Scene("s1", video_uri="one.mp4"), Scene("s2", video_uri="two.mp4")]
	run = _run(scenes, str(tmp_path / "movie.webm"))
	with pytest.raises(ExportFailedError):
		run.run()
	assert len(videos) == 1
	assert videos[0].released is True
	assert [assets.scene.scene_id for assets in run.loaded] == ["s1"]
	assert FakeRecorder.instances == []

#============================================

def test_result_carries_fallback_format(tmp_path, monkeypatch) -> None:
	"""Only vp8 is available, so the second preference is recorded."""
	monkeypatch.setattr(exporter, "select_format", recorder.select_format)
	monkeypatch.setattr(recorder.ffmpeg, "have_ffmpeg", lambda: True)
	monkeypatch.setattr(recorder.ffmpeg, "listEncoders", lambda: {'libvpx', 'libopus'})
	monkeypatch.setattr(recorder.ffmpeg, "listMuxers", lambda: {'webm'})
	image = _write_png(str(tmp_path / "still.png"), (10, 10, 10))
	settings = _settings()
	settings.default_duration_ms = 100.0
	result = _run([Scene("s1", image_uri=image)], str(tmp_path / "movie"),
		settings=settings).run()
	assert result.mime_type == 'video/webm;codecs=vp8,opus'
	assert result.path.endswith("movie.webm")
	assert FakeRecorder.instances[0].format.mime_type == result.mime_type
