#!/usr/bin/env python3

"""
Video playback timing with the ffmpeg decoder replaced by a frame counter.
"""

# Standard Library
import os
import sys

import numpy
import pytest

REPO_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if REPO_ROOT not in sys.path:
	sys.path.insert(0, REPO_ROOT)

from tutorlib.core import timeline
from tutorlib.core.assets import LoadedSceneAssets
from tutorlib.core.assets import VideoHandle
from tutorlib.core.audiograph import AudioBuffer
from tutorlib.core.scene import Scene

#============================================

class CountingVideo(VideoHandle):
	"""
	Decoder stand-in: frame N is the integer N, the clip has a fixed frame count.
	"""
	def __init__(self, duration, frame_count: int):
		super().__init__("clip.mp4", "clip.mp4", duration, (64, 36))
		self.frame_count = frame_count
		self.restarts = 0

	def _restart_decoder(self) -> None:
		self.restarts += 1
		self._proc = object()
		self._frame_index = -1

	def _read_next_frame(self) -> bool:
		if self._frame_index + 1 >= self.frame_count:
			return False
		self._frame_index += 1
		self._frame = self._frame_index
		return True

	def _stop_decoder(self) -> None:
		self._proc = None

#============================================

def _started(video: VideoHandle, loop: bool) -> VideoHandle:
	video.prime(64, 36, 30)
	video.loop = loop
	video.play()
	return video

#============================================

def test_prime_holds_first_frame() -> None:
	video = CountingVideo(4.0, 120)
	video.prime(64, 36, 30)
	assert video.paused is True
	assert video.frame_at(2500.0) == 0

#============================================

def test_loops_under_long_narration() -> None:
	"""A 4s clip under 12s of narration wraps around twice."""
	video = CountingVideo(4.0, 120)
	scene = Scene("a", video_uri="clip.mp4")
	narration = AudioBuffer(numpy.zeros(12 * 48000, dtype=numpy.float32), 48000)
	assets = LoadedSceneAssets(scene, audio_buffer=narration, video=video)
	plan = timeline.resolve_plan(assets)
	assert plan.duration_ms == pytest.approx(12000.0)
	_started(video, plan.loop_video)
	assert video.frame_at(1000.0) == 30
	assert video.frame_at(5000.0) == 30
	assert video.loop_count == 1
	assert video.frame_at(11000.0) == 90
	assert video.loop_count == 2
	assert video.ended is False

#============================================

def test_single_play_ends_on_last_frame() -> None:
	video = _started(CountingVideo(2.0, 60), loop=False)
	assert video.frame_at(1000.0) == 30
	assert video.ended is False
	assert video.frame_at(2500.0) == 59
	assert video.ended is True

#============================================

def test_unknown_duration_learned_at_end_of_stream() -> None:
	video = _started(CountingVideo(None, 45), loop=False)
	assert video.frame_at(3000.0) == 44
	assert video.ended is True
	assert video.duration == pytest.approx(1.5)

#============================================

def test_pause_freezes_frame() -> None:
	video = _started(CountingVideo(4.0, 120), loop=True)
	assert video.frame_at(1000.0) == 30
	video.pause()
	assert video.frame_at(3000.0) == 30
