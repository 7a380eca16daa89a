#!/usr/bin/env python3

"""
Frame timing helpers, clocks and scene eligibility.
"""

# Standard Library
import os
import re
import sys
from fractions import Fraction

import pytest

REPO_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if REPO_ROOT not in sys.path:
	sys.path.insert(0, REPO_ROOT)

from tutorlib.core import utils
from tutorlib.core.clock import OfflineClock
from tutorlib.core.clock import RealtimeClock
from tutorlib.core.clock import make_clock
from tutorlib.core.scene import Scene
from tutorlib.core.scene import exportable_scenes

#============================================

def test_frame_index_and_count() -> None:
	fps = Fraction(30, 1)
	assert utils.frame_index_at(0.0, fps) == 0
	assert utils.frame_index_at(33.3, fps) == 0
	assert utils.frame_index_at(100.0, fps) == 3
	assert utils.frames_until(0.0, fps) == 0
	assert utils.frames_until(100.0, fps) == 3
	assert utils.frames_until(100.1, fps) == 4
	assert utils.frames_until(23500.0, fps) == 705

#============================================

def test_parse_fps_forms() -> None:
	assert utils.parse_fps(30) == Fraction(30)
	assert utils.parse_fps("30000/1001") == Fraction(30000, 1001)
	assert utils.parse_fps(29.97) == Fraction("29.97")
	with pytest.raises(RuntimeError):
		utils.parse_fps(None)

#============================================

def test_default_export_filename() -> None:
	name = utils.default_export_filename("mp4")
	assert re.match(r"^VisionaryTutor_FullMovie_\d{13}\.mp4$", name)

#============================================

def test_offline_clock_advances_one_interval() -> None:
	clock = OfflineClock(50.0)
	assert clock.now() == 0.0
	assert clock.wait_next_frame() == 20.0
	assert clock.now() == 20.0

#============================================

def test_make_clock_modes() -> None:
	assert isinstance(make_clock('realtime', 60.0), RealtimeClock)
	assert isinstance(make_clock('offline', 60.0), OfflineClock)
	with pytest.raises(RuntimeError):
		make_clock('virtual', 60.0)

#============================================

def test_realtime_clock_paces_frames() -> None:
	clock = RealtimeClock(100.0)
	start = clock.now()
	for _ in range(3):
		clock.wait_next_frame()
	assert clock.now() - start >= 25.0

#============================================

def test_scene_eligibility() -> None:
	scenes = [
		Scene("a", image_uri="a.png"),
		Scene("b", video_uri="b.mp4", status="COMPLETED"),
		Scene("c", image_uri="c.png", status="generating"),
		Scene("d", audio_uri="d.wav"),
	]
	assert [scene.scene_id for scene in exportable_scenes(scenes)] == ["a", "b"]

#============================================

def test_scene_is_read_only() -> None:
	scene = Scene("a", image_uri="a.png")
	with pytest.raises(AttributeError):
		scene.status = "failed"
