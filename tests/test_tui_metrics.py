#!/usr/bin/env python3

"""
Unit tests for tutor_tui dashboard helpers.
"""

# Standard Library
import os
import sys
import threading
import types

REPO_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if REPO_ROOT not in sys.path:
	sys.path.insert(0, REPO_ROOT)

from tutor_tui import SCENE_PROGRESS_RE
from tutor_tui import TutorTuiApp

#============================================

def _make_app_stub() -> types.SimpleNamespace:
	"""
	Create a stub object for dashboard helpers.
	"""
	stub = types.SimpleNamespace()
	stub.cancelled = False
	stub.error_text = None
	stub.finished = False
	stub.cancel_event = threading.Event()
	return stub

#============================================

def test_format_duration_boundaries() -> None:
	"""
	Ensure duration formatting switches at minute/hour boundaries.
	"""
	stub = _make_app_stub()
	assert TutorTuiApp._format_duration(stub, 12.4) == "12.4s"
	assert TutorTuiApp._format_duration(stub, 60.0) == "1m 00.0s"
	assert TutorTuiApp._format_duration(stub, 3661.2) == "1h 01m 01.2s"

#============================================

def test_status_text_follows_run_state() -> None:
	stub = _make_app_stub()
	assert TutorTuiApp._status_text(stub) == "running"
	stub.cancel_event.set()
	assert TutorTuiApp._status_text(stub) == "cancelling"
	stub.cancelled = True
	assert TutorTuiApp._status_text(stub) == "cancelled"
	stub = _make_app_stub()
	stub.finished = True
	assert TutorTuiApp._status_text(stub) == "done"
	stub.error_text = "boom"
	assert TutorTuiApp._status_text(stub) == "failed"

#============================================

def test_summarize_ffmpeg_command() -> None:
	stub = _make_app_stub()
	command = "ffprobe -v error -of json '/tmp/cache/clip-video.mp4'"
	assert TutorTuiApp._summarize_command(stub, command) == "ffprobe: clip-video.mp4"
	assert TutorTuiApp._summarize_command(stub, "") == "command"

#============================================

def test_scene_progress_pattern() -> None:
	match = SCENE_PROGRESS_RE.match("Rendering scene 2/7...")
	assert (match.group(1), match.group(2)) == ("2", "7")
	assert SCENE_PROGRESS_RE.match("Loading assets for scene 2/7...") is None
