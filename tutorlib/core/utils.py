#!/usr/bin/env python3

import os
import re
import subprocess
import sys
import time
from fractions import Fraction

#============================================

_QUIET_MODE = False
_COMMAND_REPORTER = None
_COMMAND_INDEX = 0

#============================================

def set_quiet_mode(quiet: bool) -> None:
	global _QUIET_MODE
	_QUIET_MODE = bool(quiet)

#============================================

def is_quiet_mode() -> bool:
	return _QUIET_MODE

#============================================

def set_command_reporter(reporter) -> None:
	global _COMMAND_REPORTER
	_COMMAND_REPORTER = reporter

#============================================

def clear_command_reporter() -> None:
	global _COMMAND_REPORTER
	_COMMAND_REPORTER = None

#============================================

def _report_command(event: dict) -> None:
	if _COMMAND_REPORTER is None:
		return
	_COMMAND_REPORTER(event)

#============================================

def warn(message: str) -> None:
	if _QUIET_MODE:
		return
	sys.stderr.write(f"WARNING: {message}\n")

#============================================

def runCmd(cmd: str, timeout: float = None) -> str:
	"""
	Run a shell command and return its stdout text.

	Raises RuntimeError when the command exits non-zero.
	"""
	global _COMMAND_INDEX
	showcmd = cmd.strip()
	showcmd = re.sub("  *", " ", showcmd)
	if not _QUIET_MODE:
		print(f"CMD: '{showcmd}'")
	_COMMAND_INDEX += 1
	_report_command({'event': 'start', 'command': showcmd, 'index': _COMMAND_INDEX})
	t0 = time.time()
	proc = subprocess.Popen(showcmd, shell=True, stderr=subprocess.PIPE,
		stdout=subprocess.PIPE)
	try:
		stdout, stderr = proc.communicate(timeout=timeout)
	except subprocess.TimeoutExpired:
		proc.kill()
		proc.communicate()
		_report_command({'event': 'end', 'command': showcmd,
			'returncode': -1, 'seconds': time.time() - t0})
		raise RuntimeError(f"command timed out after {timeout:.1f}s: {showcmd}")
	_report_command({'event': 'end', 'command': showcmd,
		'returncode': proc.returncode, 'seconds': time.time() - t0})
	if proc.returncode != 0:
		error_text = stderr.decode("utf-8", errors="replace").strip()
		last_line = error_text.splitlines()[-1] if error_text else "no output"
		raise RuntimeError(f"command failed ({proc.returncode}): {last_line}")
	return stdout.decode("utf-8", errors="replace")

#============================================

def parse_fps(raw_fps) -> Fraction:
	if raw_fps is None:
		raise RuntimeError("profile.fps is required")
	if isinstance(raw_fps, int):
		return Fraction(raw_fps, 1)
	if isinstance(raw_fps, float):
		return Fraction(str(raw_fps))
	if isinstance(raw_fps, str):
		if '/' in raw_fps:
			parts = raw_fps.split('/')
			return Fraction(int(parts[0]), int(parts[1]))
		return Fraction(raw_fps)
	raise RuntimeError("profile.fps must be int, float, or fraction string")

#============================================

def round_half_up_fraction(value: Fraction) -> int:
	numerator = value.numerator
	denominator = value.denominator
	whole = numerator // denominator
	remainder = numerator - (whole * denominator)
	if remainder * 2 >= denominator:
		return whole + 1
	return whole

#============================================

def frame_index_at(milliseconds: float, fps: Fraction) -> int:
	"""
	Index of the fixed-rate frame that is showing at the given time.
	"""
	if milliseconds <= 0:
		return 0
	frame_fraction = Fraction(str(milliseconds)) * fps / 1000
	return frame_fraction.numerator // frame_fraction.denominator

#============================================

def frames_until(milliseconds: float, fps: Fraction) -> int:
	"""
	Count of frames whose start time lies before the given time.
	"""
	if milliseconds <= 0:
		return 0
	frame_fraction = Fraction(str(milliseconds)) * fps / 1000
	whole = frame_fraction.numerator // frame_fraction.denominator
	if whole * frame_fraction.denominator == frame_fraction.numerator:
		return whole
	return whole + 1

#============================================

def seconds_from_frames(frames: int, fps: Fraction) -> float:
	seconds_fraction = Fraction(frames, 1) / fps
	return float(seconds_fraction)

#============================================

def normalize_channels(raw_channels) -> tuple:
	if raw_channels is None:
		return (2, 'stereo')
	channels = str(raw_channels).lower()
	if channels in ('mono', '1'):
		return (1, 'mono')
	if channels in ('stereo', '2'):
		return (2, 'stereo')
	raise RuntimeError("profile.audio.channels must be mono or stereo")

#============================================

def ensure_file_exists(filepath: str) -> None:
	if not os.path.exists(filepath):
		raise RuntimeError(f"file not found: {filepath}")
	return

#============================================

def default_export_filename(extension: str = "webm") -> str:
	millis = int(time.time() * 1000)
	return f"VisionaryTutor_FullMovie_{millis}.{extension}"
