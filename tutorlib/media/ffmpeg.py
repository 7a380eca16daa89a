#!/usr/bin/env python3

import json
import os
import shlex
import shutil
import numpy
from tutorlib.core import utils

#============================================

_CAPABILITY_CACHE = {}

#============================================

def have_ffmpeg() -> bool:
	return shutil.which("ffmpeg") is not None and shutil.which("ffprobe") is not None

#============================================

def probeMedia(mediafile: str, timeout: float = None) -> dict:
	cmd = "ffprobe -v error "
	cmd += " -show_entries format=duration:stream=codec_type,width,height,duration "
	cmd += f" -of json {shlex.quote(mediafile)} "
	payload = utils.runCmd(cmd, timeout=timeout)
	data = json.loads(payload)
	if not isinstance(data, dict):
		raise RuntimeError(f"unreadable probe output for {mediafile}")
	return data

#============================================

def getDuration(probe: dict) -> float:
	"""
	Container duration in seconds, or None when the media does not report one.
	"""
	duration = probe.get('format', {}).get('duration')
	if duration is None:
		for stream in probe.get('streams', []):
			if stream.get('duration') is not None:
				duration = stream.get('duration')
				break
	if duration in (None, 'N/A'):
		return None
	value = float(duration)
	if value <= 0:
		return None
	return value

#============================================

def getVideoDimensions(probe: dict) -> tuple:
	for stream in probe.get('streams', []):
		if stream.get('codec_type') == 'video':
			return (int(stream['width']), int(stream['height']))
	return None

#============================================

def decodeAudio(mediafile: str, rawfile: str, sample_rate: int, channels: int,
	timeout: float = None) -> numpy.ndarray:
	"""
	Decode any audio ffmpeg understands to interleaved float32 samples.

	Returns an array shaped (frames, channels).
	"""
	cmd = "ffmpeg -y -nostdin -v error "
	cmd += f" -i {shlex.quote(mediafile)} "
	cmd += " -sn -vn "
	cmd += f" -f f32le -acodec pcm_f32le -ar {sample_rate} -ac {channels} "
	cmd += f" {shlex.quote(rawfile)} "
	try:
		utils.runCmd(cmd, timeout=timeout)
		utils.ensure_file_exists(rawfile)
		samples = numpy.fromfile(rawfile, dtype='<f4')
	finally:
		if os.path.exists(rawfile):
			os.remove(rawfile)
	if samples.size == 0:
		raise RuntimeError(f"no audio samples decoded from {mediafile}")
	frame_count = samples.size // channels
	return samples[:frame_count * channels].reshape(frame_count, channels)

#============================================

def videoDecoderArgs(mediafile: str, width: int, height: int, fps) -> list:
	"""
	ffmpeg arguments that stream the file as rgb24 frames on stdout.
	"""
	return [
		"ffmpeg", "-nostdin", "-v", "error",
		"-i", mediafile,
		"-an", "-sn",
		"-vf", f"scale={width}:{height},fps={float(fps):.6f}",
		"-f", "rawvideo", "-pix_fmt", "rgb24",
		"pipe:1",
	]

#============================================

def _list_capabilities(flag: str) -> set:
	cached = _CAPABILITY_CACHE.get(flag)
	if cached is not None:
		return cached
	payload = utils.runCmd(f"ffmpeg -hide_banner {flag}")
	names = set()
	past_header = False
	for line in payload.splitlines():
		stripped = line.strip()
		if stripped.startswith("--"):
			past_header = True
			continue
		if not past_header or stripped == "":
			continue
		parts = stripped.split()
		if len(parts) < 2:
			continue
		for name in parts[1].split(','):
			names.add(name)
	_CAPABILITY_CACHE[flag] = names
	return names

#============================================

def listEncoders() -> set:
	return _list_capabilities("-encoders")

#============================================

def listMuxers() -> set:
	return _list_capabilities("-muxers")
