#!/usr/bin/env python3

import os
import subprocess
import tempfile
import threading
from fractions import Fraction
from tutorlib.core import utils
from tutorlib.core.errors import UnsupportedRecordingFormatError
from tutorlib.media import ffmpeg

#============================================

LIVE = 'live'
ENDED = 'ended'

#============================================

class RecordingFormat():
	def __init__(self, mime_type: str, muxer: str, video_codec: str,
		audio_codec: str, extension: str, muxer_args: list = None):
		self.mime_type = mime_type
		self.muxer = muxer
		self.video_codec = video_codec
		self.audio_codec = audio_codec
		self.extension = extension
		self.muxer_args = muxer_args or []

	#============================
	def __repr__(self) -> str:
		return f"RecordingFormat({self.mime_type!r})"

#============================================

FORMAT_PREFERENCES = [
	RecordingFormat('video/webm;codecs=vp9,opus', 'webm', 'libvpx-vp9', 'libopus', 'webm'),
	RecordingFormat('video/webm;codecs=vp8,opus', 'webm', 'libvpx', 'libopus', 'webm'),
	RecordingFormat('video/webm', 'webm', 'libvpx', 'libvorbis', 'webm'),
	RecordingFormat('video/mp4', 'mp4', 'libx264', 'aac', 'mp4'),
]

#============================================

def select_format(preferences: list = None) -> RecordingFormat:
	"""
	First preferred container/codec pair the local ffmpeg can produce.
	"""
	candidates = FORMAT_PREFERENCES
	if preferences:
		by_mime = {fmt.mime_type: fmt for fmt in FORMAT_PREFERENCES}
		candidates = []
		for mime_type in preferences:
			if mime_type not in by_mime:
				raise RuntimeError(f"unknown recording format: {mime_type}")
			candidates.append(by_mime[mime_type])
	if not ffmpeg.have_ffmpeg():
		raise UnsupportedRecordingFormatError()
	encoders = ffmpeg.listEncoders()
	muxers = ffmpeg.listMuxers()
	for fmt in candidates:
		if fmt.muxer not in muxers:
			continue
		if fmt.video_codec in encoders and fmt.audio_codec in encoders:
			return fmt
	raise UnsupportedRecordingFormatError()

#============================================

class Blob():
	def __init__(self, chunks: list, mime_type: str):
		self.data = b"".join(chunks)
		self.mime_type = mime_type

	#============================
	@property
	def size(self) -> int:
		return len(self.data)

#============================================

class MediaTrack():
	def __init__(self, kind: str, handle):
		self.kind = kind
		self.ready_state = LIVE
		self._handle = handle

	#============================
	def write(self, data: bytes) -> None:
		if self.ready_state != LIVE:
			raise RuntimeError(f"{self.kind} track has ended")
		self._handle.write(data)
		self._handle.flush()

	#============================
	def stop(self) -> None:
		if self.ready_state == ENDED:
			return
		self.ready_state = ENDED
		try:
			self._handle.close()
		except BrokenPipeError:
			# encoder already gone, nothing left to flush
			pass

#============================================

class StreamRecorder():
	"""
	Record the render surface and the audio mix into one container.

	Frames are sampled at a fixed rate from the surface, each paired with
	its window of mixed audio, and both are streamed to an ffmpeg muxer.
	Muxed output is read back in chunks as it is produced.
	"""
	def __init__(self, surface, destination, recording_format: RecordingFormat,
		fps=30, video_bitrate: str = "5M", temp_dir: str = None):
		self.surface = surface
		self.destination = destination
		self.format = recording_format
		self.fps = Fraction(fps)
		self.video_bitrate = video_bitrate
		self.temp_dir = temp_dir
		self.state = 'inactive'
		self.chunks = []
		self.tracks = []
		self.frames_written = 0
		self.samples_written = 0
		self._origin_ms = None
		self._proc = None
		self._reader = None
		self._stderr_file = None

	#============================
	def start(self, origin_ms: float, timeslice_ms: int = 100) -> None:
		if self.state != 'inactive':
			raise RuntimeError("recorder already started")
		(audio_read, audio_write) = os.pipe()
		self._stderr_file = tempfile.TemporaryFile(dir=self.temp_dir)
		args = self._build_args(audio_read, timeslice_ms)
		if not utils.is_quiet_mode():
			print(f"CMD: '{' '.join(args)}'")
		try:
			self._proc = subprocess.Popen(args, stdin=subprocess.PIPE,
				stdout=subprocess.PIPE, stderr=self._stderr_file,
				pass_fds=(audio_read,))
		except OSError:
			os.close(audio_write)
			raise
		finally:
			os.close(audio_read)
		video_track = MediaTrack('video', self._proc.stdin)
		audio_track = MediaTrack('audio', os.fdopen(audio_write, 'wb'))
		self.tracks = [video_track, audio_track]
		self._reader = threading.Thread(target=self._read_chunks,
			name="recorder-output", daemon=True)
		self._reader.start()
		self._origin_ms = origin_ms
		self.state = 'recording'

	#============================
	def capture(self, now_ms: float) -> None:
		"""
		Emit every frame whose start time has been reached.
		"""
		if self.state != 'recording':
			raise RuntimeError("recorder is not recording")
		target = utils.frame_index_at(now_ms - self._origin_ms, self.fps) + 1
		self._write_frames(target)

	#============================
	def stop(self, end_ms: float) -> Blob:
		if self.state != 'recording':
			raise RuntimeError("recorder is not recording")
		self._write_frames(utils.frames_until(end_ms - self._origin_ms, self.fps))
		self.state = 'stopping'
		for track in self.tracks:
			track.stop()
		returncode = self._proc.wait()
		self._reader.join()
		self.state = 'inactive'
		if returncode != 0:
			raise RuntimeError(f"recorder encoder failed ({returncode}): {self._error_tail()}")
		self._close_stderr()
		return Blob(self.chunks, self.format.mime_type)

	#============================
	def abort(self) -> None:
		for track in self.tracks:
			track.stop()
		if self._proc is not None and self._proc.poll() is None:
			self._proc.kill()
		if self._proc is not None:
			self._proc.wait()
		if self._reader is not None:
			self._reader.join()
		self._close_stderr()
		self.chunks = []
		self.state = 'inactive'

	#============================
	@property
	def duration_ms(self) -> float:
		return utils.seconds_from_frames(self.frames_written, self.fps) * 1000.0

	#============================
	def _write_frames(self, target: int) -> None:
		if target <= self.frames_written:
			return
		(video_track, audio_track) = self.tracks
		frame_data = self.surface.tobytes()
		sample_rate = self.destination.sample_rate
		while self.frames_written < target:
			next_frame = self.frames_written + 1
			sample_end = utils.round_half_up_fraction(
				Fraction(next_frame * sample_rate, 1) / self.fps)
			# audio first so the muxer never waits on it
			audio_track.write(self.destination.read(sample_end - self.samples_written))
			video_track.write(frame_data)
			self.samples_written = sample_end
			self.frames_written = next_frame

	#============================
	def _read_chunks(self) -> None:
		stdout = self._proc.stdout
		while True:
			chunk = stdout.read1(65536)
			if not chunk:
				break
			self.chunks.append(chunk)
		stdout.close()

	#============================
	def _build_args(self, audio_fd: int, timeslice_ms: int) -> list:
		fmt = self.format
		width = self.surface.width
		height = self.surface.height
		args = [
			"ffmpeg", "-y", "-nostdin", "-v", "error",
			"-thread_queue_size", "32",
			"-f", "rawvideo", "-pix_fmt", "rgb24",
			"-s", f"{width}x{height}", "-r", str(self.fps),
			"-i", "pipe:0",
			"-thread_queue_size", "512",
			"-f", "f32le", "-ar", str(self.destination.sample_rate),
			"-ac", str(self.destination.channels),
			"-i", f"pipe:{audio_fd}",
			"-map", "0:v", "-map", "1:a",
			"-c:v", fmt.video_codec, "-b:v", self.video_bitrate,
			"-pix_fmt", "yuv420p",
			"-c:a", fmt.audio_codec,
		]
		if fmt.video_codec in ('libvpx', 'libvpx-vp9'):
			args += ["-deadline", "realtime", "-cpu-used", "8"]
		if fmt.video_codec == 'libx264':
			args += ["-preset", "ultrafast"]
		args += ["-flush_packets", "1"]
		if fmt.muxer == 'webm':
			args += ["-cluster_time_limit", str(timeslice_ms)]
		if fmt.muxer == 'mp4':
			args += ["-movflags", "frag_keyframe+empty_moov+default_base_moof",
				"-frag_duration", str(timeslice_ms * 1000)]
		args += fmt.muxer_args
		args += ["-f", fmt.muxer, "pipe:1"]
		return args

	#============================
	def _error_tail(self) -> str:
		if self._stderr_file is None:
			return "no output"
		self._stderr_file.seek(0)
		text = self._stderr_file.read().decode("utf-8", errors="replace").strip()
		self._close_stderr()
		if text == "":
			return "no output"
		return text.splitlines()[-1]

	#============================
	def _close_stderr(self) -> None:
		if self._stderr_file is not None:
			self._stderr_file.close()
			self._stderr_file = None
