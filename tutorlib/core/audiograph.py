#!/usr/bin/env python3

import os
import tempfile
import wave
import numpy
from tutorlib.media import ffmpeg

#============================================

SUSPENDED = 'suspended'
RUNNING = 'running'
CLOSED = 'closed'

_PCM_DTYPES = {
	1: numpy.dtype('u1'),
	2: numpy.dtype('<i2'),
	4: numpy.dtype('<i4'),
}

#============================================

class AudioBuffer():
	"""
	Decoded narration: float32 samples shaped (frames, channels).
	"""
	def __init__(self, samples: numpy.ndarray, sample_rate: int):
		if samples.ndim == 1:
			samples = samples.reshape(-1, 1)
		if sample_rate <= 0:
			raise RuntimeError("audio sample rate must be positive")
		self.samples = samples.astype(numpy.float32, copy=False)
		self.sample_rate = int(sample_rate)

	#============================
	@property
	def length(self) -> int:
		return self.samples.shape[0]

	#============================
	@property
	def number_of_channels(self) -> int:
		return self.samples.shape[1]

	#============================
	@property
	def duration(self) -> float:
		return self.length / float(self.sample_rate)

#============================================

class AudioBufferSourceNode():
	"""
	One-shot playback of a buffer; a node can be started only once.
	"""
	def __init__(self, graph, buffer: AudioBuffer):
		self.graph = graph
		self.buffer = buffer
		self.samples = graph._match_channels(buffer.samples)
		self.destination = None
		self.start_frame = None
		self.started = False
		self.ended = False

	#============================
	def connect(self, destination) -> None:
		if destination.graph is not self.graph:
			raise RuntimeError("cannot connect nodes from different audio graphs")
		self.destination = destination

	#============================
	def start(self, when: float = None) -> None:
		if self.started:
			raise RuntimeError("buffer source node can only be started once")
		if self.destination is None:
			raise RuntimeError("buffer source node is not connected")
		self.started = True
		self.graph._schedule(self, when)

	#============================
	def stop(self) -> None:
		self.ended = True
		if self.destination is not None:
			self.destination._remove(self)

#============================================

class StreamDestination():
	"""
	Mix bus whose output is read as an interleaved float32 stream.
	"""
	def __init__(self, graph):
		self.graph = graph
		self.sources = []

	#============================
	@property
	def channels(self) -> int:
		return self.graph.channels

	#============================
	@property
	def sample_rate(self) -> int:
		return self.graph.sample_rate

	#============================
	def _add(self, node: AudioBufferSourceNode) -> None:
		self.sources.append(node)

	#============================
	def _remove(self, node: AudioBufferSourceNode) -> None:
		if node in self.sources:
			self.sources.remove(node)

	#============================
	def read(self, frame_count: int) -> bytes:
		mixed = self.graph._render(self, frame_count)
		return mixed.tobytes()

#============================================

class AudioGraph():
	"""
	Shared audio context for one export run.

	Time only advances while the graph is running and its destination is read.
	"""
	def __init__(self, sample_rate: int = 48000, channels: int = 2):
		self.sample_rate = int(sample_rate)
		self.channels = int(channels)
		self.state = SUSPENDED
		self.frame_position = 0
		self.destination = None
		self.temp_dir = None

	#============================
	@property
	def current_time(self) -> float:
		return self.frame_position / float(self.sample_rate)

	#============================
	def resume(self) -> None:
		if self.state == CLOSED:
			raise RuntimeError("audio graph is closed")
		self.state = RUNNING

	#============================
	def close(self) -> None:
		if self.state == CLOSED:
			return
		self.state = CLOSED
		if self.destination is not None:
			for node in list(self.destination.sources):
				node.stop()
		self.destination = None

	#============================
	def create_stream_destination(self) -> StreamDestination:
		self._ensure_open()
		if self.destination is None:
			self.destination = StreamDestination(self)
		return self.destination

	#============================
	def create_buffer_source(self, buffer: AudioBuffer) -> AudioBufferSourceNode:
		self._ensure_open()
		if buffer.sample_rate != self.sample_rate:
			raise RuntimeError(
				f"buffer sample rate {buffer.sample_rate} does not match graph {self.sample_rate}"
			)
		return AudioBufferSourceNode(self, buffer)

	#============================
	def decode_audio_data(self, audio_file: str, timeout: float = None) -> AudioBuffer:
		self._ensure_open()
		samples = None
		if _is_riff_wave(audio_file):
			samples = self._read_pcm_wav(audio_file)
		if samples is None:
			(handle, rawfile) = tempfile.mkstemp(suffix="-audio.f32", dir=self.temp_dir)
			os.close(handle)
			samples = ffmpeg.decodeAudio(audio_file, rawfile, self.sample_rate,
				self.channels, timeout=timeout)
		if samples.shape[0] == 0:
			raise RuntimeError(f"audio file has no samples: {audio_file}")
		return AudioBuffer(samples, self.sample_rate)

	#============================
	def _read_pcm_wav(self, audio_file: str):
		try:
			with wave.open(audio_file, 'rb') as wav_handle:
				channels = wav_handle.getnchannels()
				sample_rate = wav_handle.getframerate()
				sample_width = wav_handle.getsampwidth()
				total_frames = wav_handle.getnframes()
				data = wav_handle.readframes(total_frames)
		except (wave.Error, EOFError):
			# not plain PCM, let ffmpeg handle it
			return None
		if sample_rate != self.sample_rate or sample_width not in _PCM_DTYPES:
			return None
		samples = numpy.frombuffer(data, dtype=_PCM_DTYPES[sample_width])
		if sample_width == 1:
			samples = (samples.astype(numpy.float32) - 128.0) / 128.0
		else:
			max_amplitude = float(2 ** (8 * sample_width - 1))
			samples = samples.astype(numpy.float32) / max_amplitude
		frame_count = samples.size // channels
		samples = samples[:frame_count * channels].reshape(frame_count, channels)
		return self._match_channels(samples)

	#============================
	def _match_channels(self, samples: numpy.ndarray) -> numpy.ndarray:
		source_channels = samples.shape[1]
		if source_channels == self.channels:
			return samples
		if source_channels == 1:
			return numpy.repeat(samples, self.channels, axis=1)
		mono = samples.mean(axis=1, dtype=numpy.float32).reshape(-1, 1)
		if self.channels == 1:
			return mono
		return numpy.repeat(mono, self.channels, axis=1)

	#============================
	def _schedule(self, node: AudioBufferSourceNode, when: float) -> None:
		self._ensure_open()
		start_frame = self.frame_position
		if when is not None:
			requested = int(round(when * self.sample_rate))
			# a start time already rendered plays from now
			start_frame = max(requested, self.frame_position)
		node.start_frame = start_frame
		node.destination._add(node)

	#============================
	def _render(self, destination: StreamDestination, frame_count: int) -> numpy.ndarray:
		self._ensure_open()
		mixed = numpy.zeros((frame_count, self.channels), dtype=numpy.float32)
		if self.state != RUNNING or frame_count <= 0:
			return mixed
		block_start = self.frame_position
		block_end = block_start + frame_count
		for node in list(destination.sources):
			if node.start_frame >= block_end:
				continue
			out_offset = max(0, node.start_frame - block_start)
			src_offset = block_start + out_offset - node.start_frame
			count = min(frame_count - out_offset, node.samples.shape[0] - src_offset)
			if count > 0:
				mixed[out_offset:out_offset + count] += node.samples[src_offset:src_offset + count]
			if node.start_frame + node.samples.shape[0] <= block_end:
				node.stop()
		numpy.clip(mixed, -1.0, 1.0, out=mixed)
		self.frame_position = block_end
		return mixed

	#============================
	def _ensure_open(self) -> None:
		if self.state == CLOSED:
			raise RuntimeError("audio graph is closed")

#============================================

def _is_riff_wave(audio_file: str) -> bool:
	with open(audio_file, 'rb') as handle:
		header = handle.read(12)
	return len(header) == 12 and header[0:4] == b'RIFF' and header[8:12] == b'WAVE'
