#!/usr/bin/env python3

import base64
import concurrent.futures
import io
import mimetypes
import os
import subprocess
import tempfile
import time
import urllib.parse
import PIL.Image
import requests
from tutorlib.core import timeline
from tutorlib.core import utils
from tutorlib.media import ffmpeg

#============================================

class FetchedAsset():
	def __init__(self, data: bytes, content_type: str, origin_clean: bool,
		source_uri: str, local_file: str = None):
		self.data = data
		self.content_type = content_type
		self.origin_clean = origin_clean
		self.source_uri = source_uri
		self.local_file = local_file

#============================================

class ImageHandle():
	"""
	Decoded still image, ready to draw.
	"""
	def __init__(self, image, source_uri: str, origin_clean: bool = True):
		self.image = image
		self.source_uri = source_uri
		self.origin_clean = origin_clean
		self._scaled = {}

	#============================
	def scaled(self, size: tuple):
		if self.image is None:
			raise RuntimeError("image handle has been released")
		cached = self._scaled.get(size)
		if cached is None:
			cached = self.image.resize(size, resample=PIL.Image.BILINEAR)
			self._scaled[size] = cached
		return cached

	#============================
	def release(self) -> None:
		self.image = None
		self._scaled = {}

#============================================

class VideoHandle():
	"""
	Muted video clip decoded by ffmpeg into frames of the render size.

	Media time is driven by the caller through frame_at(); a clip that
	does not loop reports ended once its duration has played.
	"""
	def __init__(self, media_file: str, source_uri: str, duration: float,
		dimensions: tuple, origin_clean: bool = True):
		self.media_file = media_file
		self.source_uri = source_uri
		self.duration = duration
		self.dimensions = dimensions
		self.origin_clean = origin_clean
		self.muted = True
		self.loop = False
		self.paused = True
		self.ended = False
		self.current_time = 0.0
		self.loop_count = 0
		self._size = None
		self._fps = None
		self._proc = None
		self._frame_index = -1
		self._frame = None
		self._first_frame = None

	#============================
	def prime(self, width: int, height: int, fps) -> None:
		"""
		Start decoding and hold the first frame so the clip is drawable.
		"""
		self._size = (width, height)
		self._fps = float(fps)
		self._restart_decoder()
		if not self._read_next_frame():
			self._stop_decoder()
			raise RuntimeError(f"no video frames decoded from {self.source_uri}")
		self._first_frame = self._frame

	#============================
	def play(self) -> None:
		if self._size is None:
			raise RuntimeError("video handle was not primed")
		if self._proc is None or self._frame_index != 0:
			self._restart_decoder()
			self._read_next_frame()
		self.paused = False
		self.ended = False
		self.loop_count = 0

	#============================
	def pause(self) -> None:
		self.paused = True
		self._stop_decoder()

	#============================
	def release(self) -> None:
		self.pause()
		self._frame = None
		self._first_frame = None

	#============================
	def frame_at(self, elapsed_ms: float):
		"""
		Frame showing after elapsed_ms of playback, or the held frame when paused.
		"""
		if self.paused or self._size is None:
			return self._frame
		elapsed = max(0.0, elapsed_ms / 1000.0)
		media_time = elapsed
		if self.duration is not None:
			if self.loop:
				self.loop_count = int(elapsed // self.duration)
				media_time = elapsed - self.loop_count * self.duration
			elif elapsed >= self.duration:
				self.ended = True
				media_time = self.duration
		self.current_time = media_time
		target_index = int(media_time * self._fps)
		if target_index < self._frame_index:
			self._restart_decoder()
		while self._frame_index < target_index:
			if self._read_next_frame():
				continue
			if self.duration is None:
				self.duration = (self._frame_index + 1) / self._fps
			if self.loop:
				# clip is shorter than its reported duration, wrap early
				self._restart_decoder()
				self._read_next_frame()
				break
			self.ended = True
			break
		return self._frame

	#============================
	def _restart_decoder(self) -> None:
		self._stop_decoder()
		args = ffmpeg.videoDecoderArgs(self.media_file, self._size[0],
			self._size[1], self._fps)
		self._proc = subprocess.Popen(args, stdin=subprocess.DEVNULL,
			stdout=subprocess.PIPE, stderr=subprocess.DEVNULL)
		self._frame_index = -1

	#============================
	def _read_next_frame(self) -> bool:
		if self._proc is None:
			return False
		frame_bytes = self._size[0] * self._size[1] * 3
		data = self._proc.stdout.read(frame_bytes)
		if data is None or len(data) < frame_bytes:
			return False
		self._frame = PIL.Image.frombytes("RGB", self._size, data)
		self._frame_index += 1
		return True

	#============================
	def _stop_decoder(self) -> None:
		if self._proc is None:
			return
		proc = self._proc
		self._proc = None
		proc.stdout.close()
		if proc.poll() is None:
			proc.kill()
		proc.wait()

#============================================

class LoadedSceneAssets():
	def __init__(self, scene, audio_buffer=None, video: VideoHandle = None,
		image: ImageHandle = None, duration_ms: float = None):
		self.scene = scene
		self.audio_buffer = audio_buffer
		self.video = video
		self.image = image
		self.duration_ms = duration_ms

	#============================
	def dispose(self) -> None:
		if self.video is not None:
			self.video.release()
		if self.image is not None:
			self.image.release()
		self.audio_buffer = None

#============================================

class AssetLoader():
	"""
	Fetch and decode each scene's media into drawable and playable handles.

	A failed asset becomes None and never fails the export.
	"""
	def __init__(self, settings, graph, temp_dir: str, on_progress=None,
		session: requests.Session = None):
		self.settings = settings
		self.graph = graph
		self.temp_dir = temp_dir
		self.on_progress = on_progress
		self.session = session or requests.Session()
		self._owns_session = session is None
		self._warned_no_relay = False
		self._executor = concurrent.futures.ThreadPoolExecutor(max_workers=3,
			thread_name_prefix="asset-loader")

	#============================
	def close(self) -> None:
		self._executor.shutdown(wait=False, cancel_futures=True)
		if self._owns_session:
			self.session.close()

	#============================
	def load_scenes(self, scenes: list, loaded: list = None) -> list:
		"""
		Load every scene in order, appending each result to loaded.

		Pass a list the caller owns so scenes loaded before a failure
		can still be disposed.
		"""
		if loaded is None:
			loaded = []
		total = len(scenes)
		for index, scene in enumerate(scenes, start=1):
			self._progress(f"Loading assets for scene {index}/{total}...")
			loaded.append(self.load_scene(scene))
		return loaded

	#============================
	def load_scene(self, scene) -> LoadedSceneAssets:
		audio_future = None
		video_future = None
		image_future = None
		if scene.audio_uri:
			audio_future = self._executor.submit(self.load_audio, scene.audio_uri)
		if scene.video_uri:
			video_future = self._executor.submit(self._open_video, scene.video_uri)
			video_deadline = time.monotonic() + self.settings.video_timeout
		if scene.image_uri:
			image_future = self._executor.submit(self.load_image, scene.image_uri)
		assets = LoadedSceneAssets(scene)
		if audio_future is not None:
			assets.audio_buffer = audio_future.result()
		if image_future is not None:
			assets.image = image_future.result()
		if video_future is not None:
			remaining = max(0.0, video_deadline - time.monotonic())
			assets.video = self._await_video(video_future, remaining, scene.video_uri)
		assets.duration_ms = timeline.resolve_duration(assets,
			self.settings.default_duration_ms)
		return assets

	#============================
	def load_image(self, uri: str):
		try:
			fetched = self.fetch(uri)
			image = PIL.Image.open(io.BytesIO(fetched.data))
			image.load()
			image = image.convert("RGB")
		except Exception as exc:
			utils.warn(f"Failed to load image: {uri} ({exc})")
			return None
		return ImageHandle(image, uri, origin_clean=fetched.origin_clean)

	#============================
	def load_video(self, uri: str):
		future = self._executor.submit(self._open_video, uri)
		return self._await_video(future, self.settings.video_timeout, uri)

	#============================
	def load_audio(self, uri: str):
		temp_file = None
		try:
			fetched = self.fetch(uri)
			audio_file = fetched.local_file
			if audio_file is None:
				temp_file = self._write_temp(fetched, "-audio")
				audio_file = temp_file
			buffer = self.graph.decode_audio_data(audio_file,
				timeout=self.settings.fetch_timeout)
		except Exception as exc:
			utils.warn(f"Failed to load audio: {uri} ({exc})")
			return None
		finally:
			if temp_file is not None:
				os.remove(temp_file)
		return buffer

	#============================
	def _open_video(self, uri: str) -> VideoHandle:
		fetched = self.fetch(uri)
		video_file = fetched.local_file
		if video_file is None:
			video_file = self._write_temp(fetched, "-video")
		probe = ffmpeg.probeMedia(video_file, timeout=self.settings.video_timeout)
		dimensions = ffmpeg.getVideoDimensions(probe)
		if dimensions is None:
			raise RuntimeError(f"no video stream in {uri}")
		handle = VideoHandle(video_file, uri, ffmpeg.getDuration(probe),
			dimensions, origin_clean=fetched.origin_clean)
		handle.prime(self.settings.width, self.settings.height, self.settings.fps)
		return handle

	#============================
	def _await_video(self, future, timeout: float, uri: str):
		try:
			return future.result(timeout=timeout)
		except concurrent.futures.TimeoutError:
			utils.warn(f"Video not ready after {self.settings.video_timeout}s: {uri}")
			future.add_done_callback(_release_late_video)
			return None
		except Exception as exc:
			utils.warn(f"Failed to load video: {uri} ({exc})")
			return None

	#============================
	def resolve_url(self, uri: str) -> str:
		if not self.is_third_party(uri):
			return uri
		relay = self.settings.relay
		if relay is None:
			return uri
		separator = '&' if '?' in relay else '?'
		return f"{relay}{separator}url={urllib.parse.quote(uri, safe='')}"

	#============================
	def is_third_party(self, uri: str) -> bool:
		parsed = urllib.parse.urlparse(uri)
		if parsed.scheme not in ('http', 'https'):
			return False
		origin = self.settings.origin
		if origin is None:
			return True
		origin_parsed = urllib.parse.urlparse(origin)
		same_scheme = parsed.scheme == origin_parsed.scheme
		same_host = parsed.netloc.lower() == origin_parsed.netloc.lower()
		return not (same_scheme and same_host)

	#============================
	def fetch(self, uri: str) -> FetchedAsset:
		if uri.startswith("data:"):
			(data, content_type) = decode_data_uri(uri)
			return FetchedAsset(data, content_type, True, uri)
		parsed = urllib.parse.urlparse(uri)
		if parsed.scheme in ('http', 'https'):
			return self._fetch_http(uri)
		local_file = uri
		if parsed.scheme == 'file':
			local_file = urllib.parse.unquote(parsed.path)
		utils.ensure_file_exists(local_file)
		with open(local_file, 'rb') as handle:
			data = handle.read()
		content_type = mimetypes.guess_type(local_file)[0]
		return FetchedAsset(data, content_type, True, uri, local_file=local_file)

	#============================
	def _fetch_http(self, uri: str) -> FetchedAsset:
		request_url = self.resolve_url(uri)
		relayed = request_url != uri
		if self.settings.relay is None and self.is_third_party(uri):
			self._warn_no_relay(uri)
		response = self.session.get(request_url, timeout=self.settings.fetch_timeout)
		response.raise_for_status()
		content_type = response.headers.get('Content-Type')
		origin_clean = relayed or not self.is_third_party(uri)
		if not origin_clean:
			allow_origin = response.headers.get('Access-Control-Allow-Origin')
			origin_clean = allow_origin == '*'
			if self.settings.origin is not None and allow_origin == self.settings.origin:
				origin_clean = True
		return FetchedAsset(response.content, content_type, origin_clean, uri)

	#============================
	def _warn_no_relay(self, uri: str) -> None:
		if self._warned_no_relay:
			return
		self._warned_no_relay = True
		utils.warn(f"No relay configured, fetching {uri} directly. "
			"Third-party media without CORS headers will render black.")

	#============================
	def _write_temp(self, fetched: FetchedAsset, tag: str) -> str:
		extension = None
		if fetched.content_type:
			extension = mimetypes.guess_extension(fetched.content_type.split(';')[0].strip())
		(handle, temp_file) = tempfile.mkstemp(suffix=f"{tag}{extension or '.bin'}",
			dir=self.temp_dir)
		with os.fdopen(handle, 'wb') as out_file:
			out_file.write(fetched.data)
		return temp_file

	#============================
	def _progress(self, message: str) -> None:
		if self.on_progress is not None:
			self.on_progress(message)

#============================================

def decode_data_uri(uri: str) -> tuple:
	(header, separator, payload) = uri[len("data:"):].partition(',')
	if separator == "":
		raise RuntimeError("malformed data uri")
	params = header.split(';')
	content_type = params[0] or "text/plain"
	if 'base64' in params[1:]:
		data = base64.b64decode(payload)
	else:
		data = urllib.parse.unquote_to_bytes(payload)
	return (data, content_type)

#============================================

def _release_late_video(future) -> None:
	if future.cancelled() or future.exception() is not None:
		return
	future.result().release()
