#!/usr/bin/env python3

import os
import pathlib
import shutil
import tempfile
from tqdm import tqdm
from tutorlib.core import audiograph
from tutorlib.core import timeline
from tutorlib.core import utils
from tutorlib.core.assets import AssetLoader
from tutorlib.core.audiograph import AudioGraph
from tutorlib.core.clock import make_clock
from tutorlib.core.compositor import Compositor
from tutorlib.core.compositor import RenderSurface
from tutorlib.core.errors import ExportCancelledError
from tutorlib.core.errors import ExportError
from tutorlib.core.errors import ExportFailedError
from tutorlib.core.errors import NoExportableScenesError
from tutorlib.core.loader import ExportSettings
from tutorlib.core.recorder import StreamRecorder
from tutorlib.core.recorder import select_format
from tutorlib.core.scene import exportable_scenes

#============================================

IDLE = 'idle'
LOADING_ASSETS = 'loading_assets'
RENDERING_SCENE = 'rendering_scene'
FINALIZING = 'finalizing'
COMPLETE = 'complete'
FAILED = 'failed'

#============================================

class ExportResult():
	def __init__(self, path: str, mime_type: str, size: int, chunk_count: int,
		segments: list, duration_ms: float):
		self.path = path
		self.url = pathlib.Path(path).as_uri()
		self.mime_type = mime_type
		self.size = size
		self.chunk_count = chunk_count
		self.segments = segments
		self.duration_ms = duration_ms

#============================================

class ExportRun():
	"""
	One self-contained export: owns its audio graph, surface, recorder and
	temp directory, and releases all of them on success and on failure.
	"""
	def __init__(self, scenes: list, on_progress=None, settings: ExportSettings = None,
		output_file: str = None, cancel_event=None, clock=None):
		self.scenes = list(scenes)
		self.on_progress = on_progress
		self.settings = settings or ExportSettings()
		self.output_file = output_file
		self.cancel_event = cancel_event
		self.clock = clock
		self.state = IDLE
		self.scene_index = 0
		self.graph = None
		self.surface = None
		self.recorder = None
		self.loader = None
		self.loaded = []
		self.segments = []
		self.temp_dir = None
		self._temp_dir_created = False
		self._origin_ms = 0.0
		self._progress_bar = None

	#============================
	def run(self) -> ExportResult:
		if self.state != IDLE:
			raise RuntimeError("an export run can only be started once")
		try:
			return self._execute()
		except ExportError:
			raise
		except Exception as exc:
			raise ExportFailedError(f"Export failed: {exc}") from exc
		finally:
			if self.state != COMPLETE:
				self.state = FAILED
			self._release()

	#============================
	def _execute(self) -> ExportResult:
		settings = self.settings
		scenes = exportable_scenes(self.scenes)
		if len(scenes) == 0:
			raise NoExportableScenesError()
		self.state = LOADING_ASSETS
		self.surface = RenderSurface(settings.width, settings.height)
		recording_format = select_format(settings.formats)
		self._open_temp_dir()
		self.graph = AudioGraph(settings.sample_rate, settings.channels)
		self.graph.temp_dir = self.temp_dir
		if self.graph.state == audiograph.SUSPENDED:
			self.graph.resume()
		self._progress("Pre-loading media assets...")
		self.loader = AssetLoader(settings, self.graph, self.temp_dir,
			on_progress=self._progress)
		self.loader.load_scenes(scenes, self.loaded)
		self.loader.close()
		self.loader = None
		self._check_cancelled()

		self._progress("Starting Render...")
		self.surface.read_pixel(0, 0)
		compositor = Compositor(self.surface, font_file=settings.font_file,
			subtitle_max_chars=settings.subtitle_max_chars)
		clock = self.clock or make_clock(settings.clock, settings.refresh_rate)
		self.recorder = StreamRecorder(self.surface,
			self.graph.create_stream_destination(), recording_format,
			fps=settings.fps, video_bitrate=settings.video_bitrate,
			temp_dir=self.temp_dir)
		self._open_progress_bar()
		self._origin_ms = clock.now()
		self.recorder.start(self._origin_ms, timeslice_ms=settings.timeslice_ms)

		self.state = RENDERING_SCENE
		total = len(self.loaded)
		for index, assets in enumerate(self.loaded, start=1):
			self._check_cancelled()
			self.scene_index = index
			self._progress(f"Rendering scene {index}/{total}...")
			plan = timeline.resolve_plan(assets, settings.default_duration_ms)
			(start_ms, end_ms) = compositor.run_scene(plan, clock,
				on_start=lambda start_ms, plan=plan: self._start_scene_media(plan, start_ms),
				on_frame=self._capture_frame)
			if assets.video is not None:
				assets.video.pause()
			assets.dispose()
			self.segments.append((plan.scene.scene_id, start_ms - self._origin_ms,
				end_ms - self._origin_ms))

		self.state = FINALIZING
		self._progress("Finalizing video...")
		blob = self.recorder.stop(clock.now())
		self.graph.close()
		output_file = self._output_path(recording_format.extension)
		with open(output_file, 'wb') as out_file:
			out_file.write(blob.data)
		if not utils.is_quiet_mode():
			print(f"Export complete. Blob size: {blob.size}, Chunks: {len(self.recorder.chunks)}")
		result = ExportResult(output_file, blob.mime_type, blob.size,
			len(self.recorder.chunks), list(self.segments), self.recorder.duration_ms)
		self.state = COMPLETE
		self._progress("Export complete.")
		return result

	#============================
	def _start_scene_media(self, plan, start_ms: float) -> None:
		assets = plan.assets
		if assets.audio_buffer is not None:
			source = self.graph.create_buffer_source(assets.audio_buffer)
			source.connect(self.graph.create_stream_destination())
			source.start((start_ms - self._origin_ms) / 1000.0)
		if assets.video is not None:
			assets.video.loop = plan.loop_video
			assets.video.current_time = 0.0
			assets.video.play()

	#============================
	def _capture_frame(self, now_ms: float) -> None:
		self._check_cancelled()
		self.recorder.capture(now_ms)
		if self._progress_bar is not None:
			position = round((now_ms - self._origin_ms) / 1000.0, 1)
			self._progress_bar.update(max(0.0, position - self._progress_bar.n))

	#============================
	def _check_cancelled(self) -> None:
		if self.cancel_event is not None and self.cancel_event.is_set():
			raise ExportCancelledError()

	#============================
	def _progress(self, message: str) -> None:
		if self.on_progress is not None:
			self.on_progress(message)

	#============================
	def _open_progress_bar(self) -> None:
		if utils.is_quiet_mode():
			return
		total_seconds = sum(assets.duration_ms for assets in self.loaded) / 1000.0
		self._progress_bar = tqdm(total=round(total_seconds, 1), unit="s",
			desc="recording", leave=False)

	#============================
	def _open_temp_dir(self) -> None:
		cache_dir = self.settings.cache_dir
		if cache_dir is None:
			self.temp_dir = tempfile.mkdtemp(prefix="tutor-export-")
			self._temp_dir_created = True
			return
		if not os.path.exists(cache_dir):
			os.makedirs(cache_dir)
		self.temp_dir = cache_dir

	#============================
	def _output_path(self, extension: str) -> str:
		output_file = self.output_file or self.settings.output_file
		if output_file is None:
			output_file = utils.default_export_filename(extension)
		output_file = os.path.abspath(output_file)
		if os.path.splitext(output_file)[1] == "":
			output_file = f"{output_file}.{extension}"
		output_dir = os.path.dirname(output_file)
		if not os.path.isdir(output_dir):
			os.makedirs(output_dir)
		return output_file

	#============================
	def _release(self) -> None:
		if self._progress_bar is not None:
			self._progress_bar.close()
			self._progress_bar = None
		if self.loader is not None:
			self.loader.close()
			self.loader = None
		for assets in self.loaded:
			assets.dispose()
		if self.recorder is not None and self.recorder.state != 'inactive':
			self.recorder.abort()
		if self.graph is not None:
			self.graph.close()
		if self._temp_dir_created and not self.settings.keep_temp:
			shutil.rmtree(self.temp_dir, ignore_errors=True)

#============================================

def export_story_to_video(scenes: list, on_progress=None, settings: ExportSettings = None,
	output_file: str = None, cancel_event=None) -> ExportResult:
	run = ExportRun(scenes, on_progress=on_progress, settings=settings,
		output_file=output_file, cancel_event=cancel_event)
	return run.run()
