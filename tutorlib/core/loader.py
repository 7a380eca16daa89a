#!/usr/bin/env python3

import json
import os
import urllib.parse
import yaml
from fractions import Fraction
from tutorlib.core import utils
from tutorlib.core.scene import Scene

#============================================

class ExportSettings():
	"""
	Knobs for one export run; defaults match the web exporter.
	"""
	def __init__(self):
		self.width = 1280
		self.height = 720
		self.fps = Fraction(30, 1)
		self.refresh_rate = 60.0
		self.sample_rate = 48000
		self.channels = 2
		self.clock = 'realtime'
		self.relay = None
		self.origin = None
		self.video_timeout = 10.0
		self.fetch_timeout = 30.0
		self.default_duration_ms = 5000.0
		self.subtitle_max_chars = 80
		self.video_bitrate = "5M"
		self.timeslice_ms = 100
		self.formats = None
		self.font_file = None
		self.output_file = None
		self.cache_dir = None
		self.keep_temp = False

#============================================

class StoryData():
	def __init__(self):
		self.story_file = None
		self.data = {}
		self.settings = ExportSettings()
		self.scenes = []

#============================================

class StoryLoader():
	"""
	Read a story file (YAML story or JSON project export) into scenes and settings.
	"""
	def __init__(self, story_file: str, output_override: str = None,
		cache_dir: str = None, keep_temp: bool = False, clock: str = None):
		self.story_file = story_file
		self.output_override = output_override
		self.cache_dir = cache_dir
		self.keep_temp = keep_temp
		self.clock = clock

	#============================
	def load(self) -> StoryData:
		story = StoryData()
		story.story_file = self.story_file
		story.data = self._load_file()
		base_dir = os.path.dirname(os.path.abspath(self.story_file))
		if story.data.get('tutor') is not None:
			self._validate_required_keys(story.data)
			self._parse_profile(story.settings, story.data.get('profile', {}))
			self._parse_export(story.settings, story.data.get('export', {}))
			self._parse_output(story.settings, story.data.get('output', {}), base_dir)
			raw_scenes = story.data.get('scenes')
		else:
			raw_scenes = self._find_project_scenes(story.data)
		story.scenes = self._parse_scenes(raw_scenes, base_dir)
		if self.output_override is not None:
			story.settings.output_file = self.output_override
		if self.cache_dir is not None:
			story.settings.cache_dir = self.cache_dir
		if self.clock is not None:
			story.settings.clock = self.clock
		story.settings.keep_temp = self.keep_temp
		return story

	#============================
	def _load_file(self) -> dict:
		file_size = os.path.getsize(self.story_file)
		if file_size > 10 ** 7:
			raise RuntimeError("story file is larger than 10MB")
		with open(self.story_file, 'r') as data_file:
			if self.story_file.lower().endswith('.json'):
				data = json.load(data_file)
			else:
				data = yaml.safe_load(data_file)
		if not isinstance(data, dict):
			raise RuntimeError("story file must be a mapping at the top level")
		return data

	#============================
	def _validate_required_keys(self, data: dict) -> None:
		if data.get('tutor') != 1:
			raise RuntimeError("tutor must be set to 1")
		if not isinstance(data.get('scenes'), list):
			raise RuntimeError("scenes must be a list")

	#============================
	def _find_project_scenes(self, data: dict) -> list:
		if isinstance(data.get('scenes'), list):
			return data['scenes']
		outputs = data.get('outputs') or {}
		storyboard = outputs.get('storyboard') or {}
		scenes = storyboard.get('scenes')
		if not isinstance(scenes, list):
			raise RuntimeError("project export has no storyboard scenes")
		return scenes

	#============================
	def _parse_profile(self, settings: ExportSettings, profile: dict) -> None:
		if not isinstance(profile, dict):
			raise RuntimeError("profile must be a mapping")
		resolution = profile.get('resolution')
		if resolution is not None:
			if len(resolution) != 2:
				raise RuntimeError("profile.resolution must be [width, height]")
			settings.width = int(resolution[0])
			settings.height = int(resolution[1])
		if profile.get('fps') is not None:
			settings.fps = utils.parse_fps(profile.get('fps'))
		if settings.fps <= 0:
			raise RuntimeError("profile.fps must be positive")
		if profile.get('refresh_rate') is not None:
			settings.refresh_rate = float(profile.get('refresh_rate'))
		audio = profile.get('audio', {})
		if not isinstance(audio, dict):
			raise RuntimeError("profile.audio must be a mapping")
		settings.sample_rate = int(audio.get('sample_rate', settings.sample_rate))
		(channel_count, _) = utils.normalize_channels(audio.get('channels', 'stereo'))
		settings.channels = channel_count

	#============================
	def _parse_export(self, settings: ExportSettings, export: dict) -> None:
		if not isinstance(export, dict):
			raise RuntimeError("export must be a mapping")
		clock = export.get('clock', settings.clock)
		if clock not in ('realtime', 'offline'):
			raise RuntimeError("export.clock must be realtime or offline")
		settings.clock = clock
		settings.relay = export.get('relay', settings.relay)
		settings.origin = export.get('origin', settings.origin)
		settings.video_timeout = float(export.get('video_timeout', settings.video_timeout))
		settings.fetch_timeout = float(export.get('fetch_timeout', settings.fetch_timeout))
		settings.default_duration_ms = float(
			export.get('default_duration_ms', settings.default_duration_ms))
		settings.subtitle_max_chars = int(
			export.get('subtitle_max_chars', settings.subtitle_max_chars))
		settings.video_bitrate = str(export.get('video_bitrate', settings.video_bitrate))
		settings.timeslice_ms = int(export.get('timeslice_ms', settings.timeslice_ms))
		formats = export.get('formats')
		if formats is not None:
			if not isinstance(formats, list) or len(formats) == 0:
				raise RuntimeError("export.formats must be a non-empty list")
			settings.formats = [str(value) for value in formats]
		settings.font_file = export.get('font_file', settings.font_file)

	#============================
	def _parse_output(self, settings: ExportSettings, output: dict, base_dir: str) -> None:
		if not isinstance(output, dict):
			raise RuntimeError("output must be a mapping")
		output_file = output.get('file')
		if output_file is not None:
			if not os.path.isabs(output_file):
				output_file = os.path.join(base_dir, output_file)
			settings.output_file = output_file

	#============================
	def _parse_scenes(self, raw_scenes: list, base_dir: str) -> list:
		scenes = []
		for index, raw_scene in enumerate(raw_scenes, start=1):
			if not isinstance(raw_scene, dict):
				raise RuntimeError("scenes entries must be mappings")
			scene_id = _first_value(raw_scene, ('id', '_id', 'sceneNumber'))
			if scene_id is None:
				scene_id = f"scene-{index}"
			script = _first_value(raw_scene, ('script', 'scriptLine', 'text')) or ""
			status = _first_value(raw_scene, ('status',))
			if status is None:
				status = 'completed'
			scene = Scene(scene_id,
				script=str(script),
				title=str(raw_scene.get('title') or ""),
				image_uri=self._resolve_uri(
					_first_value(raw_scene, ('image', 'image_uri', 'imageUri')), base_dir),
				video_uri=self._resolve_uri(
					_first_value(raw_scene, ('video', 'video_uri', 'videoUri')), base_dir),
				audio_uri=self._resolve_uri(
					_first_value(raw_scene, ('audio', 'audio_uri', 'audioUri')), base_dir),
				status=str(status))
			scenes.append(scene)
		return scenes

	#============================
	def _resolve_uri(self, uri, base_dir: str):
		if uri is None or uri == "":
			return None
		uri = str(uri)
		scheme = urllib.parse.urlparse(uri).scheme
		# single letter schemes are windows drive letters
		if len(scheme) > 1 or uri.startswith("data:"):
			return uri
		if os.path.isabs(uri):
			return uri
		return os.path.join(base_dir, uri)

#============================================

def _first_value(mapping: dict, keys: tuple):
	for key in keys:
		if mapping.get(key) is not None:
			return mapping.get(key)
	return None
