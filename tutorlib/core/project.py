#!/usr/bin/env python3

import os
import urllib.parse
from tutorlib.core import exporter
from tutorlib.core import utils
from tutorlib.core.errors import NoExportableScenesError
from tutorlib.core.loader import StoryLoader
from tutorlib.core.scene import exportable_scenes

#============================================

class TutorProject():
	def __init__(self, story_file: str, output_override: str = None,
		dry_run: bool = False, keep_temp: bool = False, cache_dir: str = None,
		clock: str = None):
		loader = StoryLoader(story_file, output_override=output_override,
			cache_dir=cache_dir, keep_temp=keep_temp, clock=clock)
		self._story = loader.load()
		self.story_file = story_file
		self.dry_run = dry_run
		self.settings = self._story.settings
		self.scenes = self._story.scenes
		self.data = self._story.data
		self.result = None

	#============================
	def validate(self) -> None:
		if len(exportable_scenes(self.scenes)) == 0:
			raise NoExportableScenesError()
		for scene in exportable_scenes(self.scenes):
			for uri in (scene.image_uri, scene.video_uri, scene.audio_uri):
				if uri is None or not _is_local_path(uri):
					continue
				if not os.path.isfile(uri):
					utils.warn(f"scene {scene.scene_id}: missing local asset {uri}")

	#============================
	def plan(self) -> dict:
		scenes = []
		for scene in self.scenes:
			scenes.append({
				'id': scene.scene_id,
				'exported': scene.is_exportable(),
				'status': scene.status,
				'image': scene.image_uri,
				'video': scene.video_uri,
				'audio': scene.audio_uri,
				'script': scene.script,
			})
		settings = self.settings
		return {
			'profile': {
				'resolution': [settings.width, settings.height],
				'fps': str(settings.fps),
				'sample_rate': settings.sample_rate,
				'channels': settings.channels,
			},
			'clock': settings.clock,
			'output': settings.output_file,
			'scenes': scenes,
		}

	#============================
	def run(self, on_progress=None, cancel_event=None):
		self.validate()
		if self.dry_run:
			if not utils.is_quiet_mode():
				print("dry run: validation complete")
			return None
		self.result = exporter.export_story_to_video(self.scenes,
			on_progress=on_progress, settings=self.settings,
			cancel_event=cancel_event)
		return self.result

#============================================

def _is_local_path(uri: str) -> bool:
	scheme = urllib.parse.urlparse(uri).scheme
	return len(scheme) <= 1
