#!/usr/bin/env python3

#============================================

COMPLETED_STATUS = 'completed'

#============================================

class Scene():
	"""
	One storyboard scene as produced upstream.

	The exporter reads scenes and never mutates them.
	"""
	__slots__ = ('scene_id', 'title', 'script', 'image_uri', 'video_uri',
		'audio_uri', 'status')

	def __init__(self, scene_id: str, script: str = "", image_uri: str = None,
		video_uri: str = None, audio_uri: str = None, status: str = COMPLETED_STATUS,
		title: str = ""):
		object.__setattr__(self, 'scene_id', str(scene_id))
		object.__setattr__(self, 'title', title or "")
		object.__setattr__(self, 'script', script or "")
		object.__setattr__(self, 'image_uri', image_uri or None)
		object.__setattr__(self, 'video_uri', video_uri or None)
		object.__setattr__(self, 'audio_uri', audio_uri or None)
		object.__setattr__(self, 'status', status or "")

	#============================
	def __setattr__(self, name, value):
		raise AttributeError("Scene is immutable")

	#============================
	def __repr__(self) -> str:
		return f"Scene({self.scene_id!r}, status={self.status!r})"

	#============================
	def has_visual(self) -> bool:
		return self.video_uri is not None or self.image_uri is not None

	#============================
	def is_exportable(self) -> bool:
		if str(self.status).lower() != COMPLETED_STATUS:
			return False
		return self.has_visual()

#============================================

def exportable_scenes(scenes: list) -> list:
	return [scene for scene in scenes if scene.is_exportable()]
