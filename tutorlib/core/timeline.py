#!/usr/bin/env python3

#============================================

DEFAULT_SCENE_DURATION_MS = 5000.0

#============================================

class ScenePlan():
	"""
	Timing and loop policy for one scene segment.

	loop_video: the clip repeats until the narration ends.
	ends_on_video: the clip's own end closes the segment.
	"""
	def __init__(self, assets, duration_ms: float, loop_video: bool,
		ends_on_video: bool):
		self.assets = assets
		self.duration_ms = duration_ms
		self.loop_video = loop_video
		self.ends_on_video = ends_on_video

	#============================
	@property
	def scene(self):
		return self.assets.scene

	#============================
	def __repr__(self) -> str:
		return (f"ScenePlan({self.scene.scene_id!r}, duration_ms={self.duration_ms:.1f}, "
			f"loop_video={self.loop_video})")

#============================================

def resolve_duration(assets, default_ms: float = DEFAULT_SCENE_DURATION_MS) -> float:
	if assets.audio_buffer is not None:
		return assets.audio_buffer.duration * 1000.0
	video = assets.video
	if video is not None and video.duration:
		return video.duration * 1000.0
	return float(default_ms)

#============================================

def resolve_plan(assets, default_ms: float = DEFAULT_SCENE_DURATION_MS) -> ScenePlan:
	duration_ms = assets.duration_ms
	if duration_ms is None:
		duration_ms = resolve_duration(assets, default_ms)
	has_video = assets.video is not None
	has_audio = assets.audio_buffer is not None
	loop_video = has_video and has_audio
	ends_on_video = has_video and not has_audio
	return ScenePlan(assets, duration_ms, loop_video, ends_on_video)
