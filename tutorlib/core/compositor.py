#!/usr/bin/env python3

import os
import numpy
import PIL.Image
import PIL.ImageColor
import PIL.ImageDraw
import PIL.ImageFont
from scipy.ndimage import gaussian_filter
from tutorlib.core import utils
from tutorlib.core.errors import SurfaceContextError
from tutorlib.core.errors import SurfaceTaintedError

#============================================

PLACEHOLDER_TEXT = "Scene Media Missing"
BACKGROUND_COLOR = (0, 0, 0)
PLACEHOLDER_COLOR = "#222222"
PLACEHOLDER_TEXT_COLOR = "#666666"
SUBTITLE_COLOR = "#ffffff"
SHADOW_ALPHA = 0.8

#============================================

class RenderSurface():
	"""
	Fixed-size drawing surface owned by a single export run.

	Drawing a source that is not origin-clean taints the surface; a tainted
	surface refuses pixel reads.
	"""
	def __init__(self, width: int, height: int):
		if width <= 0 or height <= 0:
			raise SurfaceContextError()
		try:
			self.image = PIL.Image.new("RGB", (width, height), color=BACKGROUND_COLOR)
			self.draw = PIL.ImageDraw.Draw(self.image)
		except (ValueError, MemoryError) as exc:
			raise SurfaceContextError() from exc
		self.width = width
		self.height = height
		self.tainted = False

	#============================
	@property
	def size(self) -> tuple:
		return (self.width, self.height)

	#============================
	def fill(self, color) -> None:
		self.draw.rectangle([0, 0, self.width, self.height], fill=color)

	#============================
	def draw_source(self, handle, frame) -> None:
		if frame.size != self.size:
			frame = frame.resize(self.size, resample=PIL.Image.BILINEAR)
		self.image.paste(frame, (0, 0))
		if not handle.origin_clean:
			self.tainted = True

	#============================
	def read_pixel(self, x: int = 0, y: int = 0) -> tuple:
		if self.tainted:
			raise SurfaceTaintedError()
		return self.image.getpixel((x, y))

	#============================
	def tobytes(self) -> bytes:
		return self.image.tobytes()

#============================================

class Compositor():
	def __init__(self, surface: RenderSurface, font_file: str = None,
		subtitle_size: int = 24, placeholder_size: int = 30,
		subtitle_max_chars: int = 80):
		self.surface = surface
		self.subtitle_max_chars = subtitle_max_chars
		self.subtitle_font = _load_font(font_file, subtitle_size)
		self.placeholder_font = _load_font(font_file, placeholder_size)
		self._subtitle_cache = {}

	#============================
	def run_scene(self, plan, clock, on_start=None, on_frame=None) -> tuple:
		"""
		Draw frames for one scene until its duration has elapsed.

		on_start(start_ms) fires once the loop is entered, on_frame(now_ms)
		after every drawn frame. Returns (start_ms, end_ms).
		"""
		draw_visual = self.can_render(plan)
		if not draw_visual:
			utils.warn(f"Canvas tainted, skipping visuals for scene {plan.scene.scene_id}")
			self.surface.fill(BACKGROUND_COLOR)
		start_ms = clock.now()
		if on_start is not None:
			on_start(start_ms)
		video = plan.assets.video
		now_ms = start_ms
		while True:
			now_ms = clock.now()
			elapsed = now_ms - start_ms
			if elapsed >= plan.duration_ms:
				break
			if plan.ends_on_video and video.ended:
				break
			if draw_visual:
				self.draw_frame(plan, elapsed)
			if on_frame is not None:
				on_frame(now_ms)
			clock.wait_next_frame()
		return (start_ms, now_ms)

	#============================
	def can_render(self, plan) -> bool:
		try:
			self.surface.read_pixel(0, 0)
		except SurfaceTaintedError:
			return False
		(handle, frame) = self._visual_source(plan, 0.0)
		if handle is None:
			return True
		scratch = RenderSurface(1, 1)
		scratch.draw_source(handle, frame.resize((1, 1)))
		try:
			scratch.read_pixel(0, 0)
		except SurfaceTaintedError:
			return False
		return True

	#============================
	def draw_frame(self, plan, elapsed_ms: float) -> None:
		self.surface.fill(BACKGROUND_COLOR)
		(handle, frame) = self._visual_source(plan, elapsed_ms)
		if handle is None:
			self._draw_placeholder()
		else:
			self.surface.draw_source(handle, frame)
		if plan.scene.script:
			self._draw_subtitle(plan.scene.script)

	#============================
	def _visual_source(self, plan, elapsed_ms: float) -> tuple:
		video = plan.assets.video
		if video is not None:
			frame = video.frame_at(elapsed_ms)
			if frame is not None:
				return (video, frame)
		image = plan.assets.image
		if image is not None and image.image is not None:
			return (image, image.scaled(self.surface.size))
		return (None, None)

	#============================
	def _draw_placeholder(self) -> None:
		self.surface.fill(PLACEHOLDER_COLOR)
		draw = self.surface.draw
		bbox = draw.textbbox((0, 0), PLACEHOLDER_TEXT, font=self.placeholder_font)
		x = (self.surface.width - (bbox[2] - bbox[0])) / 2.0 - bbox[0]
		y = (self.surface.height - (bbox[3] - bbox[1])) / 2.0 - bbox[1]
		draw.text((x, y), PLACEHOLDER_TEXT, font=self.placeholder_font,
			fill=PLACEHOLDER_TEXT_COLOR)

	#============================
	def _draw_subtitle(self, script: str) -> None:
		text = subtitle_text(script, self.subtitle_max_chars)
		cached = self._subtitle_cache.get(text)
		if cached is None:
			cached = self._render_subtitle_layer(text)
			self._subtitle_cache[text] = cached
		(layer, position) = cached
		self.surface.image.paste(layer, position, layer)

	#============================
	def _render_subtitle_layer(self, text: str) -> tuple:
		"""
		Pre-render the shadowed subtitle once; frames only paste it.
		"""
		measure = PIL.ImageDraw.Draw(PIL.Image.new("L", (1, 1)))
		bbox = measure.textbbox((0, 0), text, font=self.subtitle_font)
		text_w = bbox[2] - bbox[0]
		text_h = bbox[3] - bbox[1]
		margin = 8
		layer_size = (text_w + margin * 2, text_h + margin * 2)
		origin = (margin - bbox[0], margin - bbox[1])
		shadow_mask = PIL.Image.new("L", layer_size, 0)
		PIL.ImageDraw.Draw(shadow_mask).text((origin[0] + 2, origin[1] + 2), text,
			font=self.subtitle_font, fill=int(255 * SHADOW_ALPHA))
		blurred = gaussian_filter(numpy.asarray(shadow_mask, dtype=numpy.float64), sigma=2)
		shadow_mask = PIL.Image.fromarray(numpy.uint8(numpy.clip(blurred, 0, 255)))
		layer = PIL.Image.new("RGBA", layer_size, (0, 0, 0, 0))
		layer.putalpha(shadow_mask)
		text_color = PIL.ImageColor.getrgb(SUBTITLE_COLOR)
		PIL.ImageDraw.Draw(layer).text(origin, text, font=self.subtitle_font,
			fill=text_color + (255,))
		x = int(round(self.surface.width / 2.0 - layer_size[0] / 2.0))
		# text bottom sits 50px above the frame edge
		y = int(round(self.surface.height - 50 - text_h - margin))
		return (layer, (x, y))

#============================================

def subtitle_text(script: str, max_chars: int = 80) -> str:
	if len(script) > max_chars:
		return script[:max_chars] + "..."
	return script

#============================================

def _load_font(font_file: str, size: int):
	if font_file is not None:
		if not os.path.exists(font_file):
			raise RuntimeError(f"font file not found: {font_file}")
		return PIL.ImageFont.truetype(font_file, size)
	try:
		return PIL.ImageFont.truetype("DejaVuSans.ttf", size)
	except OSError:
		return PIL.ImageFont.load_default()
