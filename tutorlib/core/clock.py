#!/usr/bin/env python3

import time

#============================================

class RealtimeClock():
	"""
	Monotonic millisecond clock that paces frames to a display refresh rate.
	"""
	def __init__(self, refresh_rate: float = 60.0):
		self.interval_ms = 1000.0 / float(refresh_rate)
		self._next_tick = None

	#============================
	def now(self) -> float:
		return time.perf_counter() * 1000.0

	#============================
	def wait_next_frame(self) -> float:
		current = self.now()
		if self._next_tick is None:
			self._next_tick = current + self.interval_ms
		elif self._next_tick <= current:
			# fell behind, skip the missed ticks instead of bursting
			missed = int((current - self._next_tick) // self.interval_ms) + 1
			self._next_tick += missed * self.interval_ms
		delay = (self._next_tick - current) / 1000.0
		if delay > 0:
			time.sleep(delay)
		self._next_tick += self.interval_ms
		return self.now()

#============================================

class OfflineClock():
	"""
	Virtual clock that advances exactly one refresh interval per frame.
	"""
	def __init__(self, refresh_rate: float = 60.0):
		self.interval_ms = 1000.0 / float(refresh_rate)
		self._current = 0.0

	#============================
	def now(self) -> float:
		return self._current

	#============================
	def wait_next_frame(self) -> float:
		self._current += self.interval_ms
		return self._current

#============================================

def make_clock(mode: str, refresh_rate: float):
	if mode == 'realtime':
		return RealtimeClock(refresh_rate)
	if mode == 'offline':
		return OfflineClock(refresh_rate)
	raise RuntimeError("export.clock must be realtime or offline")
