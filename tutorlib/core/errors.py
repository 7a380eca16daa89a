#!/usr/bin/env python3

#============================================

class ExportError(RuntimeError):
	"""Base class for failures that end an export run."""

#============================================

class NoExportableScenesError(ExportError):
	def __init__(self, message: str = "No completed scenes to export."):
		super().__init__(message)

#============================================

class UnsupportedRecordingFormatError(ExportError):
	def __init__(self, message: str = "No supported recording format available."):
		super().__init__(message)

#============================================

class SurfaceContextError(ExportError):
	def __init__(self, message: str = "Could not create canvas context"):
		super().__init__(message)

#============================================

class SurfaceTaintedError(ExportError):
	def __init__(self, message: str = "render surface is tainted by a cross-origin source"):
		super().__init__(message)

#============================================

class ExportCancelledError(ExportError):
	def __init__(self, message: str = "Export cancelled."):
		super().__init__(message)

#============================================

class ExportFailedError(ExportError):
	pass
