#!/usr/bin/env python3

"""
Textual TUI wrapper for story exports.
"""

# Standard Library
import argparse
import os
import re
import shlex
import sys
import threading
import time
import traceback

script_dir = os.path.dirname(os.path.abspath(__file__))
if script_dir not in sys.path:
	sys.path.insert(0, script_dir)

# PIP3 modules
from textual.app import App, ComposeResult
from textual.containers import Horizontal, Vertical
from textual.widgets import RichLog, Static
from rich.text import Text

# local repo modules
from tutorlib.core.errors import ExportCancelledError
from tutorlib.core.project import TutorProject
from tutorlib.core import utils

#============================================

NORD_COLORS = {
	'background': "#2E3440",
	'foreground': "#D8DEE9",
	'dim': "#4C566A",
	'header': "#88C0D0",
	'command': "#ECEFF4",
	'flags': "#81A1C1",
	'numbers': "#B48EAD",
	'paths': "#A3BE8C",
	'strings': "#EBCB8B",
	'error': "#BF616A",
}

SCENE_PROGRESS_RE = re.compile(r"^Rendering scene (\d+)/(\d+)")

#============================================

def parse_args():
	"""
	Parse command-line arguments.
	"""
	parser = argparse.ArgumentParser(description="story export TUI wrapper")
	parser.add_argument('-y', '--yaml', dest='yamlfile', required=True,
		help='story yaml (or json project export) listing the scenes to export')
	parser.add_argument('-o', '--output', dest='output_file',
		help='override output file from the story file')
	parser.add_argument('-n', '--dry-run', dest='dry_run', action='store_true',
		help='validate only, do not export')
	parser.add_argument('-c', '--cache-dir', dest='cache_dir',
		help='directory for downloaded and decoded media')
	parser.add_argument('-k', '--keep-temp', dest='keep_temp',
		help='keep temporary export files', action='store_true')
	parser.add_argument('-K', '--no-keep-temp', dest='keep_temp',
		help='remove temporary export files', action='store_false')
	parser.add_argument('--offline', dest='clock', action='store_const',
		const='offline', help='render on a virtual clock instead of wall time')
	parser.add_argument('-d', '--debug', dest='debug_log', action='store_true',
		help='write debug log to tutor_tui.log in the current directory')
	parser.set_defaults(keep_temp=False, clock=None)
	args = parser.parse_args()
	return args

#============================================

class TutorTuiApp(App):
	BINDINGS = [
		("q", "cancel", "Cancel / Quit"),
	]

	CSS = """
	#root {
		height: 1fr;
	}

	#top_row {
		height: 30%;
		min-height: 8;
	}

	#left_panel {
		width: 40%;
		height: 1fr;
		border: solid gray;
	}

	#right_panel {
		width: 60%;
		height: 1fr;
		border: solid gray;
	}

	#metrics_title, #story_title {
		height: 1;
		color: #88C0D0;
	}

	#metrics, #story_info {
		height: 1fr;
	}

	#footer_note {
		height: 1;
		color: #4C566A;
	}

	#log {
		height: 1fr;
		border: solid gray;
	}
	"""

	def __init__(self, story_file: str, output_override: str = None,
		dry_run: bool = False, keep_temp: bool = False, cache_dir: str = None,
		clock: str = None, debug_log: bool = False):
		super().__init__()
		self.story_file = story_file
		self.output_override = output_override
		self.dry_run = dry_run
		self.keep_temp = keep_temp
		self.cache_dir = cache_dir
		self.clock = clock
		self.cancel_event = threading.Event()
		self.scene_index = 0
		self.scene_total = None
		self.current_message = ""
		self.start_time = None
		self.finish_time = None
		self.error_text = None
		self.cancelled = False
		self.output_file = None
		self.metrics_widget = None
		self.story_widget = None
		self.log_widget = None
		self.finished = False
		self.command_styles = self._build_command_styles()
		self.debug_mode = debug_log
		self.log_path = None
		self.log_lock = threading.Lock()
		if self.debug_mode:
			self.log_path = os.path.join(os.getcwd(), "tutor_tui.log")
			self._reset_log()
			self._write_log(f"debug log: {self.log_path}")

	#============================
	def compose(self) -> ComposeResult:
		yield Static("TUTOR EXPORT", id="header")
		with Vertical(id="root"):
			with Horizontal(id="top_row"):
				with Vertical(id="left_panel"):
					yield Static("Dashboard", id="metrics_title")
					yield Static("", id="metrics")
					yield Static("Press q to cancel, q again to quit", id="footer_note")
				with Vertical(id="right_panel"):
					yield Static("Story", id="story_title")
					yield Static("", id="story_info")
			yield RichLog(id="log", wrap=True, highlight=False)

	#============================
	def on_mount(self) -> None:
		self.metrics_widget = self.query_one("#metrics", Static)
		self.story_widget = self.query_one("#story_info", Static)
		self.log_widget = self.query_one(RichLog)
		self.start_time = time.time()
		self._update_story_info()
		if self.debug_mode and self.log_widget is not None and self.log_path is not None:
			self.log_widget.write(f"debug log: {self.log_path}")
		thread = threading.Thread(target=self._run_export, daemon=True)
		thread.start()
		self.set_interval(0.5, self._update_metrics)

	#============================
	def action_cancel(self) -> None:
		if self.finished:
			self.exit()
			return
		if self.cancel_event.is_set():
			return
		self.cancel_event.set()
		self.current_message = "cancelling"
		if self.log_widget is not None:
			self.log_widget.write(Text("cancel requested", style=NORD_COLORS['strings']))
		self._write_log("cancel requested")
		self._update_metrics()

	#============================
	def _run_export(self) -> None:
		utils.set_quiet_mode(True)
		utils.set_command_reporter(self._report_command)
		try:
			project = TutorProject(self.story_file,
				output_override=self.output_override,
				dry_run=self.dry_run,
				keep_temp=self.keep_temp,
				cache_dir=self.cache_dir,
				clock=self.clock)
			self.output_file = project.settings.output_file
			self.call_from_thread(self._update_story_info)
			result = project.run(on_progress=self._report_progress,
				cancel_event=self.cancel_event)
			if result is not None:
				self.output_file = result.path
		except ExportCancelledError:
			self.cancelled = True
		except Exception as exc:
			self.call_from_thread(self._set_error, str(exc), traceback.format_exc())
		finally:
			utils.clear_command_reporter()
			utils.set_quiet_mode(False)
			self.call_from_thread(self._finish)

	#============================
	def _report_progress(self, message: str) -> None:
		self.call_from_thread(self._handle_progress, message)

	#============================
	def _handle_progress(self, message: str) -> None:
		self.current_message = message
		match = SCENE_PROGRESS_RE.match(message)
		if match is not None:
			self.scene_index = int(match.group(1))
			self.scene_total = int(match.group(2))
		if self.log_widget is not None:
			self.log_widget.write(Text(message, style=f"bold {NORD_COLORS['header']}"))
		self._write_log(message)
		self._update_metrics()

	#============================
	def _report_command(self, event: dict) -> None:
		self.call_from_thread(self._handle_command_event, event)

	#============================
	def _handle_command_event(self, event: dict) -> None:
		if self.log_widget is None:
			return
		command = event.get('command', '')
		if event.get('event') == 'start':
			self.log_widget.write(self._highlight_command(command))
			self._write_log(f"start: {command}")
			return
		code = event.get('returncode', 0)
		if code != 0:
			self.log_widget.write(
				Text(f"error ({code}): {self._summarize_command(command)}",
					style=f"bold {NORD_COLORS['error']}")
			)
			self._write_log(f"error ({code}): {command}")
			return
		self._write_log(f"end ({event.get('seconds', 0.0):.3f}s): {command}")

	#============================
	def _set_error(self, text: str, trace_text: str = None) -> None:
		self.error_text = text
		if trace_text:
			self._write_log(trace_text)
		if self.log_widget is not None:
			self.log_widget.write(
				Text(f"error: {text}", style=f"bold {NORD_COLORS['error']}")
			)

	#============================
	def _finish(self) -> None:
		if self.log_widget is None or self.metrics_widget is None:
			return
		self.finished = True
		if self.start_time is not None and self.finish_time is None:
			self.finish_time = time.time() - self.start_time
		if self.cancelled:
			message = "export cancelled"
		elif self.error_text is not None:
			message = "export failed"
		elif self.output_file is None:
			message = "complete"
		else:
			message = f"complete: {self.output_file}"
		self.log_widget.write(message)
		self._write_log(message)
		self._update_story_info()
		self._update_metrics()

	#============================
	def _write_log(self, message: str) -> None:
		if not self.debug_mode or self.log_path is None:
			return
		timestamp = time.strftime("%Y-%m-%d %H:%M:%S")
		line = f"[{timestamp}] {message}\n"
		with self.log_lock:
			with open(self.log_path, "a", encoding="utf-8") as handle:
				handle.write(line)

	#============================
	def _reset_log(self) -> None:
		if not self.debug_mode or self.log_path is None:
			return
		with self.log_lock:
			with open(self.log_path, "w", encoding="utf-8"):
				return

	#============================
	def _summarize_command(self, command: str) -> str:
		if command is None or command == "":
			return "command"
		try:
			parts = shlex.split(command)
		except ValueError:
			return command
		if len(parts) == 0:
			return command
		tool = os.path.basename(parts[0])
		if tool in ("ffmpeg", "ffprobe") and len(parts) > 1:
			return f"{tool}: {os.path.basename(parts[-1])}"
		return f"{tool}: {command}"

	#============================
	def _status_text(self) -> str:
		if self.cancelled:
			return "cancelled"
		if self.error_text is not None:
			return "failed"
		if self.finished:
			return "done"
		if self.cancel_event.is_set():
			return "cancelling"
		return "running"

	#============================
	def _update_metrics(self) -> None:
		if self.metrics_widget is None:
			return
		if self.start_time is None:
			elapsed = 0.0
		elif self.finished:
			elapsed = self.finish_time or (time.time() - self.start_time)
		else:
			elapsed = time.time() - self.start_time
		status = self._status_text()
		status_style = NORD_COLORS['foreground']
		if status in ("failed", "cancelled"):
			status_style = NORD_COLORS['error']
		elif status == "done":
			status_style = NORD_COLORS['paths']
		metrics = Text()
		metrics.append("Status: ", style=NORD_COLORS['dim'])
		metrics.append(status, style=status_style)
		metrics.append("\n")
		metrics.append("Elapsed: ", style=NORD_COLORS['dim'])
		metrics.append(self._format_duration(elapsed), style=NORD_COLORS['numbers'])
		metrics.append("\n")
		metrics.append("Scene: ", style=NORD_COLORS['dim'])
		metrics.append(f"{self.scene_index}", style=NORD_COLORS['numbers'])
		if self.scene_total:
			metrics.append(f"/{self.scene_total}", style=NORD_COLORS['numbers'])
		metrics.append("\n")
		metrics.append("Current: ", style=NORD_COLORS['dim'])
		metrics.append(self.current_message, style=NORD_COLORS['foreground'])
		self.metrics_widget.update(metrics)

	#============================
	def _update_story_info(self) -> None:
		if self.story_widget is None:
			return
		story = Text()
		rows = [
			("Story: ", self.story_file, None),
			("Output: ", self.output_override or self.output_file, "auto"),
			("Cache: ", self.cache_dir, "default"),
			("Clock: ", self.clock, "from story"),
		]
		for (label, value, fallback) in rows:
			story.append(label, style=NORD_COLORS['dim'])
			if value is None:
				story.append(fallback, style=NORD_COLORS['dim'])
			else:
				story.append(value, style=NORD_COLORS['paths'])
			story.append("\n")
		story.append("Keep temp: ", style=NORD_COLORS['dim'])
		story.append("yes" if self.keep_temp else "no", style=NORD_COLORS['foreground'])
		story.append("\n")
		story.append("Dry run: ", style=NORD_COLORS['dim'])
		story.append("yes" if self.dry_run else "no", style=NORD_COLORS['foreground'])
		if self.debug_mode and self.log_path is not None:
			story.append("\n")
			story.append("Debug log: ", style=NORD_COLORS['dim'])
			story.append(self.log_path, style=NORD_COLORS['paths'])
		self.story_widget.update(story)

	#============================
	def _build_command_styles(self) -> list:
		return [
			(re.compile(r"\bf32le\b|\brgb24\b|\blibvpx(?:-vp9)?\b|\blibopus\b|\blibx264\b"),
				NORD_COLORS['foreground']),
			(re.compile(r"--?[A-Za-z0-9][A-Za-z0-9_-]*"), NORD_COLORS['flags']),
			(re.compile(r"\b\d+\.\d+\b"), NORD_COLORS['numbers']),
			(re.compile(r"\b\d+\b(?!\.\d)"), NORD_COLORS['numbers']),
			(re.compile(r"'[^']*'|\"[^\"]*\""), NORD_COLORS['strings']),
			(re.compile(r"(?:/|~|\./|\.\./)[^\s'\"`]+"), NORD_COLORS['paths']),
		]

	#============================
	def _highlight_command(self, command: str):
		if command is None or command == "":
			return ""
		text = Text(command, style=f"bold {NORD_COLORS['command']}")
		for pattern, style in self.command_styles:
			for match in pattern.finditer(command):
				text.stylize(style, match.start(), match.end())
		return text

	#============================
	def _format_duration(self, seconds: float) -> str:
		if seconds < 60:
			return f"{seconds:.1f}s"
		minutes = int(seconds // 60)
		remaining = seconds - (minutes * 60)
		if minutes < 60:
			return f"{minutes}m {remaining:04.1f}s"
		hours = int(minutes // 60)
		minutes = minutes - (hours * 60)
		return f"{hours}h {minutes:02d}m {remaining:04.1f}s"

#============================================

def main():
	args = parse_args()
	sys.argv = [arg for arg in sys.argv if arg not in ("-d", "--debug")]
	app = TutorTuiApp(args.yamlfile,
		output_override=args.output_file,
		dry_run=args.dry_run,
		keep_temp=args.keep_temp,
		cache_dir=args.cache_dir,
		clock=args.clock,
		debug_log=args.debug_log)
	app.run()

#============================================

if __name__ == '__main__':
	main()
