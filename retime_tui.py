#!/usr/bin/env python3

"""
Textual TUI wrapper for retime job files.
"""

# Standard Library
import argparse
import asyncio
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
from retimelib.core import errors
from retimelib.core import utils
from retimelib.core.engine import RetimeEngine
from retimelib.core.loader import JobLoader

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

# progress below this fraction gives a noisy rate
MIN_ETA_PROGRESS = 0.02

#============================================

def parse_args():
	"""
	Parse command-line arguments.
	"""
	parser = argparse.ArgumentParser(description="retime TUI wrapper")
	parser.add_argument('-y', '--yaml', dest='yamlfile', required=True,
		help='yaml job file to run')
	parser.add_argument('-d', '--debug', dest='debug_log', action='store_true',
		help='write debug log to retime_tui.log in the current directory')
	args = parser.parse_args()
	return args

#============================================

class RetimeTuiApp(App):
	BINDINGS = [
		("c", "cancel_jobs", "Cancel"),
		("q", "quit", "Quit"),
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

	#metrics_title {
		height: 1;
		color: #88C0D0;
	}

	#metrics {
		height: 1fr;
	}

	#jobs_title {
		height: 1;
		color: #88C0D0;
	}

	#jobs_info {
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

	def __init__(self, yaml_file: str, debug_log: bool = False):
		super().__init__()
		self.yaml_file = yaml_file
		self.job_names = {}
		self.job_progress = {}
		self.job_states = {}
		self.job_total = 0
		self.current_summary = ""
		self.start_time = None
		self.finish_time = None
		self.error_text = None
		self.cancel_requested = False
		self.engine = None
		self.engine_loop = None
		self.metrics_widget = None
		self.jobs_widget = None
		self.log_widget = None
		self.finished = False
		self.command_styles = self._build_command_styles()
		self.debug_mode = debug_log
		self.log_path = None
		self.log_lock = threading.Lock()
		if self.debug_mode:
			self.log_path = os.path.join(os.getcwd(), "retime_tui.log")
			self._reset_log()
			self._write_log(f"debug log: {self.log_path}")

	#============================
	def compose(self) -> ComposeResult:
		yield Static("RETIME TUI", id="header")
		with Vertical(id="root"):
			with Horizontal(id="top_row"):
				with Vertical(id="left_panel"):
					yield Static("Dashboard", id="metrics_title")
					yield Static("", id="metrics")
					yield Static("Press c to cancel, q to quit", id="footer_note")
				with Vertical(id="right_panel"):
					yield Static("Jobs", id="jobs_title")
					yield Static("", id="jobs_info")
			yield RichLog(id="log", wrap=True, highlight=False)

	#============================
	def on_mount(self) -> None:
		self.metrics_widget = self.query_one("#metrics", Static)
		self.jobs_widget = self.query_one("#jobs_info", Static)
		self.log_widget = self.query_one(RichLog)
		self.start_time = time.time()
		if self.debug_mode and self.log_widget is not None and self.log_path is not None:
			self.log_widget.write(f"debug log: {self.log_path}")
		thread = threading.Thread(target=self._run_jobs, daemon=True)
		thread.start()
		self.set_interval(0.5, self._refresh_status)

	#============================
	def _refresh_status(self) -> None:
		self._update_metrics()
		self._update_jobs_info()

	#============================
	def action_cancel_jobs(self) -> None:
		if self.engine is None or self.engine_loop is None or self.finished:
			return
		self.cancel_requested = True
		self.engine_loop.call_soon_threadsafe(self.engine.cancel_all)
		if self.log_widget is not None:
			self.log_widget.write(Text("cancel requested", style=NORD_COLORS['strings']))
		self._write_log("cancel requested")

	#============================
	def _run_jobs(self) -> None:
		utils.set_quiet_mode(True)
		utils.set_command_reporter(self._report_command)
		try:
			job_file = JobLoader(self.yaml_file).load()
			self.job_total = len(job_file.jobs)
			asyncio.run(self._run_job_file(job_file))
		except Exception as exc:
			self.call_from_thread(self._set_error, str(exc), traceback.format_exc())
		finally:
			utils.clear_command_reporter()
			utils.set_quiet_mode(False)
			self.call_from_thread(self._finish)

	#============================
	async def _run_job_file(self, job_file) -> None:
		self.engine = RetimeEngine(job_file.profile)
		self.engine_loop = asyncio.get_running_loop()
		coroutines = []
		for index, job in enumerate(job_file.jobs):
			self.job_names[index] = job['name']
			self.job_states[index] = "queued"
			coroutines.append(self._run_one(index, job))
		await asyncio.gather(*coroutines)

	#============================
	async def _run_one(self, index: int, job: dict) -> None:
		def on_progress(event: dict) -> None:
			self.call_from_thread(self._set_job_progress, index, event['progress'])
		self.job_states[index] = "running"
		try:
			result = await self.engine.run_job(job, on_progress=on_progress)
		except errors.RetimeError as exc:
			self.job_states[index] = exc.code.lower()
			self.call_from_thread(self._set_error, f"{job['name']}: {exc}")
			return
		self.job_states[index] = "done"
		self.job_progress[index] = 1.0
		self.call_from_thread(self._log_result, job['name'], result)

	#============================
	def _set_job_progress(self, index: int, value: float) -> None:
		self.job_progress[index] = value
		self._update_metrics()

	#============================
	def _log_result(self, name: str, result) -> None:
		if self.log_widget is None:
			return
		if isinstance(result, dict):
			for key, value in result.items():
				self.log_widget.write(f"{name}: {key} = {value}")
		else:
			self.log_widget.write(Text(f"{name}: {result}", style=NORD_COLORS['paths']))
		self._write_log(f"result {name}: {result}")

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
		if self.error_text is None:
			self.log_widget.write("complete")
			self._write_log("complete")
		else:
			self.log_widget.write("complete with errors")
			self._write_log("complete with errors")
		self._update_metrics()
		self._update_jobs_info()

	#============================
	def _report_command(self, event: dict) -> None:
		self.call_from_thread(self._handle_command_event, event)

	#============================
	def _handle_command_event(self, event: dict) -> None:
		if self.log_widget is None:
			return
		event_type = event.get('event')
		command = event.get('command', '')
		summary = self._summarize_command(command)
		if event_type == 'start':
			self.current_summary = summary
			prefix = utils.command_prefix(event.get('index'), event.get('total'))
			if prefix:
				self.log_widget.write("")
				self.log_widget.write(Text(prefix, style=f"bold {NORD_COLORS['header']}"))
			self.log_widget.write(self._highlight_command(command))
			self._write_log(f"start: {command}")
		elif event_type == 'end':
			code = event.get('returncode', 0)
			seconds = event.get('seconds', 0.0)
			if code != 0:
				self.log_widget.write(
					Text(f"error ({code}): {summary}", style=f"bold {NORD_COLORS['error']}")
				)
				self._write_log(f"error ({code}): {command}")
			else:
				self._write_log(f"end ({seconds:.3f}s): {command}")
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
		if tool.startswith("ffmpeg") and len(parts) > 1:
			return f"{tool}: {os.path.basename(parts[-1])}"
		return f"{tool}: {command}"

	#============================
	def _overall_progress(self) -> float:
		if self.job_total <= 0:
			return 0.0
		total = sum(self.job_progress.get(index, 0.0) for index in range(self.job_total))
		return min(1.0, total / self.job_total)

	#============================
	def _estimate_remaining_seconds(self, elapsed: float, fraction: float):
		"""
		Remaining time from the average rate so far; None until the rate settles.
		"""
		if fraction is None or fraction < MIN_ETA_PROGRESS:
			return None
		if fraction >= 1.0:
			return 0.0
		return elapsed * (1.0 - fraction) / fraction

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
		if self.finished and self.error_text is None:
			status = "done"
		elif self.finished:
			status = "failed"
		elif self.cancel_requested:
			status = "cancelling"
		else:
			status = "running"
		fraction = self._overall_progress()
		eta_text = "N/A"
		if not self.finished:
			eta_seconds = self._estimate_remaining_seconds(elapsed, fraction)
			if eta_seconds is None:
				eta_text = "gathering samples"
			else:
				eta_text = self._format_duration_estimate(eta_seconds)
		metrics = Text()
		status_style = NORD_COLORS['foreground']
		if status == "failed":
			status_style = NORD_COLORS['error']
		elif status == "done":
			status_style = NORD_COLORS['paths']
		metrics.append("Status: ", style=NORD_COLORS['dim'])
		metrics.append(status, style=status_style)
		metrics.append("\n")
		metrics.append("Elapsed: ", style=NORD_COLORS['dim'])
		metrics.append(self._format_duration(elapsed), style=NORD_COLORS['numbers'])
		metrics.append("\n")
		metrics.append("Progress: ", style=NORD_COLORS['dim'])
		metrics.append(self._format_percent(fraction), style=NORD_COLORS['numbers'])
		metrics.append(" | ETA: ", style=NORD_COLORS['dim'])
		eta_style = NORD_COLORS['numbers']
		if eta_text in ("N/A", "gathering samples"):
			eta_style = NORD_COLORS['dim']
		metrics.append(eta_text, style=eta_style)
		metrics.append("\n")
		metrics.append("Current: ", style=NORD_COLORS['dim'])
		metrics.append(self.current_summary, style=NORD_COLORS['foreground'])
		self.metrics_widget.update(metrics)

	#============================
	def _update_jobs_info(self) -> None:
		if self.jobs_widget is None:
			return
		info = Text()
		info.append("YAML: ", style=NORD_COLORS['dim'])
		info.append(self.yaml_file, style=NORD_COLORS['paths'])
		for index in sorted(self.job_names.keys()):
			state = self.job_states.get(index, "queued")
			state_style = NORD_COLORS['foreground']
			if state == "done":
				state_style = NORD_COLORS['paths']
			elif state not in ("queued", "running"):
				state_style = NORD_COLORS['error']
			info.append("\n")
			info.append(f"{self.job_names[index]}: ", style=NORD_COLORS['dim'])
			info.append(state, style=state_style)
			info.append(" ")
			info.append(self._format_percent(self.job_progress.get(index, 0.0)),
				style=NORD_COLORS['numbers'])
		self.jobs_widget.update(info)

	#============================
	def _build_command_styles(self) -> list:
		return [
			(re.compile(r"\blibx265\b|\blibx264\b|\baac\b|\batempo\b|\basetrate\b"),
				NORD_COLORS['foreground']),
			(re.compile(r"--?[A-Za-z0-9][A-Za-z0-9_:-]*"), NORD_COLORS['flags']),
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
	def _format_percent(self, fraction: float) -> str:
		if fraction is None:
			return "N/A"
		fraction = min(1.0, max(0.0, fraction))
		return f"{fraction * 100:.1f}%"

	#============================
	def _format_duration(self, seconds: float) -> str:
		if seconds < 60:
			return f"{seconds:.1f}s"
		minutes = int(seconds // 60)
		remaining = seconds - (minutes * 60)
		seconds_text = f"{remaining:04.1f}"
		if minutes < 60:
			return f"{minutes}m {seconds_text}s"
		hours = int(minutes // 60)
		minutes = minutes - (hours * 60)
		return f"{hours}h {minutes:02d}m {seconds_text}s"

	#============================
	def _format_duration_estimate(self, seconds: float) -> str:
		rounded = int(seconds)
		if seconds > rounded:
			rounded += 1
		if rounded < 60:
			return f"{rounded:d}s"
		minutes = rounded // 60
		remaining = rounded - (minutes * 60)
		if minutes < 60:
			return f"{minutes}m {remaining:02d}s"
		hours = minutes // 60
		minutes = minutes - (hours * 60)
		return f"{hours}h {minutes:02d}m {remaining:02d}s"

#============================================

def main():
	args = parse_args()
	sys.argv = [arg for arg in sys.argv if arg not in ("-d", "--debug")]
	app = RetimeTuiApp(args.yamlfile, debug_log=args.debug_log)
	app.run()

#============================================

if __name__ == '__main__':
	main()
