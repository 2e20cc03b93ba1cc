#!/usr/bin/env python3

import asyncio
import enum
import os
import time
import uuid
from fractions import Fraction
from retimelib.core import errors
from retimelib.core import utils

#============================================

class JobState(enum.Enum):
	IDLE = "idle"
	PREPARING = "preparing"
	RENDERING = "rendering"
	COMPLETED = "completed"
	FAILED = "failed"
	CANCELLED = "cancelled"

TERMINAL_STATES = (JobState.COMPLETED, JobState.FAILED, JobState.CANCELLED)

_TRANSITIONS = {
	JobState.IDLE: (JobState.PREPARING, JobState.FAILED, JobState.CANCELLED),
	JobState.PREPARING: (JobState.RENDERING, JobState.FAILED, JobState.CANCELLED),
	JobState.RENDERING: TERMINAL_STATES,
}

# keys ffmpeg writes to -progress output, all in microseconds
_PROGRESS_TIME_KEYS = ('out_time_us', 'out_time_ms')

#============================================

class ExportJob():
	"""
	One render of a composition to an output file.

	States run Idle -> Preparing -> Rendering -> Completed/Failed/Cancelled.
	Progress is only meaningful while Rendering.
	"""

	def __init__(self, kind: str, output_file: str, container: str = None,
		job_id: str = None):
		self.job_id = job_id or uuid.uuid4().hex
		self.kind = kind
		self.output_file = output_file
		self.container = container
		self.state = JobState.IDLE
		self.progress = 0.0
		self.expected_duration = None
		self.error = None
		self.created_at = time.time()
		self.started_at = None
		self.finished_at = None
		self._process = None
		self._cancel_requested = False
		self._terminated_by_cancel = False

	#============================
	@property
	def is_terminal(self) -> bool:
		return self.state in TERMINAL_STATES

	#============================
	@property
	def cancel_requested(self) -> bool:
		return self._cancel_requested

	#============================
	@property
	def elapsed(self) -> float:
		if self.started_at is None:
			return 0.0
		end = self.finished_at if self.finished_at is not None else time.time()
		return end - self.started_at

	#============================
	def _transition(self, new_state: JobState) -> None:
		allowed = _TRANSITIONS.get(self.state, ())
		if new_state not in allowed:
			raise RuntimeError(
				f"export job {self.job_id} cannot move from {self.state.value} "
				f"to {new_state.value}"
			)
		self.state = new_state
		if new_state is JobState.PREPARING:
			self.started_at = time.time()
		if new_state in TERMINAL_STATES:
			self.finished_at = time.time()
			self._process = None

	#============================
	def begin_preparing(self) -> None:
		self._transition(JobState.PREPARING)

	#============================
	def fail(self, exc: BaseException) -> errors.RetimeError:
		"""
		Record a failure from any stage and return the taxonomy error.
		"""
		error = errors.map_error(exc)
		if self.is_terminal:
			return error
		self.error = error
		if isinstance(error, errors.Cancelled):
			self._transition(JobState.CANCELLED)
		else:
			self._transition(JobState.FAILED)
		return error

	#============================
	def cancel(self) -> bool:
		"""
		Ask the job to stop; returns False when it already reached a terminal state.
		"""
		if self.is_terminal:
			return False
		self._cancel_requested = True
		if self.state is JobState.RENDERING:
			self._terminate_process()
		return True

	#============================
	def _terminate_process(self) -> None:
		proc = self._process
		if proc is None or proc.returncode is not None:
			return
		try:
			proc.terminate()
		except ProcessLookupError:
			return
		self._terminated_by_cancel = True

	#============================
	def set_expected_duration(self, seconds) -> None:
		if seconds is None:
			self.expected_duration = None
			return
		self.expected_duration = Fraction(str(seconds)) if isinstance(seconds, float) \
			else Fraction(seconds)

	#============================
	def update_progress(self, out_seconds: float) -> None:
		if self.expected_duration is None or self.expected_duration <= 0:
			return
		value = float(out_seconds) / float(self.expected_duration)
		value = min(1.0, max(0.0, value))
		if value > self.progress:
			self.progress = value

	#============================
	def _parse_progress_line(self, line: str) -> bool:
		"""
		Feed one line of ffmpeg -progress output; returns True on progress=end.
		"""
		if '=' not in line:
			return False
		key, value = line.split('=', 1)
		key = key.strip()
		value = value.strip()
		if key in _PROGRESS_TIME_KEYS:
			try:
				microseconds = int(value)
			except ValueError:
				return False
			if microseconds >= 0:
				self.update_progress(microseconds / 1000000.0)
			return False
		return key == 'progress' and value == 'end'

	#============================
	async def _read_progress(self, stream) -> None:
		async for raw_line in stream:
			line = raw_line.decode("utf-8", errors="replace").strip()
			self._parse_progress_line(line)

	#============================
	async def render(self, cmd: list) -> str:
		"""
		Run the render command and resolve to the output path.
		"""
		if self.state is JobState.IDLE:
			self.begin_preparing()
		if self._cancel_requested:
			self.error = errors.Cancelled()
			self._transition(JobState.CANCELLED)
			raise self.error
		try:
			utils.remove_if_exists(self.output_file)
		except OSError as exc:
			raise self.fail(exc)
		self._transition(JobState.RENDERING)
		event = utils.report_command_start(cmd)
		try:
			self._process = await asyncio.create_subprocess_exec(*cmd,
				stdout=asyncio.subprocess.PIPE, stderr=asyncio.subprocess.PIPE)
		except OSError as exc:
			utils.report_command_end(event, -1)
			if isinstance(exc, FileNotFoundError):
				raise self.fail(errors.ExportFailed(f"render binary not found: {cmd[0]}"))
			raise self.fail(exc)
		proc = self._process
		if self._cancel_requested:
			self._terminate_process()
		try:
			stderr_task = asyncio.ensure_future(proc.stderr.read())
			await self._read_progress(proc.stdout)
			stderr = await stderr_task
			returncode = await proc.wait()
		except asyncio.CancelledError:
			self._terminated_by_cancel = True
			self._cancel_requested = True
			if proc.returncode is None:
				proc.kill()
				await proc.wait()
			utils.report_command_end(event, -1)
			self.error = errors.Cancelled()
			self._transition(JobState.CANCELLED)
			raise
		utils.report_command_end(event, returncode)
		return self._finish(returncode, stderr.decode("utf-8", errors="replace"))

	#============================
	def _finish(self, returncode: int, stderr_text: str) -> str:
		if returncode == 0:
			if not os.path.isfile(self.output_file):
				raise self.fail(errors.ExportFailed(
					f"renderer reported success but wrote no file: {self.output_file}"
				))
			self.progress = 1.0
			self._transition(JobState.COMPLETED)
			return self.output_file
		if self._terminated_by_cancel:
			self.error = errors.Cancelled()
			self._transition(JobState.CANCELLED)
			raise self.error
		raise self.fail(errors.classify_render_failure(returncode, stderr_text))

	#============================
	def to_dict(self) -> dict:
		data = {
			'job_id': self.job_id,
			'kind': self.kind,
			'state': self.state.value,
			'progress': self.progress,
			'output': self.output_file,
			'elapsed': self.elapsed,
		}
		if self.error is not None:
			data['error'] = {'code': self.error.code, 'message': self.error.message}
		return data
