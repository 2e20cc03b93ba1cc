#!/usr/bin/env python3

import asyncio
from retimelib.core import export

#============================================

DEFAULT_INTERVAL = 0.1

#============================================

class ProgressReporter():
	"""
	Sample an export job's progress on a fixed cadence while it renders.

	Events are dicts with job_id and progress. Wrap the render call:

		async with ProgressReporter(job, listener=print):
			await job.render(cmd)

	Exactly one final 1.0 event is published when the block exits,
	whatever the outcome, and nothing is published after it.
	"""

	def __init__(self, job, listener=None, channel: asyncio.Queue = None,
		interval: float = DEFAULT_INTERVAL):
		if interval is None or interval <= 0:
			raise RuntimeError("progress interval must be positive")
		self.job = job
		self.listener = listener
		self.channel = channel
		self.interval = interval
		self.dropped = 0
		self._task = None
		self._finished = False

	#============================
	async def __aenter__(self) -> 'ProgressReporter':
		self.start()
		return self

	#============================
	async def __aexit__(self, exc_type, exc, tb) -> bool:
		await self.finish()
		return False

	#============================
	def start(self) -> None:
		if self._task is not None:
			return
		self._task = asyncio.ensure_future(self._sample_loop())

	#============================
	async def _sample_loop(self) -> None:
		while not self.job.is_terminal:
			if self.job.state is export.JobState.RENDERING:
				self._publish(self.job.progress)
			await asyncio.sleep(self.interval)

	#============================
	async def finish(self) -> None:
		"""
		Stop sampling and publish the terminal 1.0 event once.
		"""
		if self._finished:
			return
		self._finished = True
		if self._task is not None:
			self._task.cancel()
			try:
				await self._task
			except asyncio.CancelledError:
				pass
			self._task = None
		await self._publish_final()

	#============================
	def _event(self, value: float) -> dict:
		return {'job_id': self.job.job_id, 'progress': float(value)}

	#============================
	def _publish(self, value: float) -> None:
		event = self._event(value)
		if self.listener is not None:
			self.listener(event)
		if self.channel is None:
			return
		try:
			self.channel.put_nowait(event)
		except asyncio.QueueFull:
			self.dropped += 1

	#============================
	async def _publish_final(self) -> None:
		event = self._event(1.0)
		if self.listener is not None:
			self.listener(event)
		if self.channel is None:
			return
		# make room by evicting the oldest sample; the final event is never dropped
		while self.channel.full():
			try:
				self.channel.get_nowait()
			except asyncio.QueueEmpty:
				break
			self.dropped += 1
		await self.channel.put(event)
