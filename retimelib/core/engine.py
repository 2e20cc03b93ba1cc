#!/usr/bin/env python3

import asyncio
import os
from decimal import Decimal
from decimal import InvalidOperation
from retimelib.core import errors
from retimelib.core import export
from retimelib.core import loader
from retimelib.core import progress
from retimelib.core import segments as segmentlib
from retimelib.core import timeline as timelinelib
from retimelib.core import utils
from retimelib.core.asset import AssetHandle
from retimelib.media import ffmpeg_extract
from retimelib.media import ffmpeg_render

#============================================

EXPORT_KINDS = ('process', 'trim', 'volume')

#============================================

class RetimeEngine():
	"""
	Entry point for every operation.

	Exports (process, trim, volume) run as independent asyncio tasks, each
	driving one ExportJob. Thumbnail and metadata are one-shot reads.
	"""

	def __init__(self, profile: dict = None):
		self.profile = loader.parse_profile(profile)
		self.builder = timelinelib.TimelineBuilder(self.profile['pitch_binding'])
		self.jobs = {}
		self._tasks = {}
		self._last_job_id = None
		self._semaphore = None
		if self.profile['max_concurrent_exports']:
			self._semaphore = asyncio.Semaphore(self.profile['max_concurrent_exports'])

	#============================
	def submit(self, kind: str, input_file: str, output_file: str,
		on_progress=None, progress_channel: asyncio.Queue = None, **options) -> str:
		"""
		Validate an export request and start it; returns the job id.

		Must be called with a running event loop. Bad parameters raise
		InvalidParameters here, before any file is touched.
		"""
		if kind not in EXPORT_KINDS:
			raise errors.InvalidParameters(
				f"export kind must be one of {', '.join(EXPORT_KINDS)}"
			)
		request = self._validate_request(kind, input_file, output_file, options)
		job = export.ExportJob(kind, request['output'], container=request['container'])
		self.jobs[job.job_id] = job
		self._last_job_id = job.job_id
		task = asyncio.ensure_future(
			self._run_export(job, request, on_progress, progress_channel)
		)
		self._tasks[job.job_id] = task
		return job.job_id

	#============================
	async def wait(self, job_id: str) -> str:
		task = self._tasks.get(job_id)
		if task is None:
			raise errors.InvalidParameters(f"unknown job id: {job_id}")
		return await task

	#============================
	def cancel(self, job_id: str = None) -> bool:
		"""
		Cancel a job; without an id the most recently submitted job is targeted.
		"""
		if job_id is None:
			job_id = self._last_job_id
		job = self.jobs.get(job_id)
		if job is None:
			return False
		return job.cancel()

	#============================
	def cancel_all(self) -> int:
		count = 0
		for job in self.jobs.values():
			if job.cancel():
				count += 1
		return count

	#============================
	def status(self, job_id: str) -> dict:
		job = self.jobs.get(job_id)
		if job is None:
			raise errors.InvalidParameters(f"unknown job id: {job_id}")
		return job.to_dict()

	#============================
	async def process(self, input_file: str, output_file: str, segments=None,
		preset: str = None, output_format: str = 'both', container: str = None,
		on_progress=None, progress_channel: asyncio.Queue = None) -> str:
		job_id = self.submit('process', input_file, output_file,
			on_progress=on_progress, progress_channel=progress_channel,
			segments=segments, preset=preset, output_format=output_format,
			container=container)
		return await self.wait(job_id)

	#============================
	async def trim(self, input_file: str, output_file: str, start_time, end_time,
		container: str = None, on_progress=None,
		progress_channel: asyncio.Queue = None) -> str:
		job_id = self.submit('trim', input_file, output_file,
			on_progress=on_progress, progress_channel=progress_channel,
			start_time=start_time, end_time=end_time, container=container)
		return await self.wait(job_id)

	#============================
	async def adjust_volume(self, input_file: str, output_file: str, volume,
		container: str = None, on_progress=None,
		progress_channel: asyncio.Queue = None) -> str:
		job_id = self.submit('volume', input_file, output_file,
			on_progress=on_progress, progress_channel=progress_channel,
			volume=volume, container=container)
		return await self.wait(job_id)

	#============================
	async def generate_thumbnail(self, input_file: str, output_file: str,
		time=0, max_width: int = None) -> str:
		seconds = utils.parse_timecode(time, "thumbnail time")
		if seconds < 0:
			raise errors.InvalidParameters("thumbnail time must be non-negative")
		if max_width is not None:
			if isinstance(max_width, bool) or not isinstance(max_width, int) or max_width <= 0:
				raise errors.InvalidParameters("max_width must be a positive integer")
		output_file = self._require_path(output_file, "output path")
		try:
			asset = AssetHandle.open(input_file, ffprobe=self.profile['ffprobe'])
			await asset.require('video')
			return await ffmpeg_extract.generateThumbnail(asset.locator, output_file,
				seconds, max_width=max_width, ffmpeg=self.profile['ffmpeg'])
		except Exception as exc:
			raise errors.map_error(exc)

	#============================
	async def get_metadata(self, input_file: str) -> dict:
		try:
			asset = AssetHandle.open(input_file, ffprobe=self.profile['ffprobe'])
			await asset.require(None)
			duration = await asset.duration()
			video = await asset.first_track('video')
			audio = await asset.first_track('audio')
			metadata = {
				'duration': float(duration),
				'width': 0,
				'height': 0,
				'frameRate': 0.0,
				'videoCodec': 'unknown',
				'fileSize': asset.file_size(),
			}
			if video is not None:
				metadata['width'] = video.width
				metadata['height'] = video.height
				metadata['frameRate'] = float(video.frame_rate)
				metadata['videoCodec'] = asset.format_of(video)
			if audio is not None:
				metadata['audioCodec'] = asset.format_of(audio)
			return metadata
		except Exception as exc:
			raise errors.map_error(exc)

	#============================
	async def compose(self, kind: str, input_file: str, output_file: str,
		**options) -> dict:
		"""
		Build the timeline and render command for an export without running it.
		"""
		if kind not in EXPORT_KINDS:
			raise errors.InvalidParameters(
				f"export kind must be one of {', '.join(EXPORT_KINDS)}"
			)
		request = self._validate_request(kind, input_file, output_file, options)
		try:
			(timeline, cmd) = await self._prepare(request)
		except Exception as exc:
			raise errors.map_error(exc)
		return {
			'kind': kind,
			'timeline': timeline.to_dict(),
			'command': cmd,
		}

	#============================
	async def run_job(self, job: dict, on_progress=None,
		progress_channel: asyncio.Queue = None):
		"""
		Run one job entry as produced by JobLoader.
		"""
		kind = job['kind']
		if kind == 'metadata':
			return await self.get_metadata(job['input'])
		if kind == 'thumbnail':
			return await self.generate_thumbnail(job['input'], job['output'],
				time=job.get('time', 0), max_width=job.get('max_width'))
		options = self._job_options(job)
		job_id = self.submit(kind, job['input'], job['output'],
			on_progress=on_progress, progress_channel=progress_channel, **options)
		return await self.wait(job_id)

	#============================
	def _job_options(self, job: dict) -> dict:
		options = {'container': job.get('container')}
		if job['kind'] == 'process':
			options['segments'] = job.get('segments')
			options['preset'] = job.get('preset')
			options['output_format'] = job.get('output_format', 'both')
		elif job['kind'] == 'trim':
			options['start_time'] = job['start']
			options['end_time'] = job['end']
		elif job['kind'] == 'volume':
			options['volume'] = job['volume']
		return options

	#============================
	def _require_path(self, path: str, label: str) -> str:
		if not path or not isinstance(path, str):
			raise errors.InvalidParameters(f"{label} is required")
		return utils.normalize_path(path)

	#============================
	def _validate_request(self, kind: str, input_file: str, output_file: str,
		options: dict) -> dict:
		request = {
			'kind': kind,
			'input': self._require_path(input_file, "input path"),
			'output': self._require_path(output_file, "output path"),
			'container': options.get('container'),
		}
		if os.path.abspath(request['input']) == os.path.abspath(request['output']):
			raise errors.InvalidParameters("output path must differ from the input path")
		if kind == 'process':
			request['segments'] = segmentlib.resolve_segments(options.get('segments'),
				options.get('preset'))
			output_format = options.get('output_format') or 'both'
			if output_format not in ffmpeg_render.OUTPUT_FORMATS:
				raise errors.InvalidParameters(
					f"output format must be one of {', '.join(ffmpeg_render.OUTPUT_FORMATS)}"
				)
			request['output_format'] = output_format
		elif kind == 'trim':
			start = utils.parse_timecode(options.get('start_time'), "start time")
			end = utils.parse_timecode(options.get('end_time'), "end time")
			if start < 0 or end <= start:
				raise errors.InvalidParameters("invalid time range")
			request['start'] = start
			request['end'] = end
		elif kind == 'volume':
			volume = options.get('volume')
			if volume is None or isinstance(volume, bool):
				raise errors.InvalidParameters("volume must be a number")
			try:
				volume = Decimal(str(volume))
			except InvalidOperation:
				raise errors.InvalidParameters(f"volume must be a number, got {volume}")
			if not volume.is_finite() or volume < 0:
				raise errors.InvalidParameters("volume must be a non-negative number")
			request['volume'] = volume
		return request

	#============================
	async def _prepare(self, request: dict) -> tuple:
		asset = AssetHandle.open(request['input'], ffprobe=self.profile['ffprobe'])
		kind = request['kind']
		output_format = 'both'
		if kind == 'process':
			(timeline, plan) = await self.builder.build(asset, request['segments'])
			output_format = request['output_format']
		elif kind == 'trim':
			(timeline, plan) = await self.builder.build_trim(asset, request['start'],
				request['end'])
		else:
			await asset.require('audio')
			(timeline, plan) = await self.builder.build_passthrough(asset,
				utils.decimal_to_fraction(request['volume']))
		cmd = ffmpeg_render.processComposition(asset.locator, request['output'],
			timeline, plan, self.profile, output_format=output_format,
			container=request['container'])
		return (timeline, cmd)

	#============================
	async def _run_export(self, job: export.ExportJob, request: dict,
		on_progress, progress_channel) -> str:
		reporter = progress.ProgressReporter(job, listener=on_progress,
			channel=progress_channel, interval=self.profile['progress_interval'])
		async with reporter:
			try:
				job.begin_preparing()
				(timeline, cmd) = await self._prepare(request)
				job.set_expected_duration(timeline.duration)
				if self._semaphore is None:
					return await job.render(cmd)
				async with self._semaphore:
					return await job.render(cmd)
			except asyncio.CancelledError:
				job.fail(errors.Cancelled())
				raise
			except Exception as exc:
				raise job.fail(exc)
