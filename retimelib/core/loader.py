#!/usr/bin/env python3

import os
import yaml
from retimelib.core import errors
from retimelib.core import segments as segmentlib
from retimelib.core import timeline as timelinelib
from retimelib.core import utils
from retimelib.media import ffmpeg_render

#============================================

JOB_FILE_VERSION = 1
MAX_JOB_FILE_BYTES = 10 ** 7

DEFAULT_PROFILE = {
	'ffmpeg': 'ffmpeg',
	'ffprobe': 'ffprobe',
	'video_codec': 'libx264',
	'audio_codec': 'aac',
	'crf': 20,
	'preset': 'medium',
	'pixel_format': 'yuv420p',
	'container': None,
	'progress_interval': 0.1,
	'max_concurrent_exports': None,
	'pitch_binding': timelinelib.PITCH_BINDING_FIRST,
}

# environment variable -> profile key
ENV_OVERRIDES = {
	'RETIME_FFMPEG': 'ffmpeg',
	'RETIME_FFPROBE': 'ffprobe',
}

# job kind -> (required keys, optional keys)
JOB_KEYS = {
	'process': (('input', 'output'),
		('preset', 'segments', 'output_format', 'container', 'name')),
	'trim': (('input', 'output', 'start', 'end'), ('container', 'name')),
	'volume': (('input', 'output', 'volume'), ('container', 'name')),
	'thumbnail': (('input', 'output'), ('time', 'max_width', 'name')),
	'metadata': (('input',), ('name',)),
}

#============================================

def parse_profile(raw_profile: dict = None, environ: dict = None) -> dict:
	"""
	Merge a user profile over the defaults and validate the values.

	RETIME_FFMPEG and RETIME_FFPROBE override the binaries unless the
	profile names them explicitly.
	"""
	if raw_profile is None:
		raw_profile = {}
	if not isinstance(raw_profile, dict):
		raise errors.InvalidParameters("profile must be a mapping")
	unknown = sorted(set(raw_profile.keys()) - set(DEFAULT_PROFILE.keys()))
	if len(unknown) > 0:
		raise errors.InvalidParameters(f"unknown profile keys: {', '.join(unknown)}")
	if environ is None:
		environ = os.environ
	profile = dict(DEFAULT_PROFILE)
	for env_name, key in ENV_OVERRIDES.items():
		if environ.get(env_name):
			profile[key] = environ[env_name]
	for key, value in raw_profile.items():
		if value is None and key in ('ffmpeg', 'ffprobe'):
			continue
		profile[key] = value
	for key in ('ffmpeg', 'ffprobe', 'video_codec', 'audio_codec', 'pixel_format'):
		if not isinstance(profile[key], str) or profile[key] == "":
			raise errors.InvalidParameters(f"profile.{key} must be a non-empty string")
	if profile['crf'] is not None:
		profile['crf'] = _parse_int(profile['crf'], "profile.crf", minimum=0)
	if profile['container'] is not None and not isinstance(profile['container'], str):
		raise errors.InvalidParameters("profile.container must be a string or null")
	interval = profile['progress_interval']
	if isinstance(interval, bool) or not isinstance(interval, (int, float)) or interval <= 0:
		raise errors.InvalidParameters("profile.progress_interval must be a positive number")
	profile['progress_interval'] = float(interval)
	limit = profile['max_concurrent_exports']
	if limit is not None:
		limit = _parse_int(limit, "profile.max_concurrent_exports", minimum=0)
		profile['max_concurrent_exports'] = limit if limit > 0 else None
	if profile['pitch_binding'] not in timelinelib.PITCH_BINDINGS:
		raise errors.InvalidParameters(
			f"profile.pitch_binding must be one of {', '.join(timelinelib.PITCH_BINDINGS)}"
		)
	return profile

#============================================

def merge_profiles(base: dict = None, overrides: dict = None) -> dict:
	"""
	Layer override profile values over a base profile mapping.
	"""
	merged = {}
	for (label, raw_profile) in (("profile", base), ("profile overrides", overrides)):
		if raw_profile is None:
			continue
		if not isinstance(raw_profile, dict):
			raise errors.InvalidParameters(f"{label} must be a mapping")
		merged.update(raw_profile)
	return merged

#============================================

def _parse_int(value, label: str, minimum: int = None) -> int:
	if isinstance(value, bool):
		raise errors.InvalidParameters(f"{label} must be an integer")
	try:
		number = int(value)
	except (TypeError, ValueError):
		raise errors.InvalidParameters(f"{label} must be an integer, got {value}")
	if minimum is not None and number < minimum:
		raise errors.InvalidParameters(f"{label} must be at least {minimum}")
	return number

#============================================

class JobFile():
	def __init__(self):
		self.yaml_file = None
		self.base_dir = None
		self.data = {}
		self.profile = {}
		self.jobs = []

#============================================

class JobLoader():
	def __init__(self, yaml_file: str, environ: dict = None,
		profile_overrides: dict = None):
		self.yaml_file = yaml_file
		self.environ = environ
		# command-line profile values win over the job file profile
		self.profile_overrides = profile_overrides

	#============================
	def load(self) -> JobFile:
		job_file = JobFile()
		job_file.yaml_file = self.yaml_file
		job_file.base_dir = os.path.dirname(os.path.abspath(self.yaml_file))
		job_file.data = self._load_yaml()
		self._validate_required_keys(job_file.data)
		raw_profile = merge_profiles(job_file.data.get('profile'), self.profile_overrides)
		job_file.profile = parse_profile(raw_profile, self.environ)
		jobs = []
		for index, entry in enumerate(job_file.data['jobs']):
			jobs.append(self._parse_job(job_file, entry, index))
		job_file.jobs = jobs
		return job_file

	#============================
	def _load_yaml(self) -> dict:
		if not os.path.isfile(self.yaml_file):
			raise errors.FileNotFound(f"job file not found: {self.yaml_file}")
		file_size = os.path.getsize(self.yaml_file)
		if file_size > MAX_JOB_FILE_BYTES:
			raise errors.InvalidParameters("yaml file is larger than 10MB")
		try:
			with open(self.yaml_file, 'r') as data_file:
				data = yaml.safe_load(data_file)
		except yaml.YAMLError as exc:
			raise errors.InvalidParameters(f"could not parse {self.yaml_file}: {exc}")
		if not isinstance(data, dict):
			raise errors.InvalidParameters("job file must be a mapping at the top level")
		return data

	#============================
	def _validate_required_keys(self, data: dict) -> None:
		if data.get('retime') != JOB_FILE_VERSION:
			raise errors.InvalidParameters(f"retime must be set to {JOB_FILE_VERSION}")
		jobs = data.get('jobs')
		if not isinstance(jobs, list) or len(jobs) == 0:
			raise errors.InvalidParameters("jobs must be a non-empty list")

	#============================
	def _parse_job(self, job_file: JobFile, entry: dict, index: int) -> dict:
		if not isinstance(entry, dict):
			raise errors.InvalidParameters(f"job {index} must be a mapping")
		kind = entry.get('kind')
		if kind not in JOB_KEYS:
			raise errors.InvalidParameters(
				f"job {index} kind must be one of {', '.join(JOB_KEYS.keys())}"
			)
		(required, optional) = JOB_KEYS[kind]
		for key in required:
			if entry.get(key) is None:
				raise errors.InvalidParameters(f"job {index} ({kind}) is missing {key}")
		allowed = set(required) | set(optional) | {'kind'}
		unknown = sorted(set(entry.keys()) - allowed)
		if len(unknown) > 0:
			raise errors.InvalidParameters(
				f"job {index} ({kind}) has unknown keys: {', '.join(unknown)}"
			)
		job = {
			'kind': kind,
			'name': entry.get('name', f"{kind}-{index + 1}"),
			'input': self._resolve_path(job_file, entry['input']),
		}
		if 'output' in required:
			job['output'] = self._resolve_path(job_file, entry['output'])
		if kind == 'process':
			self._parse_process_job(job, entry)
		elif kind == 'trim':
			job['start'] = utils.parse_timecode(entry['start'], "start time")
			job['end'] = utils.parse_timecode(entry['end'], "end time")
		elif kind == 'volume':
			job['volume'] = entry['volume']
		elif kind == 'thumbnail':
			job['time'] = utils.parse_timecode(entry.get('time', 0), "thumbnail time")
			job['max_width'] = entry.get('max_width')
		if entry.get('container') is not None:
			job['container'] = entry['container']
		return job

	#============================
	def _parse_process_job(self, job: dict, entry: dict) -> None:
		output_format = entry.get('output_format', 'both')
		if output_format not in ffmpeg_render.OUTPUT_FORMATS:
			raise errors.InvalidParameters(
				f"output_format must be one of {', '.join(ffmpeg_render.OUTPUT_FORMATS)}"
			)
		raw_segments = entry.get('segments')
		if raw_segments is not None and not isinstance(raw_segments, list):
			raise errors.InvalidParameters("segments must be a list")
		# fail on bad segments while loading, not after other jobs started
		job['segments'] = segmentlib.resolve_segments(raw_segments, entry.get('preset'))
		job['preset'] = None
		job['output_format'] = output_format

	#============================
	def _resolve_path(self, job_file: JobFile, path) -> str:
		if not isinstance(path, str) or path == "":
			raise errors.InvalidParameters("job paths must be non-empty strings")
		path = utils.normalize_path(path)
		if os.path.isabs(path):
			return path
		return os.path.join(job_file.base_dir, path)
