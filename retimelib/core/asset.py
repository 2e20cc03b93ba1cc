#!/usr/bin/env python3

import asyncio
import os
from fractions import Fraction
from retimelib import medialib
from retimelib.core import errors
from retimelib.core import utils

#============================================

TRACK_KINDS = ('video', 'audio')

#============================================

class Track():
	def __init__(self, stream: dict):
		self.descriptor = stream
		self.index = int(stream.get('index', 0))
		self.kind = stream.get('codec_type')
		self.codec_name = stream.get('codec_name', 'unknown')
		self.codec_tag = stream.get('codec_tag_string')
		self.width = int(stream.get('width', 0) or 0)
		self.height = int(stream.get('height', 0) or 0)
		rate = utils.parse_rate(stream.get('avg_frame_rate'))
		if rate == 0:
			rate = utils.parse_rate(stream.get('r_frame_rate'))
		self.frame_rate = rate
		self.sample_rate = int(stream.get('sample_rate', 0) or 0)
		self.channels = int(stream.get('channels', 0) or 0)

	#============================
	def __repr__(self) -> str:
		return f"Track(index={self.index}, kind={self.kind}, codec={self.codec_name})"

#============================================

class AssetHandle():
	"""
	Lazily probed media file.

	Properties are loaded once on first access and stay stable for the
	lifetime of the handle.
	"""

	def __init__(self, locator: str, ffprobe: str = "ffprobe"):
		self.locator = locator
		self.ffprobe = ffprobe
		self._probe = None
		self._tracks = None
		self._duration = None
		self._load_lock = asyncio.Lock()

	#============================
	@classmethod
	def open(cls, locator: str, ffprobe: str = "ffprobe") -> 'AssetHandle':
		if not locator:
			raise errors.InvalidParameters("input path is required")
		path = utils.normalize_path(locator)
		utils.ensure_file_exists(path)
		return cls(path, ffprobe=ffprobe)

	#============================
	@classmethod
	def from_probe(cls, locator: str, probe: dict) -> 'AssetHandle':
		handle = cls(locator)
		handle._apply_probe(probe)
		return handle

	#============================
	async def load(self) -> None:
		if self._probe is not None:
			return
		async with self._load_lock:
			if self._probe is not None:
				return
			probe = await medialib.getMediaInfoAsync(self.locator, self.ffprobe)
			self._apply_probe(probe)

	#============================
	def _apply_probe(self, probe: dict) -> None:
		tracks = []
		for stream in probe.get('streams', []):
			if stream.get('codec_type') not in TRACK_KINDS:
				continue
			# cover art shows up as a one-frame video stream
			if stream.get('disposition', {}).get('attached_pic'):
				continue
			tracks.append(Track(stream))
		self._tracks = tracks
		self._duration = self._probe_duration(probe, tracks)
		self._probe = probe

	#============================
	def _probe_duration(self, probe: dict, tracks: list) -> Fraction:
		raw_duration = probe.get('format', {}).get('duration')
		if raw_duration in (None, 'N/A'):
			stream_durations = [
				stream.get('duration') for stream in probe.get('streams', [])
				if stream.get('duration') not in (None, 'N/A')
			]
			if len(stream_durations) == 0:
				return Fraction(0)
			raw_duration = max(stream_durations, key=float)
		duration = Fraction(str(raw_duration))
		if duration < 0:
			return Fraction(0)
		return duration

	#============================
	async def duration(self) -> Fraction:
		await self.load()
		return self._duration

	#============================
	async def tracks(self, kind: str = None) -> list:
		await self.load()
		if kind is None:
			return list(self._tracks)
		return [track for track in self._tracks if track.kind == kind]

	#============================
	async def first_track(self, kind: str):
		tracks = await self.tracks(kind)
		if len(tracks) == 0:
			return None
		return tracks[0]

	#============================
	async def require(self, kind: str = None) -> None:
		tracks = await self.tracks(kind)
		if len(tracks) > 0:
			return
		if kind is None:
			raise errors.UnsupportedFormat(f"no audio or video tracks in {self.locator}")
		raise errors.UnsupportedFormat(f"no {kind} track in {self.locator}")

	#============================
	def format_of(self, track: Track) -> str:
		tag = track.codec_tag
		if tag and not tag.startswith('[') and tag != '0x0000':
			return tag
		return track.codec_name

	#============================
	def file_size(self) -> int:
		return os.path.getsize(self.locator)
