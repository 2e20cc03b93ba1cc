#!/usr/bin/env python3

from dataclasses import dataclass
from decimal import Decimal
from retimelib.core import errors
from retimelib.core import utils

#============================================

MIN_SPEED = Decimal('0.1')
MAX_SPEED = Decimal('32.0')

PITCH_VOICE = 'voice'
PITCH_HIGH_QUALITY = 'highQuality'
PITCH_NONE = 'none'
DEFAULT_PITCH = PITCH_HIGH_QUALITY

# pitch policy -> time-stretch algorithm used when rendering audio
PITCH_ALGORITHMS = {
	PITCH_VOICE: 'spectral',
	PITCH_HIGH_QUALITY: 'spectral',
	PITCH_NONE: 'varispeed',
}

#============================================

@dataclass(frozen=True)
class SpeedSegment():
	start: Decimal
	speed: Decimal
	end: Decimal = None
	pitch: str = DEFAULT_PITCH

	#============================
	@classmethod
	def from_dict(cls, data: dict) -> 'SpeedSegment':
		if isinstance(data, SpeedSegment):
			return data
		if not isinstance(data, dict):
			raise errors.InvalidParameters("speed segment must be a mapping")
		start = utils.parse_timecode(data.get('start', 0), "segment start")
		end = data.get('end')
		if end is not None:
			end = utils.parse_timecode(end, "segment end")
		if data.get('speed') is None:
			raise errors.InvalidParameters("speed segment requires speed")
		speed = utils.parse_speed(data.get('speed'), Decimal('1.0'))
		pitch = data.get('pitch', data.get('pitchCorrection'))
		if pitch is None:
			pitch = DEFAULT_PITCH
		if not isinstance(pitch, str):
			raise errors.InvalidParameters(f"segment pitch must be a string, got {pitch!r}")
		return cls(start=start, speed=speed, end=end, pitch=pitch)

	#============================
	@property
	def pitch_algorithm(self) -> str:
		return PITCH_ALGORITHMS[self.pitch]

	#============================
	def to_dict(self) -> dict:
		data = {
			'start': float(self.start),
			'speed': float(self.speed),
			'pitch': self.pitch,
		}
		if self.end is not None:
			data['end'] = float(self.end)
		return data

#============================================

DEFAULT_SEGMENTS = (
	SpeedSegment(start=Decimal(0), speed=Decimal('1.0'), pitch=PITCH_HIGH_QUALITY),
)

PRESETS = {
	'2x-lecture': (
		SpeedSegment(start=Decimal(0), speed=Decimal('2.0'), pitch=PITCH_VOICE),
	),
	'16x-timelapse': (
		SpeedSegment(start=Decimal(0), speed=Decimal('16.0'), pitch=PITCH_NONE),
	),
	'slowmo-sports': (
		SpeedSegment(start=Decimal(0), speed=Decimal('0.5'), pitch=PITCH_HIGH_QUALITY),
	),
}

#============================================

def expand_preset(preset: str) -> tuple:
	segments = PRESETS.get(preset)
	if segments is None:
		names = ", ".join(sorted(PRESETS.keys()))
		raise errors.InvalidParameters(f"unknown preset {preset}; expected one of {names}")
	return segments

#============================================

def resolve_segments(segments=None, preset: str = None) -> tuple:
	"""
	Pick the segment list for a request and validate it.

	A named preset wins over explicit segments; no segments at all means
	one full-length segment at normal speed.
	"""
	if preset is not None:
		resolved = expand_preset(preset)
	elif segments is not None and len(segments) > 0:
		resolved = tuple(SpeedSegment.from_dict(segment) for segment in segments)
	else:
		resolved = DEFAULT_SEGMENTS
	validate_segments(resolved)
	return resolved

#============================================

def validate_segments(segments) -> None:
	if segments is None or len(segments) == 0:
		raise errors.InvalidParameters("at least one speed segment is required")
	previous_start = None
	for index, segment in enumerate(segments):
		validate_speed(segment.speed)
		if not isinstance(segment.start, Decimal) or not segment.start.is_finite():
			raise errors.InvalidParameters(
				f"segment {index} start must be a finite number, got {segment.start}"
			)
		if segment.end is not None and (not isinstance(segment.end, Decimal)
			or not segment.end.is_finite()):
			raise errors.InvalidParameters(
				f"segment {index} end must be a finite number, got {segment.end}"
			)
		if segment.start < 0:
			raise errors.InvalidParameters(
				f"segment {index} start must be non-negative, got {segment.start}"
			)
		if not isinstance(segment.pitch, str) or segment.pitch not in PITCH_ALGORITHMS:
			raise errors.InvalidParameters(
				f"segment {index} pitch must be voice, highQuality or none, "
				f"got {segment.pitch}"
			)
		if previous_start is not None and segment.start < previous_start:
			raise errors.InvalidParameters(
				f"segments must be ordered by start; segment {index} starts at "
				f"{segment.start} before {previous_start}"
			)
		previous_start = segment.start

#============================================

def validate_speed(speed) -> None:
	speed = utils.parse_speed(speed, None)
	if speed is None or not speed.is_finite():
		raise errors.InvalidParameters(f"speed must be a finite number, got {speed}")
	if speed < MIN_SPEED or speed > MAX_SPEED:
		raise errors.InvalidParameters(
			f"speed must be between {MIN_SPEED}x and {MAX_SPEED}x, got {speed}x"
		)
