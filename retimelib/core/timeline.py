#!/usr/bin/env python3

from dataclasses import dataclass
from fractions import Fraction
from retimelib.core import errors
from retimelib.core import segments as segmentlib
from retimelib.core import utils

#============================================

PITCH_BINDING_FIRST = 'first_segment'
PITCH_BINDING_PER_SEGMENT = 'per_segment'
PITCH_BINDINGS = (PITCH_BINDING_FIRST, PITCH_BINDING_PER_SEGMENT)

#============================================

@dataclass(frozen=True)
class Clip():
	segment_index: int
	source_start: Fraction
	source_end: Fraction
	output_start: Fraction
	output_end: Fraction
	speed: Fraction
	pitch: str

	#============================
	@property
	def source_duration(self) -> Fraction:
		return self.source_end - self.source_start

	#============================
	@property
	def output_duration(self) -> Fraction:
		return self.output_end - self.output_start

#============================================

@dataclass(frozen=True)
class MixDirective():
	clip_index: int
	algorithm: str
	tempo: Fraction
	gain: Fraction = Fraction(1)

#============================================

class ComposedTimeline():
	def __init__(self, clips: list, has_video: bool, has_audio: bool,
		frame_rate: Fraction = Fraction(0), sample_rate: int = 0,
		video_streams: int = None, audio_streams: int = None):
		self.clips = tuple(clips)
		self.has_video = has_video
		self.has_audio = has_audio
		self.frame_rate = frame_rate
		self.sample_rate = sample_rate
		# source streams of each kind carried through every clip
		if video_streams is None:
			video_streams = 1 if has_video else 0
		if audio_streams is None:
			audio_streams = 1 if has_audio else 0
		self.video_streams = video_streams
		self.audio_streams = audio_streams

	#============================
	@property
	def duration(self) -> Fraction:
		return sum((clip.output_duration for clip in self.clips), Fraction(0))

	#============================
	@property
	def source_duration(self) -> Fraction:
		return sum((clip.source_duration for clip in self.clips), Fraction(0))

	#============================
	def to_dict(self) -> dict:
		return {
			'duration': float(self.duration),
			'has_video': self.has_video,
			'has_audio': self.has_audio,
			'video_streams': self.video_streams,
			'audio_streams': self.audio_streams,
			'clips': [
				{
					'segment': clip.segment_index,
					'source': [float(clip.source_start), float(clip.source_end)],
					'output': [float(clip.output_start), float(clip.output_end)],
					'speed': float(clip.speed),
					'pitch': clip.pitch,
				}
				for clip in self.clips
			],
		}

#============================================

class MixPlan():
	def __init__(self, directives: list):
		self.directives = tuple(directives)

	#============================
	def directive_for(self, clip_index: int) -> MixDirective:
		for directive in self.directives:
			if directive.clip_index == clip_index:
				return directive
		return None

	#============================
	def algorithm_for(self, clip_index: int) -> str:
		directive = self.directive_for(clip_index)
		if directive is None:
			return None
		return directive.algorithm

	#============================
	def is_uniform_gain(self, gain) -> bool:
		target = Fraction(str(gain))
		return all(directive.gain == target for directive in self.directives)

#============================================

class TimelineBuilder():
	def __init__(self, pitch_binding: str = PITCH_BINDING_FIRST):
		if pitch_binding not in PITCH_BINDINGS:
			raise errors.InvalidParameters(
				f"pitch_binding must be one of {', '.join(PITCH_BINDINGS)}"
			)
		self.pitch_binding = pitch_binding

	#============================
	async def build(self, asset, segments) -> tuple:
		segmentlib.validate_segments(segments)
		duration = await self._source_duration(asset)
		clips = self.layout_clips(segments, duration)
		if len(clips) == 0:
			# nothing survived resolution, fall back to the whole asset at 1x
			segments = segmentlib.DEFAULT_SEGMENTS
			clips = self.layout_clips(segments, duration)
		timeline = await self._make_timeline(asset, clips)
		plan = self._make_mix_plan(timeline, segments, Fraction(1))
		return (timeline, plan)

	#============================
	async def build_trim(self, asset, start_time, end_time) -> tuple:
		start = utils.decimal_to_fraction(utils.parse_timecode(start_time, "start time"))
		end = utils.decimal_to_fraction(utils.parse_timecode(end_time, "end time"))
		if start < 0 or end <= start:
			raise errors.InvalidParameters("invalid time range")
		duration = await self._source_duration(asset)
		if start >= duration:
			raise errors.InvalidParameters(
				f"start time {float(start):.3f}s is beyond the asset duration "
				f"{float(duration):.3f}s"
			)
		end = min(end, duration)
		clip = Clip(segment_index=0, source_start=start, source_end=end,
			output_start=Fraction(0), output_end=end - start, speed=Fraction(1),
			pitch=segmentlib.DEFAULT_PITCH)
		timeline = await self._make_timeline(asset, [clip])
		plan = self._make_mix_plan(timeline, segmentlib.DEFAULT_SEGMENTS, Fraction(1))
		return (timeline, plan)

	#============================
	async def build_passthrough(self, asset, gain=1) -> tuple:
		gain_value = Fraction(str(gain))
		if gain_value < 0:
			raise errors.InvalidParameters("volume must be non-negative")
		duration = await self._source_duration(asset)
		clip = Clip(segment_index=0, source_start=Fraction(0), source_end=duration,
			output_start=Fraction(0), output_end=duration, speed=Fraction(1),
			pitch=segmentlib.DEFAULT_PITCH)
		timeline = await self._make_timeline(asset, [clip], all_streams=True)
		plan = self._make_mix_plan(timeline, segmentlib.DEFAULT_SEGMENTS, gain_value)
		return (timeline, plan)

	#============================
	def layout_clips(self, segments, duration: Fraction) -> list:
		"""
		Resolve each segment against the asset duration and lay the scaled
		results back-to-back on the output timeline.
		"""
		clips = []
		cursor = Fraction(0)
		count = len(segments)
		for index, segment in enumerate(segments):
			start = utils.decimal_to_fraction(segment.start)
			if segment.end is not None:
				end = min(utils.decimal_to_fraction(segment.end), duration)
			elif index < count - 1:
				end = min(utils.decimal_to_fraction(segments[index + 1].start), duration)
			else:
				end = duration
			if end - start <= 0:
				continue
			speed = utils.decimal_to_fraction(segment.speed)
			scaled = (end - start) / speed
			clips.append(Clip(segment_index=index, source_start=start, source_end=end,
				output_start=cursor, output_end=cursor + scaled, speed=speed,
				pitch=segment.pitch))
			cursor += scaled
		return clips

	#============================
	async def _source_duration(self, asset) -> Fraction:
		await asset.require(None)
		duration = await asset.duration()
		if duration <= 0:
			raise errors.UnsupportedFormat(f"asset has no measurable duration: {asset.locator}")
		return duration

	#============================
	async def _make_timeline(self, asset, clips: list,
		all_streams: bool = False) -> ComposedTimeline:
		video_tracks = await asset.tracks('video')
		audio_tracks = await asset.tracks('audio')
		video_track = video_tracks[0] if len(video_tracks) > 0 else None
		audio_track = audio_tracks[0] if len(audio_tracks) > 0 else None
		frame_rate = Fraction(0)
		sample_rate = 0
		if video_track is not None:
			frame_rate = video_track.frame_rate
		if audio_track is not None:
			sample_rate = audio_track.sample_rate
		video_streams = None
		audio_streams = None
		if all_streams:
			video_streams = len(video_tracks)
			audio_streams = len(audio_tracks)
		return ComposedTimeline(clips, has_video=video_track is not None,
			has_audio=audio_track is not None, frame_rate=frame_rate,
			sample_rate=sample_rate, video_streams=video_streams,
			audio_streams=audio_streams)

	#============================
	def _make_mix_plan(self, timeline: ComposedTimeline, segments,
		gain: Fraction) -> MixPlan:
		if not timeline.has_audio:
			return MixPlan([])
		first_pitch = segments[0].pitch
		directives = []
		for index, clip in enumerate(timeline.clips):
			pitch = clip.pitch
			if self.pitch_binding == PITCH_BINDING_FIRST:
				pitch = first_pitch
			directives.append(MixDirective(clip_index=index,
				algorithm=segmentlib.PITCH_ALGORITHMS[pitch], tempo=clip.speed,
				gain=gain))
		return MixPlan(directives)
