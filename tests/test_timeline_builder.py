#!/usr/bin/env python3

"""
Unit tests for timeline composition over synthetic assets.
"""

# Standard Library
import asyncio
import os
import sys
from fractions import Fraction

# PIP3 modules
import pytest

REPO_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if REPO_ROOT not in sys.path:
	sys.path.insert(0, REPO_ROOT)

# tests helpers
TESTS_DIR = os.path.abspath(os.path.dirname(__file__))
if TESTS_DIR not in sys.path:
	sys.path.insert(0, TESTS_DIR)
from asset_utils import make_asset

# local repo modules
from retimelib.core import errors
from retimelib.core import segments
from retimelib.core.timeline import TimelineBuilder

#============================================

def _build(duration: float, raw_segments=None, preset: str = None,
	pitch_binding: str = 'first_segment', video: bool = True, audio: bool = True):
	"""
	Compose a synthetic asset and return (timeline, plan).
	"""
	asset = make_asset(duration, video=video, audio=audio)
	resolved = segments.resolve_segments(raw_segments, preset)
	builder = TimelineBuilder(pitch_binding)
	return asyncio.run(builder.build(asset, resolved))

#============================================

def test_two_segments_twenty_seconds() -> None:
	"""
	Ensure 10s at 2x plus 10s at 1x composes to 15s.
	"""
	(timeline, plan) = _build(20, [
		{'start': 0, 'end': 10, 'speed': 2},
		{'start': 10, 'speed': 1},
	])
	assert timeline.duration == Fraction(15)
	assert len(timeline.clips) == 2
	first = timeline.clips[0]
	second = timeline.clips[1]
	assert (first.output_start, first.output_end) == (Fraction(0), Fraction(5))
	assert (second.output_start, second.output_end) == (Fraction(5), Fraction(15))
	assert second.source_end == Fraction(20)
	assert len(plan.directives) == 2

#============================================

def test_output_duration_sum_rule() -> None:
	"""
	Ensure output duration is the sum of resolved range over speed.
	"""
	(timeline, _plan) = _build(30, [
		{'start': 0, 'speed': 0.5},
		{'start': 4, 'end': 9, 'speed': 4},
		{'start': 9, 'speed': 1.5},
	])
	expected = Fraction(4) / Fraction(1, 2) + Fraction(5) / 4 + Fraction(21) / Fraction(3, 2)
	assert timeline.duration == expected

#============================================

def test_timelapse_preset() -> None:
	"""
	Ensure 16x-timelapse on 160s gives 10s with varispeed audio.
	"""
	(timeline, plan) = _build(160, preset='16x-timelapse')
	assert timeline.duration == Fraction(10)
	assert plan.algorithm_for(0) == 'varispeed'

#============================================

def test_degenerate_segments_are_skipped() -> None:
	"""
	Ensure segments with an empty resolved range add nothing.
	"""
	(timeline, _plan) = _build(20, [
		{'start': 0, 'end': 10, 'speed': 2},
		{'start': 10, 'end': 10, 'speed': 4},
		{'start': 10, 'speed': 1},
	])
	assert timeline.duration == Fraction(15)
	assert [clip.segment_index for clip in timeline.clips] == [0, 2]

#============================================

def test_segment_past_end_is_skipped() -> None:
	"""
	Ensure segments starting after the asset ends add nothing.
	"""
	(timeline, _plan) = _build(20, [
		{'start': 0, 'speed': 1},
		{'start': 25, 'speed': 2},
	])
	assert timeline.duration == Fraction(20)
	assert len(timeline.clips) == 1
	assert timeline.clips[0].source_end == Fraction(20)

#============================================

def test_explicit_end_is_clamped() -> None:
	"""
	Ensure an explicit end past the asset duration is clamped.
	"""
	(timeline, _plan) = _build(12, [{'start': 2, 'end': 40, 'speed': 2}])
	assert timeline.clips[0].source_end == Fraction(12)
	assert timeline.duration == Fraction(5)

#============================================

def test_all_degenerate_uses_default() -> None:
	"""
	Ensure a list where nothing resolves falls back to the whole asset at 1x.
	"""
	(timeline, plan) = _build(8, [{'start': 30, 'speed': 2}])
	assert timeline.duration == Fraction(8)
	assert timeline.clips[0].speed == Fraction(1)
	assert plan.algorithm_for(0) == 'spectral'

#============================================

def test_first_segment_pitch_binding() -> None:
	"""
	Ensure the first segment's pitch policy applies to every audio clip.
	"""
	(_timeline, plan) = _build(20, [
		{'start': 0, 'speed': 2, 'pitch': 'none'},
		{'start': 10, 'speed': 1, 'pitch': 'voice'},
	])
	assert [d.algorithm for d in plan.directives] == ['varispeed', 'varispeed']

#============================================

def test_per_segment_pitch_binding() -> None:
	"""
	Ensure per_segment binding keeps each segment's own pitch policy.
	"""
	(_timeline, plan) = _build(20, [
		{'start': 0, 'speed': 2, 'pitch': 'none'},
		{'start': 10, 'speed': 1, 'pitch': 'voice'},
	], pitch_binding='per_segment')
	assert [d.algorithm for d in plan.directives] == ['varispeed', 'spectral']

#============================================

def test_video_only_asset_has_no_mix_plan() -> None:
	"""
	Ensure assets without audio produce no mixing directives.
	"""
	(timeline, plan) = _build(10, preset='2x-lecture', audio=False)
	assert timeline.has_audio is False
	assert len(plan.directives) == 0
	assert timeline.duration == Fraction(5)

#============================================

def test_zero_duration_asset_raises() -> None:
	"""
	Ensure assets without a measurable duration are unsupported.
	"""
	asset = make_asset(0)
	builder = TimelineBuilder()
	with pytest.raises(errors.UnsupportedFormat):
		asyncio.run(builder.build(asset, segments.DEFAULT_SEGMENTS))

#============================================

def test_trackless_asset_raises() -> None:
	"""
	Ensure assets with neither audio nor video are unsupported.
	"""
	asset = make_asset(10, video=False, audio=False)
	builder = TimelineBuilder()
	with pytest.raises(errors.UnsupportedFormat):
		asyncio.run(builder.build(asset, segments.DEFAULT_SEGMENTS))

#============================================

def test_trim_range() -> None:
	"""
	Ensure trimming 10.5..45 gives a 34.5s timeline.
	"""
	asset = make_asset(60)
	(timeline, plan) = asyncio.run(TimelineBuilder().build_trim(asset, 10.5, 45))
	assert timeline.duration == Fraction(69, 2)
	assert timeline.clips[0].source_start == Fraction(21, 2)
	assert plan.is_uniform_gain(1)

#============================================

def test_trim_clamps_and_rejects() -> None:
	"""
	Ensure trim clamps the end and rejects bad ranges.
	"""
	asset = make_asset(30)
	builder = TimelineBuilder()
	(timeline, _plan) = asyncio.run(builder.build_trim(asset, 20, 90))
	assert timeline.duration == Fraction(10)
	for (start, end) in ((10, 5), (-1, 5), (3, 3), (31, 40)):
		with pytest.raises(errors.InvalidParameters):
			asyncio.run(builder.build_trim(asset, start, end))

#============================================

def test_passthrough_gain() -> None:
	"""
	Ensure volume passthrough carries the gain on every directive.
	"""
	asset = make_asset(12)
	builder = TimelineBuilder()
	(timeline, plan) = asyncio.run(builder.build_passthrough(asset, 0))
	assert timeline.duration == Fraction(12)
	assert plan.is_uniform_gain(0)
	(_timeline, plan) = asyncio.run(builder.build_passthrough(asset, 1))
	assert plan.is_uniform_gain(1)

#============================================

def test_unknown_pitch_binding() -> None:
	"""
	Ensure unknown pitch binding names are rejected.
	"""
	with pytest.raises(errors.InvalidParameters):
		TimelineBuilder('every_other')
