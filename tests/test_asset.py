#!/usr/bin/env python3

"""
Unit tests for probe parsing into asset handles.
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

# local repo modules
from retimelib import medialib
from retimelib.core import errors
from retimelib.core.asset import AssetHandle

#============================================

def test_cover_art_and_subtitles_are_ignored() -> None:
	"""
	Ensure attached pictures and non-AV streams are not tracks.
	"""
	probe = {
		'streams': [
			{'index': 0, 'codec_type': 'audio', 'codec_name': 'mp3',
				'codec_tag_string': '[0][0][0][0]', 'sample_rate': '44100'},
			{'index': 1, 'codec_type': 'video', 'codec_name': 'mjpeg',
				'disposition': {'attached_pic': 1}},
			{'index': 2, 'codec_type': 'subtitle', 'codec_name': 'mov_text'},
		],
		'format': {'duration': '180.5'},
	}
	asset = AssetHandle.from_probe("song.mp3", probe)
	tracks = asyncio.run(asset.tracks())
	assert [track.kind for track in tracks] == ['audio']
	assert asyncio.run(asset.duration()) == Fraction(361, 2)
	assert asset.format_of(tracks[0]) == "mp3"
	with pytest.raises(errors.UnsupportedFormat):
		asyncio.run(asset.require('video'))

#============================================

def test_duration_falls_back_to_streams() -> None:
	"""
	Ensure a missing container duration uses the longest stream.
	"""
	probe = {
		'streams': [
			{'codec_type': 'video', 'duration': '9.5', 'avg_frame_rate': '0/0',
				'r_frame_rate': '25/1'},
			{'codec_type': 'audio', 'duration': '10.0'},
		],
		'format': {'duration': 'N/A'},
	}
	asset = AssetHandle.from_probe("clip.mkv", probe)
	assert asyncio.run(asset.duration()) == Fraction(10)
	video = asyncio.run(asset.first_track('video'))
	assert video.frame_rate == Fraction(25)

#============================================

def test_open_rejects_missing_and_empty(tmp_path) -> None:
	"""
	Ensure open validates the locator before probing.
	"""
	with pytest.raises(errors.InvalidParameters):
		AssetHandle.open("")
	with pytest.raises(errors.FileNotFound):
		AssetHandle.open(str(tmp_path / "missing.mp4"))
	present = tmp_path / "present.mp4"
	present.write_bytes(b"\x00")
	handle = AssetHandle.open("file://" + str(present))
	assert handle.locator == str(present)
	assert handle.file_size() == 1

#============================================

def test_probe_output_errors() -> None:
	"""
	Ensure ffprobe failures and garbage output are unsupported formats.
	"""
	with pytest.raises(errors.UnsupportedFormat):
		medialib.parseProbeOutput("a.mp4", 1, b"", b"Invalid data found when processing input")
	with pytest.raises(errors.UnsupportedFormat):
		medialib.parseProbeOutput("a.mp4", 0, b"not json", b"")
	data = medialib.parseProbeOutput("a.mp4", 0, b"{}", b"")
	assert data == {'streams': [], 'format': {}}
