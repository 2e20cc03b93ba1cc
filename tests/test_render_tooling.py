"""
Pytest coverage for rendering through real ffmpeg and ffprobe.
"""

# Standard Library
import asyncio
import os
import shutil
import subprocess
import sys

# PIP3 modules
import numpy
import PIL.Image
import pytest

REPO_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if REPO_ROOT not in sys.path:
	sys.path.insert(0, REPO_ROOT)

# local repo modules
from retimelib.core.asset import AssetHandle
from retimelib.core import utils
from retimelib.core.engine import RetimeEngine

#============================================

FFPROBE_TOOLS = ("ffmpeg", "ffprobe")
MISSING_FFPROBE_TOOLS = [tool for tool in FFPROBE_TOOLS if shutil.which(tool) is None]
HAVE_FFPROBE_TOOLS = len(MISSING_FFPROBE_TOOLS) == 0
SKIP_FFPROBE_REASON = f"missing tools: {', '.join(MISSING_FFPROBE_TOOLS)}"

# builtin encoders so the tests do not depend on optional ffmpeg libraries
TEST_PROFILE = {
	'ffmpeg': "ffmpeg",
	'ffprobe': "ffprobe",
	'video_codec': "mpeg4",
	'audio_codec': "aac",
	'crf': None,
	'preset': None,
}

DURATION_TOLERANCE = 0.3

#============================================

def _run(cmd: list) -> None:
	"""
	Run a command, raising on failure.
	"""
	subprocess.run(cmd, check=True,
		stdout=subprocess.DEVNULL, stderr=subprocess.DEVNULL)

#============================================

def _make_source(path: str, seconds: int) -> str:
	"""
	Render a test pattern with a sine tone.
	"""
	cmd = ["ffmpeg", "-y", "-v", "error"]
	cmd += ["-f", "lavfi", "-i", f"testsrc=duration={seconds}:size=320x240:rate=30"]
	cmd += ["-f", "lavfi", "-i", f"sine=frequency=440:duration={seconds}"]
	cmd += ["-c:v", "mpeg4", "-c:a", "aac", "-shortest", path]
	_run(cmd)
	return path

#============================================

def _make_dual_audio_source(path: str, seconds: int) -> str:
	"""
	Render a test pattern with two separate audio tracks.
	"""
	cmd = ["ffmpeg", "-y", "-v", "error"]
	cmd += ["-f", "lavfi", "-i", f"testsrc=duration={seconds}:size=320x240:rate=30"]
	cmd += ["-f", "lavfi", "-i", f"sine=frequency=440:duration={seconds}"]
	cmd += ["-f", "lavfi", "-i", f"sine=frequency=880:duration={seconds}"]
	cmd += ["-map", "0:v", "-map", "1:a", "-map", "2:a"]
	cmd += ["-c:v", "mpeg4", "-c:a", "aac", "-shortest", path]
	_run(cmd)
	return path

#============================================

def _decode_pcm(path: str) -> numpy.ndarray:
	"""
	Decode the first audio track to signed 16-bit samples.
	"""
	cmd = ["ffmpeg", "-v", "error", "-i", path, "-map", "0:a:0",
		"-f", "s16le", "-acodec", "pcm_s16le", "-"]
	payload = subprocess.check_output(cmd)
	return numpy.frombuffer(payload, dtype=numpy.int16)

#============================================

def _inspect_output(path: str) -> tuple:
	"""
	Return (duration seconds, track kinds) of a rendered file.
	"""
	async def read() -> tuple:
		asset = AssetHandle.open(path)
		duration = await asset.duration()
		tracks = await asset.tracks()
		return (float(duration), [track.kind for track in tracks])
	return asyncio.run(read())

#============================================

@pytest.fixture(scope="module")
def sources(tmp_path_factory) -> dict:
	if not HAVE_FFPROBE_TOOLS:
		pytest.skip(SKIP_FFPROBE_REASON)
	media_dir = tmp_path_factory.mktemp("media")
	return {
		'short': _make_source(str(media_dir / "short.mp4"), 20),
		'long': _make_source(str(media_dir / "long.mp4"), 60),
	}

#============================================

@pytest.fixture(autouse=True)
def quiet_commands():
	utils.set_quiet_mode(True)
	yield
	utils.set_quiet_mode(False)

#============================================

@pytest.mark.skipif(not HAVE_FFPROBE_TOOLS, reason=SKIP_FFPROBE_REASON)
def test_two_speed_segments(sources, tmp_path) -> None:
	"""
	Ensure 10s at 2x then 10s at 1x renders about 15s with both tracks.
	"""
	engine = RetimeEngine(TEST_PROFILE)
	output_file = str(tmp_path / "segments.mp4")
	events = []
	asyncio.run(engine.process(sources['short'], output_file,
		segments=[{'start': 0, 'end': 10, 'speed': 2}, {'start': 10, 'speed': 1}],
		on_progress=events.append))
	(duration, kinds) = _inspect_output(output_file)
	assert abs(duration - 15.0) < DURATION_TOLERANCE
	kinds = set(kinds)
	assert kinds == {'video', 'audio'}
	assert events[-1]['progress'] == 1.0

#============================================

@pytest.mark.skipif(not HAVE_FFPROBE_TOOLS, reason=SKIP_FFPROBE_REASON)
def test_voice_preset_video_only(sources, tmp_path) -> None:
	"""
	Ensure a 2x preset with video output halves the duration and drops audio.
	"""
	engine = RetimeEngine(TEST_PROFILE)
	output_file = str(tmp_path / "lecture.mp4")
	asyncio.run(engine.process(sources['short'], output_file, preset='2x-lecture',
		output_format='video'))
	(duration, kinds) = _inspect_output(output_file)
	assert abs(duration - 10.0) < DURATION_TOLERANCE
	kinds = set(kinds)
	assert kinds == {'video'}

#============================================

@pytest.mark.skipif(not HAVE_FFPROBE_TOOLS, reason=SKIP_FFPROBE_REASON)
def test_trim_range(sources, tmp_path) -> None:
	"""
	Ensure trimming 10.5..45 leaves about 34.5s.
	"""
	engine = RetimeEngine(TEST_PROFILE)
	output_file = str(tmp_path / "trim.mp4")
	asyncio.run(engine.trim(sources['long'], output_file, 10.5, 45))
	(duration, _kinds) = _inspect_output(output_file)
	assert abs(duration - 34.5) < DURATION_TOLERANCE

#============================================

@pytest.mark.skipif(not HAVE_FFPROBE_TOOLS, reason=SKIP_FFPROBE_REASON)
def test_volume_zero_is_silent(sources, tmp_path) -> None:
	"""
	Ensure volume 0 renders digital silence and volume 1 keeps the tone.
	"""
	profile = dict(TEST_PROFILE)
	profile['audio_codec'] = "pcm_s16le"
	engine = RetimeEngine(profile)
	muted_file = str(tmp_path / "muted.mkv")
	asyncio.run(engine.adjust_volume(sources['short'], muted_file, 0))
	samples = _decode_pcm(muted_file)
	assert samples.size > 0
	assert int(numpy.abs(samples).max()) == 0
	same_file = str(tmp_path / "same.mkv")
	asyncio.run(engine.adjust_volume(sources['short'], same_file, 1.0))
	assert int(numpy.abs(_decode_pcm(same_file)).max()) > 1000

#============================================

@pytest.mark.skipif(not HAVE_FFPROBE_TOOLS, reason=SKIP_FFPROBE_REASON)
def test_thumbnail_max_width(sources, tmp_path) -> None:
	"""
	Ensure thumbnails fit the max width box and keep the aspect ratio.
	"""
	engine = RetimeEngine(TEST_PROFILE)
	output_file = str(tmp_path / "thumb.jpg")
	asyncio.run(engine.generate_thumbnail(sources['short'], output_file, time=5,
		max_width=100))
	with PIL.Image.open(output_file) as image:
		assert image.format == "JPEG"
		assert image.size == (100, 75)

#============================================

@pytest.mark.skipif(not HAVE_FFPROBE_TOOLS, reason=SKIP_FFPROBE_REASON)
def test_metadata(sources) -> None:
	"""
	Ensure metadata matches the generated source.
	"""
	engine = RetimeEngine(TEST_PROFILE)
	metadata = asyncio.run(engine.get_metadata(sources['short']))
	assert abs(metadata['duration'] - 20.0) < DURATION_TOLERANCE
	assert (metadata['width'], metadata['height']) == (320, 240)
	assert metadata['frameRate'] == pytest.approx(30.0, rel=1e-3)
	assert metadata['videoCodec'] == "mp4v"
	assert metadata['audioCodec'] == "mp4a"
	assert metadata['fileSize'] == os.path.getsize(sources['short'])

#============================================

@pytest.mark.skipif(not HAVE_FFPROBE_TOOLS, reason=SKIP_FFPROBE_REASON)
def test_volume_keeps_every_audio_track(tmp_path) -> None:
	"""
	Ensure a second audio track survives a volume change.
	"""
	source = _make_dual_audio_source(str(tmp_path / "dual.mp4"), 5)
	engine = RetimeEngine(TEST_PROFILE)
	output_file = str(tmp_path / "dual_half.mp4")
	asyncio.run(engine.adjust_volume(source, output_file, 0.5))
	(duration, kinds) = _inspect_output(output_file)
	assert abs(duration - 5.0) < DURATION_TOLERANCE
	assert sorted(kinds) == ['audio', 'audio', 'video']
