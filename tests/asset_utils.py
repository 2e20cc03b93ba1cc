"""
Helpers that build probe payloads and stand-in render processes for tests.
"""

# Standard Library
import os
import sys

REPO_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if REPO_ROOT not in sys.path:
	sys.path.insert(0, REPO_ROOT)

# local repo modules
from retimelib.core.asset import AssetHandle

#============================================

def make_probe(duration: float, video: bool = True, audio: bool = True,
	frame_rate: str = "30/1", sample_rate: int = 48000, audio_tracks: int = 1) -> dict:
	"""
	Return an ffprobe-style payload for a synthetic asset.
	"""
	streams = []
	if video:
		streams.append({
			'index': len(streams),
			'codec_type': 'video',
			'codec_name': 'h264',
			'codec_tag_string': 'avc1',
			'width': 640,
			'height': 360,
			'avg_frame_rate': frame_rate,
			'r_frame_rate': frame_rate,
			'duration': str(duration),
		})
	if audio:
		for _track in range(audio_tracks):
			streams.append({
				'index': len(streams),
				'codec_type': 'audio',
				'codec_name': 'aac',
				'codec_tag_string': 'mp4a',
				'sample_rate': str(sample_rate),
				'channels': 2,
				'duration': str(duration),
			})
	return {
		'streams': streams,
		'format': {'duration': str(duration)},
	}

#============================================

def make_asset(duration: float, video: bool = True, audio: bool = True,
	locator: str = "synthetic.mp4", audio_tracks: int = 1) -> AssetHandle:
	"""
	Return an asset handle that never touches ffprobe.
	"""
	probe = make_probe(duration, video=video, audio=audio, audio_tracks=audio_tracks)
	return AssetHandle.from_probe(locator, probe)

#============================================

def write_fake_renderer(path: str, body: str) -> list:
	"""
	Write a Python script that stands in for ffmpeg; returns its argv prefix.
	"""
	with open(path, "w") as script_file:
		script_file.write("import sys\n")
		script_file.write("import time\n")
		script_file.write(body)
		script_file.write("\n")
	return [sys.executable, path]

#============================================

def write_fake_tool(directory: str, name: str, body: str) -> str:
	"""
	Write an executable stand-in for ffmpeg or ffprobe; returns its path.
	"""
	script_path = os.path.join(directory, f"{name}.py")
	with open(script_path, "w") as script_file:
		script_file.write("import json\n")
		script_file.write("import os\n")
		script_file.write("import sys\n")
		script_file.write("import time\n")
		script_file.write(body)
		script_file.write("\n")
	tool_path = os.path.join(directory, name)
	with open(tool_path, "w") as tool_file:
		tool_file.write("#!/bin/sh\n")
		tool_file.write(f"exec \"{sys.executable}\" \"{script_path}\" \"$@\"\n")
	os.chmod(tool_path, 0o755)
	return tool_path

#============================================

def fake_ffprobe_body(probe: dict) -> str:
	return f"print(json.dumps({probe!r}))\n"

#============================================

def fake_ffmpeg_body(steps: int = 4, step_us: int = 500000, delay: float = 0.0) -> str:
	"""
	Body for a stand-in ffmpeg that reports progress and writes its output.
	"""
	lines = []
	lines.append("out = sys.argv[-1]")
	lines.append("with open(out + '.argv.json', 'w') as handle:")
	lines.append("    json.dump(sys.argv[1:], handle)")
	lines.append(f"for step in range(1, {steps} + 1):")
	lines.append(f"    print(f'out_time_us={{step * {step_us}}}', flush=True)")
	lines.append("    print('progress=continue', flush=True)")
	lines.append(f"    time.sleep({delay})")
	lines.append("with open(out, 'w') as handle:")
	lines.append("    handle.write('rendered')")
	lines.append("print('progress=end', flush=True)")
	return "\n".join(lines) + "\n"
