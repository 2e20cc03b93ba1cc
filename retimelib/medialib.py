#python wrapper for ffprobe

import asyncio
import json
from retimelib.core import errors

#===============================
def probeCommand(mediafile, ffprobe="ffprobe"):
	cmd = [
		ffprobe, "-v", "error",
		"-print_format", "json",
		"-show_format", "-show_streams",
		mediafile,
	]
	return cmd

#===============================
def parseProbeOutput(mediafile, returncode, stdout, stderr):
	if returncode != 0:
		message = stderr.decode("utf-8", errors="replace").strip()
		if message == "":
			message = f"ffprobe exited with status {returncode}"
		raise errors.UnsupportedFormat(f"cannot open {mediafile}: {message}")
	try:
		data = json.loads(stdout)
	except ValueError:
		raise errors.UnsupportedFormat(f"cannot parse probe data for {mediafile}")
	if not isinstance(data, dict):
		raise errors.UnsupportedFormat(f"cannot parse probe data for {mediafile}")
	data.setdefault('streams', [])
	data.setdefault('format', {})
	return data

#===============================
async def getMediaInfoAsync(mediafile, ffprobe="ffprobe"):
	cmd = probeCommand(mediafile, ffprobe)
	try:
		proc = await asyncio.create_subprocess_exec(*cmd,
			stdout=asyncio.subprocess.PIPE, stderr=asyncio.subprocess.PIPE)
	except FileNotFoundError:
		raise errors.ExportFailed(f"ffprobe binary not found: {ffprobe}")
	stdout, stderr = await proc.communicate()
	return parseProbeOutput(mediafile, proc.returncode, stdout, stderr)
