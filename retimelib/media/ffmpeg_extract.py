#!/usr/bin/env python3

import asyncio
import os
import shutil
import tempfile
import PIL.Image
from retimelib.core import errors
from retimelib.core import utils

#============================================

JPEG_QUALITY = 90

#============================================

def extractFrameCommand(movfile: str, pngfile: str, seconds, ffmpeg: str = "ffmpeg") -> list:
	cmd = [ffmpeg, "-y", "-hide_banner", "-nostdin", "-loglevel", "error"]
	cmd += ["-ss", utils.format_seconds(seconds)]
	cmd += ["-i", movfile]
	cmd += ["-an", "-sn", "-frames:v", "1"]
	cmd += [pngfile]
	return cmd

#============================================

async def extractFrame(movfile: str, pngfile: str, seconds,
	ffmpeg: str = "ffmpeg") -> str:
	cmd = extractFrameCommand(movfile, pngfile, seconds, ffmpeg)
	event = utils.report_command_start(cmd)
	try:
		proc = await asyncio.create_subprocess_exec(*cmd,
			stdout=asyncio.subprocess.PIPE, stderr=asyncio.subprocess.PIPE)
	except FileNotFoundError:
		raise errors.ExportFailed(f"ffmpeg binary not found: {ffmpeg}")
	stdout, stderr = await proc.communicate()
	utils.report_command_end(event, proc.returncode)
	if proc.returncode != 0:
		raise errors.classify_render_failure(proc.returncode,
			stderr.decode("utf-8", errors="replace"))
	if not os.path.isfile(pngfile) or os.path.getsize(pngfile) == 0:
		raise errors.ExportFailed(
			f"no frame at {utils.format_seconds(seconds)}s in {movfile}"
		)
	return pngfile

#============================================

def fitImage(image, max_width: int):
	"""
	Shrink an image to fit a max_width x max_width box, keeping aspect.
	"""
	if max_width is None:
		return image
	src_w, src_h = image.size
	if src_w <= max_width and src_h <= max_width:
		return image
	scale = min(max_width / src_w, max_width / src_h)
	new_size = (max(1, int(round(src_w * scale))), max(1, int(round(src_h * scale))))
	return image.resize(new_size, resample=PIL.Image.LANCZOS)

#============================================

def saveThumbnail(pngfile: str, outfile: str, max_width: int = None) -> str:
	with PIL.Image.open(pngfile) as source:
		image = fitImage(source.convert("RGB"), max_width)
		extension = os.path.splitext(outfile)[1].lower()
		if extension == ".png":
			image.save(outfile, "PNG")
		else:
			image.save(outfile, "JPEG", quality=JPEG_QUALITY)
	return outfile

#============================================

async def generateThumbnail(movfile: str, outfile: str, seconds,
	max_width: int = None, ffmpeg: str = "ffmpeg") -> str:
	temp_dir = tempfile.mkdtemp(prefix="retime-thumb-")
	pngfile = os.path.join(temp_dir, f"{utils.make_timestamp()}-frame.png")
	try:
		await extractFrame(movfile, pngfile, seconds, ffmpeg)
		try:
			saveThumbnail(pngfile, outfile, max_width)
		except OSError as exc:
			raise errors.map_error(exc)
	finally:
		shutil.rmtree(temp_dir, ignore_errors=True)
	return outfile
