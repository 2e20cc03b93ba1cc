#!/usr/bin/env python3

import asyncio
import errno

#============================================

class RetimeError(RuntimeError):
	code = 'EXPORT_FAILED'
	default_message = "video export failed"

	def __init__(self, message: str = None):
		if message is None:
			message = self.default_message
		super().__init__(message)
		self.message = message

	#============================
	def __str__(self) -> str:
		return f"[{self.code}] {self.message}"

#============================================

class FileNotFound(RetimeError):
	code = 'FILE_NOT_FOUND'
	default_message = "input file does not exist"

class UnsupportedFormat(RetimeError):
	code = 'UNSUPPORTED_FORMAT'
	default_message = "unsupported media format"

class ExportFailed(RetimeError):
	code = 'EXPORT_FAILED'
	default_message = "video export failed"

class InsufficientSpace(RetimeError):
	code = 'INSUFFICIENT_SPACE'
	default_message = "insufficient disk space"

class InvalidParameters(RetimeError):
	code = 'INVALID_PARAMETERS'
	default_message = "invalid parameters provided"

class Cancelled(RetimeError):
	code = 'CANCELLED'
	default_message = "processing was cancelled"

#============================================

ERROR_CLASSES = {
	cls.code: cls for cls in (
		FileNotFound,
		UnsupportedFormat,
		ExportFailed,
		InsufficientSpace,
		InvalidParameters,
		Cancelled,
	)
}

NO_SPACE_ERRNOS = (errno.ENOSPC, getattr(errno, "EDQUOT", errno.ENOSPC))

# stderr fragments ffmpeg prints when the target filesystem is full
NO_SPACE_MARKERS = (
	"no space left on device",
	"disk quota exceeded",
	"enospc",
)

#============================================

def error_for_code(code: str, message: str = None) -> RetimeError:
	cls = ERROR_CLASSES.get(code)
	if cls is None:
		raise ValueError(f"unknown error code {code}")
	return cls(message)

#============================================

def map_error(exc: BaseException) -> RetimeError:
	"""
	Normalize any failure into one taxonomy error.
	"""
	if isinstance(exc, RetimeError):
		return exc
	if isinstance(exc, asyncio.CancelledError):
		return Cancelled()
	if isinstance(exc, OSError) and exc.errno in NO_SPACE_ERRNOS:
		return InsufficientSpace(str(exc))
	message = str(exc)
	if message == "":
		message = exc.__class__.__name__
	return ExportFailed(message)

#============================================

def classify_render_failure(returncode: int, stderr_text: str) -> RetimeError:
	"""
	Turn a failed ffmpeg run into InsufficientSpace or ExportFailed.
	"""
	lowered = (stderr_text or "").lower()
	for marker in NO_SPACE_MARKERS:
		if marker in lowered:
			return InsufficientSpace(_stderr_tail(stderr_text))
	tail = _stderr_tail(stderr_text)
	if tail == "":
		return ExportFailed(f"ffmpeg exited with status {returncode}")
	return ExportFailed(f"ffmpeg exited with status {returncode}: {tail}")

#============================================

def _stderr_tail(stderr_text: str, max_lines: int = 3) -> str:
	if not stderr_text:
		return ""
	lines = [line.strip() for line in stderr_text.splitlines() if line.strip()]
	return " | ".join(lines[-max_lines:])
