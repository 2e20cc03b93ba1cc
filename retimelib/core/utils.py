#!/usr/bin/env python3

import os
import re
import shlex
import time
from decimal import Decimal
from decimal import InvalidOperation
from fractions import Fraction
from retimelib.core import errors

#============================================

_QUIET_MODE = False
_COMMAND_REPORTER = None
_COMMAND_TOTAL = None
_COMMAND_COUNT = 0

#============================================

def set_quiet_mode(quiet: bool) -> None:
	global _QUIET_MODE
	_QUIET_MODE = bool(quiet)

#============================================

def is_quiet_mode() -> bool:
	return _QUIET_MODE

#============================================

def set_command_reporter(reporter) -> None:
	global _COMMAND_REPORTER
	global _COMMAND_COUNT
	_COMMAND_REPORTER = reporter
	_COMMAND_COUNT = 0

#============================================

def clear_command_reporter() -> None:
	global _COMMAND_REPORTER
	_COMMAND_REPORTER = None

#============================================

def set_command_total(total) -> None:
	global _COMMAND_TOTAL
	_COMMAND_TOTAL = total

#============================================

def command_prefix(index: int, total) -> str:
	if index is None or index <= 0:
		return ""
	if total is None or total <= 0:
		return f"[{index}]"
	return f"[{index}/{total}]"

#============================================

def format_command(argv: list) -> str:
	showcmd = " ".join(shlex.quote(str(part)) for part in argv)
	return re.sub("  *", " ", showcmd).strip()

#============================================

def report_command_start(argv: list) -> dict:
	"""
	Echo a command and notify the reporter; returns the event for report_command_end.
	"""
	global _COMMAND_COUNT
	_COMMAND_COUNT += 1
	showcmd = format_command(argv)
	if not _QUIET_MODE:
		print(f"CMD: '{showcmd}'")
	event = {
		'event': 'start',
		'command': showcmd,
		'index': _COMMAND_COUNT,
		'total': _COMMAND_TOTAL,
		'started': time.time(),
	}
	if _COMMAND_REPORTER is not None:
		_COMMAND_REPORTER(dict(event))
	return event

#============================================

def report_command_end(start_event: dict, returncode: int) -> None:
	seconds = time.time() - start_event['started']
	if _COMMAND_REPORTER is None:
		return
	_COMMAND_REPORTER({
		'event': 'end',
		'command': start_event['command'],
		'index': start_event['index'],
		'total': start_event['total'],
		'returncode': returncode,
		'seconds': seconds,
	})

#============================================

def parse_timecode(raw_time, label: str = "time value") -> Decimal:
	if raw_time is None:
		raise errors.InvalidParameters(f"{label} is required")
	if isinstance(raw_time, bool):
		raise errors.InvalidParameters(f"{label} must be a number or timecode string")
	if isinstance(raw_time, int):
		value = Decimal(raw_time)
	elif isinstance(raw_time, float):
		value = Decimal(str(raw_time))
	elif isinstance(raw_time, Decimal):
		value = raw_time
	elif isinstance(raw_time, Fraction):
		value = Decimal(raw_time.numerator) / Decimal(raw_time.denominator)
	elif isinstance(raw_time, str):
		value = _parse_timecode_text(raw_time, label)
	else:
		raise errors.InvalidParameters(f"{label} must be a number or timecode string")
	if not value.is_finite():
		raise errors.InvalidParameters(f"{label} must be a finite number, got {raw_time}")
	return value

#============================================

def _parse_timecode_text(raw_time: str, label: str) -> Decimal:
	value = raw_time.strip()
	try:
		if ':' not in value:
			return Decimal(value)
		parts = value.split(':')
		if len(parts) > 3:
			raise errors.InvalidParameters(f"{label} has too many fields: {raw_time}")
		seconds = Decimal(parts.pop())
		minutes = Decimal(parts.pop())
		hours = Decimal(0)
		if len(parts) > 0:
			hours = Decimal(parts.pop())
	except InvalidOperation:
		raise errors.InvalidParameters(f"{label} is not a valid timecode: {raw_time}")
	for field in (hours, minutes, seconds):
		if not field.is_finite():
			raise errors.InvalidParameters(f"{label} must be a finite number, got {raw_time}")
	return hours * Decimal(3600) + minutes * Decimal(60) + seconds

#============================================

def parse_speed(speed_value, default_speed: Decimal) -> Decimal:
	if speed_value is None:
		return default_speed
	if isinstance(speed_value, bool):
		raise errors.InvalidParameters("speed must be a number")
	if isinstance(speed_value, int):
		return Decimal(speed_value)
	if isinstance(speed_value, float):
		return Decimal(str(speed_value))
	try:
		return Decimal(str(speed_value))
	except InvalidOperation:
		raise errors.InvalidParameters(f"speed must be a number, got {speed_value}")

#============================================

def decimal_to_fraction(value: Decimal) -> Fraction:
	return Fraction(str(value))

#============================================

def parse_rate(raw_rate) -> Fraction:
	"""
	Parse ffprobe rates like '30000/1001' or '25'; '0/0' means unknown.
	"""
	if raw_rate is None:
		return Fraction(0)
	if isinstance(raw_rate, (int, float)):
		return Fraction(str(raw_rate))
	value = str(raw_rate).strip()
	if '/' in value:
		parts = value.split('/')
		denominator = int(parts[1])
		if denominator == 0:
			return Fraction(0)
		return Fraction(int(parts[0]), denominator)
	if value == "" or value == "N/A":
		return Fraction(0)
	return Fraction(value)

#============================================

def format_seconds(value) -> str:
	"""
	Format seconds for ffmpeg arguments with microsecond resolution.
	"""
	text = f"{float(value):.6f}"
	text = text.rstrip('0').rstrip('.')
	if text in ("", "-0"):
		return "0"
	return text

#============================================

def normalize_path(path: str) -> str:
	if path is None:
		return None
	if path.startswith("file://"):
		return path[len("file://"):]
	return path

#============================================

def ensure_file_exists(filepath: str) -> None:
	if not os.path.isfile(filepath):
		raise errors.FileNotFound(f"file not found: {filepath}")
	if not os.access(filepath, os.R_OK):
		raise errors.FileNotFound(f"file is not readable: {filepath}")
	return

#============================================

def remove_if_exists(filepath: str) -> None:
	if os.path.lexists(filepath):
		os.remove(filepath)

#============================================

def make_timestamp() -> str:
	datestamp = time.strftime("%y%b%d").lower()
	uppercase = "ABCDEFGHIJKLMNOPQRSTUVWXYZ"
	hourstamp = uppercase[(time.localtime()[3]) % 26]
	minstamp = f"{time.localtime()[4]:02d}"
	secstamp = uppercase[(time.localtime()[5]) % 26]
	timestamp = datestamp + hourstamp + minstamp + secstamp
	return timestamp
