#!/usr/bin/env python3

import argparse
import asyncio
import signal
import sys
from tqdm import tqdm
import yaml
from retimelib.core import errors
from retimelib.core import utils
from retimelib.core.engine import RetimeEngine
from retimelib.core.loader import JobLoader
from retimelib.core.segments import PRESETS
from retimelib.media.ffmpeg_render import OUTPUT_FORMATS

#============================================

SEGMENT_KEYS = ('start', 'end', 'speed', 'pitch')

#============================================

def parse_segment_arg(text: str) -> dict:
	"""
	Parse 'start=0,end=10,speed=2,pitch=voice' into a segment mapping.
	"""
	segment = {}
	for part in text.split(','):
		part = part.strip()
		if part == "":
			continue
		if '=' not in part:
			raise argparse.ArgumentTypeError(f"segment field must be key=value: {part}")
		key, value = part.split('=', 1)
		key = key.strip()
		if key not in SEGMENT_KEYS:
			raise argparse.ArgumentTypeError(
				f"segment key must be one of {', '.join(SEGMENT_KEYS)}: {key}"
			)
		segment[key] = value.strip()
	if 'speed' not in segment:
		raise argparse.ArgumentTypeError(f"segment needs speed=: {text}")
	return segment

#============================================

def parse_args(argv: list = None):
	"""
	Parse command-line arguments.
	"""
	parser = argparse.ArgumentParser(description="Variable-speed video retiming")
	parser.add_argument('-q', '--quiet', dest='quiet', action='store_true',
		help='do not echo commands or draw progress bars')
	parser.add_argument('-P', '--profile', dest='profile_file',
		help='yaml file with render profile overrides')
	subparsers = parser.add_subparsers(dest='command', required=True)

	process_parser = subparsers.add_parser('process',
		help='render a file with per-segment playback speeds')
	_add_io_args(process_parser)
	process_parser.add_argument('-s', '--segment', dest='segments', action='append',
		type=parse_segment_arg, default=None,
		help='speed segment as start=S,end=E,speed=X,pitch=P (repeatable)')
	process_parser.add_argument('-p', '--preset', dest='preset',
		choices=sorted(PRESETS.keys()), help='named speed preset')
	process_parser.add_argument('-f', '--output-format', dest='output_format',
		choices=OUTPUT_FORMATS, default='both', help='tracks to keep in the output')
	_add_export_args(process_parser)

	trim_parser = subparsers.add_parser('trim', help='cut a time range out of a file')
	_add_io_args(trim_parser)
	trim_parser.add_argument('-s', '--start', dest='start_time', required=True,
		help='start time in seconds or H:M:S')
	trim_parser.add_argument('-e', '--end', dest='end_time', required=True,
		help='end time in seconds or H:M:S')
	_add_export_args(trim_parser)

	volume_parser = subparsers.add_parser('volume', help='scale audio gain')
	_add_io_args(volume_parser)
	volume_parser.add_argument('-v', '--volume', dest='volume', type=float, required=True,
		help='gain multiplier, 0 mutes')
	_add_export_args(volume_parser)

	thumb_parser = subparsers.add_parser('thumbnail', help='save one frame as an image')
	_add_io_args(thumb_parser)
	thumb_parser.add_argument('-t', '--time', dest='time', default='0',
		help='frame time in seconds or H:M:S')
	thumb_parser.add_argument('-w', '--max-width', dest='max_width', type=int,
		help='fit the image inside a max-width square box')

	meta_parser = subparsers.add_parser('metadata', help='print media properties')
	meta_parser.add_argument('-i', '--input', dest='input_file', required=True,
		help='input media file')

	run_parser = subparsers.add_parser('run', help='run every job in a yaml job file')
	run_parser.add_argument('-y', '--yaml', dest='yamlfile', required=True,
		help='yaml job file')
	run_parser.add_argument('-n', '--dry-run', dest='dry_run', action='store_true',
		help='validate only, do not render')

	args = parser.parse_args(argv)
	return args

#============================================

def _add_io_args(subparser) -> None:
	subparser.add_argument('-i', '--input', dest='input_file', required=True,
		help='input media file')
	subparser.add_argument('-o', '--output', dest='output_file', required=True,
		help='output file')

#============================================

def _add_export_args(subparser) -> None:
	subparser.add_argument('-c', '--container', dest='container',
		help='ffmpeg output format name, default from the extension')
	subparser.add_argument('-n', '--dry-run', dest='dry_run', action='store_true',
		help='print the composed timeline and render command, do not render')

#============================================

def load_profile(profile_file: str) -> dict:
	if profile_file is None:
		return None
	with open(profile_file, 'r') as data_file:
		data = yaml.safe_load(data_file)
	if data is None:
		return None
	if isinstance(data, dict) and 'profile' in data:
		data = data['profile']
	return data

#============================================

class ProgressBars():
	"""
	One tqdm bar per export job, fed by progress events.
	"""

	def __init__(self, disable: bool = False):
		self.disable = disable
		self.bars = {}

	#============================
	def listener(self, label: str):
		def on_progress(event: dict) -> None:
			bar = self.bars.get(event['job_id'])
			if bar is None:
				bar = tqdm(total=100, desc=label, unit="%",
					position=len(self.bars), leave=True, disable=self.disable)
				self.bars[event['job_id']] = bar
			value = int(round(event['progress'] * 100))
			if value > bar.n:
				bar.update(value - bar.n)
		return on_progress

	#============================
	def close(self) -> None:
		for bar in self.bars.values():
			bar.close()

#============================================

def _export_options(args) -> dict:
	if args.command == 'process':
		return {
			'segments': args.segments,
			'preset': args.preset,
			'output_format': args.output_format,
			'container': args.container,
		}
	if args.command == 'trim':
		return {
			'start_time': args.start_time,
			'end_time': args.end_time,
			'container': args.container,
		}
	return {
		'volume': args.volume,
		'container': args.container,
	}

#============================================

async def run_command(args, engine: RetimeEngine, job_file=None) -> None:
	bars = ProgressBars(disable=args.quiet)
	try:
		if args.command in ('process', 'trim', 'volume'):
			options = _export_options(args)
			if args.dry_run:
				plan = await engine.compose(args.command, args.input_file,
					args.output_file, **options)
				plan['command'] = utils.format_command(plan['command'])
				print(yaml.safe_dump(plan, sort_keys=False))
				return
			job_id = engine.submit(args.command, args.input_file, args.output_file,
				on_progress=bars.listener(args.command), **options)
			output_file = await engine.wait(job_id)
			bars.close()
			print(f"wrote {output_file}")
		elif args.command == 'thumbnail':
			output_file = await engine.generate_thumbnail(args.input_file,
				args.output_file, time=args.time, max_width=args.max_width)
			print(f"wrote {output_file}")
		elif args.command == 'metadata':
			metadata = await engine.get_metadata(args.input_file)
			print(yaml.safe_dump(metadata, sort_keys=False))
		elif args.command == 'run':
			await run_job_file(args, engine, bars, job_file)
	finally:
		bars.close()

#============================================

async def run_job_file(args, engine: RetimeEngine, bars: ProgressBars,
	job_file) -> None:
	if args.dry_run:
		if not utils.is_quiet_mode():
			print(f"dry run: {len(job_file.jobs)} jobs validated")
		return
	coroutines = []
	for job in job_file.jobs:
		coroutines.append(engine.run_job(job, on_progress=bars.listener(job['name'])))
	results = await asyncio.gather(*coroutines, return_exceptions=True)
	bars.close()
	failures = []
	for job, result in zip(job_file.jobs, results):
		if isinstance(result, BaseException):
			error = errors.map_error(result)
			failures.append(error)
			print(f"{job['name']}: {format_error(error)}")
		elif isinstance(result, dict):
			print(yaml.safe_dump({job['name']: result}, sort_keys=False))
		else:
			print(f"{job['name']}: wrote {result}")
	if len(failures) > 0:
		raise failures[0]

#============================================

async def main_async(args) -> None:
	profile = load_profile(args.profile_file)
	job_file = None
	if args.command == 'run':
		job_file = JobLoader(args.yamlfile, profile_overrides=profile).load()
		profile = job_file.profile
	engine = RetimeEngine(profile)
	loop = asyncio.get_running_loop()
	try:
		loop.add_signal_handler(signal.SIGINT, engine.cancel_all)
	except NotImplementedError:
		pass
	await run_command(args, engine, job_file)

#============================================

def format_error(error) -> str:
	return f"error [{error.code}]: {error.message}"

#============================================

def main(argv: list = None) -> int:
	args = parse_args(argv)
	utils.set_quiet_mode(args.quiet)
	try:
		asyncio.run(main_async(args))
	except errors.RetimeError as exc:
		print(format_error(exc), file=sys.stderr)
		return 1
	except OSError as exc:
		print(format_error(errors.map_error(exc)), file=sys.stderr)
		return 1
	return 0


if __name__ == '__main__':
	sys.exit(main())
