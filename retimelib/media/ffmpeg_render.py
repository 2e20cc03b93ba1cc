
from fractions import Fraction
from retimelib.core import errors
from retimelib.core import utils

#============================================

OUTPUT_FORMATS = ('video', 'audio', 'both')

# single atempo instances stay inside this range; larger factors are chained
ATEMPO_MIN = Fraction(1, 2)
ATEMPO_MAX = Fraction(2)

DEFAULT_SAMPLE_RATE = 48000

#============================================

def formatNumber(value) -> str:
	text = f"{float(value):.8f}".rstrip('0').rstrip('.')
	if text == "":
		return "0"
	return text

#============================================

def formatRate(rate: Fraction) -> str:
	rate = Fraction(rate)
	if rate.denominator == 1:
		return str(rate.numerator)
	return f"{rate.numerator}/{rate.denominator}"

#============================================

def atempoChain(tempo) -> list:
	tempo = Fraction(tempo)
	filters = []
	while tempo > ATEMPO_MAX:
		filters.append(f"atempo={formatNumber(ATEMPO_MAX)}")
		tempo /= ATEMPO_MAX
	while tempo < ATEMPO_MIN:
		filters.append(f"atempo={formatNumber(ATEMPO_MIN)}")
		tempo /= ATEMPO_MIN
	if tempo != 1:
		filters.append(f"atempo={formatNumber(tempo)}")
	return filters

#============================================

def varispeedChain(tempo, sample_rate: int) -> list:
	tempo = Fraction(tempo)
	if tempo == 1:
		return []
	if sample_rate is None or sample_rate <= 0:
		sample_rate = DEFAULT_SAMPLE_RATE
	shifted_rate = int(round(sample_rate * tempo))
	return [f"asetrate={shifted_rate}", f"aresample={sample_rate}"]

#============================================

def streamLabel(kind: str, index: int, stream: int = 0) -> str:
	"""
	Label for clip index of a source stream; stream 0 keeps the short form.
	"""
	if stream == 0:
		return f"[{kind}{index}]"
	return f"[{kind}{index}_{stream}]"

#============================================

def videoClipFilter(clip, index: int, stream: int = 0) -> str:
	start = utils.format_seconds(clip.source_start)
	end = utils.format_seconds(clip.source_end)
	chain = f"[0:v:{stream}]trim=start={start}:end={end},"
	if clip.speed == 1:
		chain += "setpts=PTS-STARTPTS"
	else:
		chain += f"setpts=(PTS-STARTPTS)/{formatNumber(clip.speed)}"
	chain += streamLabel('v', index, stream)
	return chain

#============================================

def audioClipFilter(clip, index: int, directive, sample_rate: int,
	stream: int = 0) -> str:
	start = utils.format_seconds(clip.source_start)
	end = utils.format_seconds(clip.source_end)
	parts = [f"atrim=start={start}:end={end}", "asetpts=PTS-STARTPTS"]
	algorithm = 'spectral'
	gain = Fraction(1)
	if directive is not None:
		algorithm = directive.algorithm
		gain = directive.gain
	if algorithm == 'varispeed':
		parts.extend(varispeedChain(clip.speed, sample_rate))
	else:
		parts.extend(atempoChain(clip.speed))
	if gain != 1:
		parts.append(f"volume={formatNumber(gain)}")
	return f"[0:a:{stream}]{','.join(parts)}{streamLabel('a', index, stream)}"

#============================================

def selectStreams(timeline, output_format: str) -> tuple:
	if output_format not in OUTPUT_FORMATS:
		raise errors.InvalidParameters(
			f"output format must be one of {', '.join(OUTPUT_FORMATS)}"
		)
	use_video = timeline.has_video and output_format in ('video', 'both')
	use_audio = timeline.has_audio and output_format in ('audio', 'both')
	if output_format == 'video' and not timeline.has_video:
		raise errors.UnsupportedFormat("video output requested but the asset has no video track")
	if output_format == 'audio' and not timeline.has_audio:
		raise errors.UnsupportedFormat("audio output requested but the asset has no audio track")
	if not use_video and not use_audio:
		raise errors.UnsupportedFormat("asset has no usable tracks for this output")
	return (use_video, use_audio)

#============================================

def buildFilterGraph(timeline, plan, use_video: bool = True,
	use_audio: bool = True) -> tuple:
	"""
	Return (filter_complex, video_labels, audio_labels) for a composed timeline.

	Every carried source stream gets its own chain per clip and its own
	output label, video streams first.
	"""
	clips = timeline.clips
	if len(clips) == 0:
		raise errors.InvalidParameters("composed timeline has no clips")
	video_count = timeline.video_streams if use_video else 0
	audio_count = timeline.audio_streams if use_audio else 0
	chains = []
	for index, clip in enumerate(clips):
		for stream in range(video_count):
			chains.append(videoClipFilter(clip, index, stream))
		if audio_count > 0:
			directive = plan.directive_for(index)
			for stream in range(audio_count):
				chains.append(audioClipFilter(clip, index, directive,
					timeline.sample_rate, stream))
	if len(clips) == 1:
		video_labels = [streamLabel('v', 0, stream) for stream in range(video_count)]
		audio_labels = [streamLabel('a', 0, stream) for stream in range(audio_count)]
		return (";".join(chains), video_labels, audio_labels)
	inputs = ""
	for index in range(len(clips)):
		for stream in range(video_count):
			inputs += streamLabel('v', index, stream)
		for stream in range(audio_count):
			inputs += streamLabel('a', index, stream)
	video_labels = [_concatLabel('vout', stream) for stream in range(video_count)]
	audio_labels = [_concatLabel('aout', stream) for stream in range(audio_count)]
	outputs = "".join(video_labels + audio_labels)
	chains.append(
		f"{inputs}concat=n={len(clips)}:v={video_count}:a={audio_count}{outputs}"
	)
	return (";".join(chains), video_labels, audio_labels)

#============================================

def _concatLabel(name: str, stream: int) -> str:
	if stream == 0:
		return f"[{name}]"
	return f"[{name}{stream}]"

#============================================

def processComposition(source_file: str, out_file: str, timeline, plan,
	profile: dict, output_format: str = 'both', container: str = None) -> list:
	"""
	Build the ffmpeg argv that renders a composed timeline to out_file.
	"""
	(use_video, use_audio) = selectStreams(timeline, output_format)
	(graph, video_labels, audio_labels) = buildFilterGraph(timeline, plan,
		use_video, use_audio)
	cmd = [profile['ffmpeg'], "-y", "-hide_banner", "-nostdin",
		"-loglevel", "error", "-nostats", "-progress", "pipe:1"]
	cmd += ["-i", source_file]
	cmd += ["-filter_complex", graph]
	cmd += ["-sn", "-map_chapters", "-1"]
	if use_video:
		for label in video_labels:
			cmd += ["-map", label]
		cmd += ["-codec:v", profile['video_codec']]
		if profile.get('crf') is not None:
			cmd += ["-crf", str(profile['crf'])]
		if profile.get('preset'):
			cmd += ["-preset", profile['preset']]
		cmd += ["-pix_fmt", profile['pixel_format']]
		if timeline.frame_rate > 0:
			cmd += ["-r", formatRate(timeline.frame_rate)]
	else:
		cmd += ["-vn"]
	if use_audio:
		for label in audio_labels:
			cmd += ["-map", label]
		cmd += ["-codec:a", profile['audio_codec']]
		if timeline.sample_rate > 0:
			cmd += ["-ar", str(timeline.sample_rate)]
	else:
		cmd += ["-an"]
	if container is None:
		container = profile.get('container')
	if container:
		cmd += ["-f", container]
	cmd += [out_file]
	return cmd
