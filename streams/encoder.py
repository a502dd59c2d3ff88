from typing import List, Optional

from .jobs import JobSpec

AUDIO_BITRATE = "128k"
AUDIO_SAMPLE_RATE = "44100"
KEYFRAME_INTERVAL = "60"


def _input_args(source: str, loop: bool) -> List[str]:
    args = ["-re"]                      # read at native frame rate
    if loop:
        args.extend(["-stream_loop", "-1"])
    args.extend(["-i", source])
    return args


def build_command(
    spec: JobSpec,
    video_source: str,
    audio_source: Optional[str] = None,
    binary: str = "ffmpeg",
) -> List[str]:
    """
    ffmpeg invocation pushing one job to its RTMP target as constant-bitrate FLV.

    Video always comes from input 0. Audio comes from input 1 when an external
    audio source is enabled and present, otherwise from input 0's own track if any.
    """
    enc = spec.encoding
    use_audio_input = bool(enc.audio_enabled and audio_source)

    cmd = [binary, "-hide_banner", "-nostdin", "-nostats"]
    cmd.extend(_input_args(video_source, enc.loop))
    if use_audio_input:
        cmd.extend(_input_args(audio_source, enc.loop))

    cmd.extend([
        "-r", str(enc.fps),
        "-threads", "2",
        "-x264-params", "nal-hrd=cbr",
        "-c:v", "libx264",
        "-preset", "veryfast",
        "-tune", "zerolatency",
        "-b:v", f"{enc.bitrate}k",
        "-maxrate", f"{enc.bitrate}k",
        "-bufsize", f"{enc.bitrate * 2}k",
        "-pix_fmt", "yuv420p",
        "-g", KEYFRAME_INTERVAL,
        "-vf", f"scale={enc.resolution}",
        "-c:a", "aac",
        "-b:a", AUDIO_BITRATE,
        "-ar", AUDIO_SAMPLE_RATE,
    ])

    if use_audio_input:
        cmd.extend(["-map", "0:v:0", "-map", "1:a:0"])
    else:
        cmd.extend(["-map", "0:v:0", "-map", "0:a?"])

    cmd.extend(["-f", "flv", spec.target])
    return cmd
