from streams.encoder import build_command
from streams.jobs import EncodingParams

from .conftest import make_spec


def _after(cmd, flag):
    return cmd[cmd.index(flag) + 1]


class TestBuildCommand:
    def test_video_only_stream(self):
        spec = make_spec("abcd-1234", encoding=EncodingParams(bitrate=3000, fps=25, resolution="1920:1080"))
        cmd = build_command(spec, "/media/uploads/v.mp4", binary="/usr/bin/ffmpeg")

        assert cmd[0] == "/usr/bin/ffmpeg"
        assert cmd.count("-i") == 1
        assert _after(cmd, "-i") == "/media/uploads/v.mp4"
        assert "-stream_loop" not in cmd
        assert _after(cmd, "-r") == "25"
        assert _after(cmd, "-b:v") == "3000k"
        assert _after(cmd, "-maxrate") == "3000k"
        assert _after(cmd, "-bufsize") == "6000k"
        assert _after(cmd, "-vf") == "scale=1920:1080"
        assert cmd[-3:] == ["-f", "flv", "rtmp://live.example.com/app/abcd-1234"]
        # the video's own audio track, if it has one
        assert "0:a?" in cmd

    def test_looped_external_audio(self):
        spec = make_spec("k1", encoding=EncodingParams(bitrate=2500, loop=True, audio_enabled=True))
        cmd = build_command(spec, "v.mp4", "a.mp3")

        assert cmd.count("-stream_loop") == 2
        inputs = [cmd[i + 1] for i, arg in enumerate(cmd) if arg == "-i"]
        assert inputs == ["v.mp4", "a.mp3"]
        maps = [cmd[i + 1] for i, arg in enumerate(cmd) if arg == "-map"]
        assert maps == ["0:v:0", "1:a:0"]

    def test_audio_source_ignored_unless_enabled(self):
        spec = make_spec("k1", encoding=EncodingParams(bitrate=2500, audio_enabled=False))
        cmd = build_command(spec, "v.mp4", "a.mp3")
        assert "a.mp3" not in cmd

    def test_trailing_slash_in_target_base(self):
        spec = make_spec("k1", stream_url="rtmp://live.example.com/app/")
        assert build_command(spec, "v.mp4")[-1] == "rtmp://live.example.com/app/k1"
