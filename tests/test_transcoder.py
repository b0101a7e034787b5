import asyncio

import pytest

from lecture_pipeline.audio import transcoder as transcoder_module
from lecture_pipeline.audio.transcoder import EncodingParams, FFmpegTranscoder
from lecture_pipeline.config import Settings
from lecture_pipeline.errors import TranscoderError


class FakeProcess:
    def __init__(self, returncode, stderr=b"", on_run=None):
        self.returncode = returncode
        self._stderr = stderr
        self._on_run = on_run

    async def communicate(self):
        if self._on_run is not None:
            self._on_run()
        return b"", self._stderr


def _patch_exec(monkeypatch, process):
    calls = []

    async def fake_exec(*cmd, **kwargs):
        calls.append(list(cmd))
        return process

    monkeypatch.setattr(transcoder_module.asyncio, "create_subprocess_exec", fake_exec)
    return calls


def test_build_command_for_middle_segment(tmp_path):
    ffmpeg = FFmpegTranscoder(binary="ffmpeg", settings=Settings())
    cmd = ffmpeg.build_command(tmp_path / "aula.mp3", tmp_path / "chunk_2.mp3", start=600, duration=600)

    assert cmd[:5] == ["ffmpeg", "-y", "-hide_banner", "-loglevel", "error"]
    # seek before -i, length after it
    assert cmd.index("-ss") < cmd.index("-i") < cmd.index("-t")
    assert cmd[cmd.index("-ss") + 1] == "600.000"
    assert cmd[cmd.index("-i") + 1] == str(tmp_path / "aula.mp3")
    assert cmd[cmd.index("-t") + 1] == "600.000"
    assert cmd[cmd.index("-acodec") + 1] == "libmp3lame"
    assert cmd[cmd.index("-ab") + 1] == "128k"
    assert cmd[cmd.index("-ac") + 1] == "1"
    assert cmd[cmd.index("-ar") + 1] == "22050"
    assert cmd[cmd.index("-preset") + 1] == "fast"
    assert cmd[cmd.index("-threads") + 1] == "2"
    assert cmd[-3:] == ["-avoid_negative_ts", "make_zero", str(tmp_path / "chunk_2.mp3")]


def test_build_command_first_segment_and_repair_omit_seek_and_length(tmp_path):
    ffmpeg = FFmpegTranscoder(binary="ffmpeg", settings=Settings())
    first = ffmpeg.build_command(tmp_path / "aula.mp3", tmp_path / "chunk_1.mp3", start=0, duration=600)
    assert "-ss" not in first
    assert "-t" in first

    repair = ffmpeg.build_command(tmp_path / "chunk_1.mp3", tmp_path / "chunk_1_repaired.mp3")
    assert "-ss" not in repair
    assert "-t" not in repair


def test_build_command_uses_given_params(tmp_path):
    ffmpeg = FFmpegTranscoder(binary="/opt/ffmpeg", settings=Settings())
    params = EncodingParams(bitrate="64k", frequency=16000)
    cmd = ffmpeg.build_command(tmp_path / "in.wav", tmp_path / "out.mp3", params=params)
    assert cmd[0] == "/opt/ffmpeg"
    assert cmd[cmd.index("-ab") + 1] == "64k"
    assert cmd[cmd.index("-ar") + 1] == "16000"


def test_transcode_nonzero_exit_raises(tmp_path, monkeypatch):
    calls = _patch_exec(monkeypatch, FakeProcess(1, stderr=b"Invalid data found when processing input"))
    ffmpeg = FFmpegTranscoder(binary="ffmpeg", settings=Settings())

    with pytest.raises(TranscoderError) as exc:
        asyncio.run(ffmpeg.transcode(tmp_path / "aula.mp3", tmp_path / "chunk_1.mp3", duration=600))
    assert "exited with 1" in str(exc.value)
    assert "Invalid data" in str(exc.value)
    assert calls[0][0] == "ffmpeg"


def test_transcode_without_output_file_raises(tmp_path, monkeypatch):
    _patch_exec(monkeypatch, FakeProcess(0))
    ffmpeg = FFmpegTranscoder(binary="ffmpeg", settings=Settings())

    with pytest.raises(TranscoderError) as exc:
        asyncio.run(ffmpeg.transcode(tmp_path / "aula.mp3", tmp_path / "chunk_1.mp3"))
    assert "no output" in str(exc.value)


def test_transcode_returns_output_path(tmp_path, monkeypatch):
    output = tmp_path / "chunk_1.mp3"
    _patch_exec(monkeypatch, FakeProcess(0, on_run=lambda: output.write_bytes(b"\xff" * 2048)))
    ffmpeg = FFmpegTranscoder(binary="ffmpeg", settings=Settings())

    assert asyncio.run(ffmpeg.transcode(tmp_path / "aula.mp3", output, duration=600)) == output


def test_transcode_missing_binary_raises(tmp_path, monkeypatch):
    async def missing(*cmd, **kwargs):
        raise FileNotFoundError("ffmpeg")

    monkeypatch.setattr(transcoder_module.asyncio, "create_subprocess_exec", missing)
    ffmpeg = FFmpegTranscoder(binary="ffmpeg", settings=Settings())
    with pytest.raises(TranscoderError):
        asyncio.run(ffmpeg.transcode(tmp_path / "aula.mp3", tmp_path / "chunk_1.mp3"))
