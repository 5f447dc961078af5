from __future__ import annotations

import asyncio
import contextlib
import logging
import os
import tempfile
from typing import List, Tuple

from memory_loop.domains.errors import TranscoderError
from memory_loop.interfaces.providers.audio import AudioTranscoder

logger = logging.getLogger(__name__)

# Formats the transcription endpoint accepts as uploaded files.
COMPATIBLE_FORMATS = ("wav", "mp3", "webm", "mp4", "m4a", "ogg")

TARGET_RATE_HZ = 16000


def detect_audio_format(audio_bytes: bytes) -> str:
    """Sniff the container/codec from the leading bytes."""
    head = audio_bytes[:16]
    if len(head) >= 12 and head[:4] == b"RIFF" and head[8:12] == b"WAVE":
        return "wav"
    if head[:4] == b"OggS":
        return "ogg"
    if head[:4] == b"\x1a\x45\xdf\xa3":
        return "webm"
    if len(head) >= 12 and head[4:8] == b"ftyp":
        brand = head[8:12]
        if brand.startswith(b"M4A") or brand.startswith(b"M4B"):
            return "m4a"
        return "mp4"
    if head[:3] == b"ID3":
        return "mp3"
    if len(head) >= 2 and head[0] == 0xFF and (head[1] & 0xE0) == 0xE0:
        return "mp3"
    return "unknown"


class FFmpegTranscoder(AudioTranscoder):
    """FFmpeg-based transcoder. Requires 'ffmpeg' binary in PATH.

    Audio already in a format the transcription model accepts is passed
    through untouched; anything else is decoded to mono 16 kHz WAV.
    """

    def __init__(self, binary: str = "ffmpeg", rate_hz: int = TARGET_RATE_HZ):
        self.binary = binary
        self.rate_hz = rate_hz

    async def _run_ffmpeg(self, args: List[str], data: bytes) -> bytes:
        logger.info("FFmpeg: starting process args=%s, input_len=%d", args, len(data))
        try:
            proc = await asyncio.create_subprocess_exec(
                self.binary,
                *args,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as e:
            logger.error("FFmpeg binary not found: %s", self.binary)
            raise TranscoderError(
                f"spawn {self.binary} ENOENT: ffmpeg is not installed"
            ) from e

        try:
            stdout, stderr = await proc.communicate(input=data)
        except asyncio.CancelledError:
            with contextlib.suppress(ProcessLookupError):
                proc.kill()
            raise

        if proc.returncode != 0:
            err = (stderr or b"").decode("utf-8", errors="ignore")
            logger.error("FFmpeg failed (code=%s): %s", proc.returncode, err[:2000])
            raise TranscoderError(f"ffmpeg exited with code {proc.returncode}")
        logger.info("FFmpeg: finished successfully, output_len=%d", len(stdout or b""))
        if stderr:
            logger.debug(
                "FFmpeg stderr: %s", stderr.decode("utf-8", errors="ignore")[:2000]
            )
        return stdout

    def detect_format(self, audio_bytes: bytes) -> str:
        return detect_audio_format(audio_bytes)

    async def ensure_compatible(self, audio_bytes: bytes) -> Tuple[bytes, str]:
        detected = self.detect_format(audio_bytes)
        if detected in COMPATIBLE_FORMATS:
            return audio_bytes, detected

        logger.info(
            "Transcode to WAV: detected=%s, rate_hz=%d, input_len=%d",
            detected,
            self.rate_hz,
            len(audio_bytes),
        )
        # Unknown containers often need a seekable input for reliable demuxing.
        tmp_path = None
        try:
            with tempfile.NamedTemporaryFile(delete=False, suffix=".bin") as tf:
                tmp_path = tf.name
                tf.write(audio_bytes)
            args = [
                "-hide_banner",
                "-loglevel",
                "error",
                "-i",
                tmp_path,
                "-vn",
                "-acodec",
                "pcm_s16le",
                "-ac",
                "1",
                "-ar",
                str(self.rate_hz),
                "-f",
                "wav",
                "pipe:1",
            ]
            out = await self._run_ffmpeg(args, b"")
            logger.info("Transcoded (temp-file) to WAV: output_len=%d", len(out))
            return out, "wav"
        finally:
            if tmp_path:
                with contextlib.suppress(OSError):
                    os.remove(tmp_path)
