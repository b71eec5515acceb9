"""Microphone capture and speaker playback through ALSA/PipeWire/Pulse command-line tools."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import math
import os
import shutil
import sys
from array import array
from asyncio.subprocess import Process

LOGGER = logging.getLogger("jarvoice-assistant.audio")

PLAYER_CANDIDATES = ("pw-play", "paplay", "aplay")

# Sample width in bytes -> format flag understood by each player.
_PLAYER_FORMATS: dict[str, dict[int, str]] = {
    "pw-play": {1: "s8", 2: "s16", 4: "s32"},
    "paplay": {1: "s8", 2: "s16le", 3: "s24le", 4: "s32le"},
    "aplay": {1: "U8", 2: "S16_LE", 3: "S24_LE", 4: "S32_LE"},
}
_ARRAY_TYPECODES = {1: "b", 2: "h", 4: "i"}
_PROCESS_EXIT_TIMEOUT = 2.0


def _samples(chunk: bytes, sample_width: int) -> array | None:
    typecode = _ARRAY_TYPECODES.get(sample_width)
    if typecode is None:
        return None
    usable = len(chunk) - len(chunk) % sample_width
    samples = array(typecode)
    samples.frombytes(chunk[:usable])
    if sample_width > 1 and sys.byteorder != "little":
        samples.byteswap()
    return samples


def compute_rms(chunk: bytes, sample_width: int) -> int:
    """Loudness of a little-endian PCM chunk; 0 for empty input or unsupported widths."""
    samples = _samples(chunk, sample_width) if chunk else None
    if not samples:
        return 0
    return int(math.sqrt(math.fsum(value * value for value in samples) / len(samples)))


def scale_volume(chunk: bytes, sample_width: int, volume: float) -> bytes:
    """Attenuate 16/32-bit PCM by ``volume`` (clamped to 0.0-1.0)."""
    volume = max(0.0, min(1.0, volume))
    if volume >= 1.0 or not chunk or sample_width not in (2, 4):
        return chunk
    samples = _samples(chunk, sample_width)
    if samples is None:
        return chunk
    scaled = array(samples.typecode, (int(value * volume) for value in samples))
    if sys.byteorder != "little":
        scaled.byteswap()
    return scaled.tobytes() + chunk[len(scaled) * sample_width :]


def player_command(player: str, rate: int, width: int, channels: int) -> list[str]:
    """Command line that plays raw PCM from stdin; raises ValueError for unsupported widths."""
    formats = _PLAYER_FORMATS.get(player, _PLAYER_FORMATS["aplay"])
    fmt = formats.get(width)
    if fmt is None:
        raise ValueError(f"{player} cannot play {width * 8}-bit samples")
    if player == "pw-play":
        return [player, "--raw", "--rate", str(rate), "--channels", str(channels), "--format", fmt, "-"]
    if player == "paplay":
        return [player, "--raw", f"--rate={rate}", f"--channels={channels}", f"--format={fmt}", "-"]
    return ["aplay", "-q", "-t", "raw", "-f", fmt, "-c", str(channels), "-r", str(rate), "-"]


def _binary_available(binary: str) -> bool:
    if os.path.isabs(binary):
        return os.access(binary, os.X_OK)
    return shutil.which(binary) is not None


def _determine_player(preferred: str, logger: logging.Logger) -> str:
    if preferred != "auto":
        if _binary_available(preferred):
            return preferred
        logger.warning("Audio player '%s' not found; detecting one instead", preferred)
    return next((candidate for candidate in PLAYER_CANDIDATES if _binary_available(candidate)), "aplay")


async def _reap(proc: Process, *, kill: bool = False) -> None:
    if proc.returncode is None:
        with contextlib.suppress(ProcessLookupError):
            if kill:
                proc.kill()
            else:
                proc.terminate()
    with contextlib.suppress(TimeoutError):
        await asyncio.wait_for(proc.wait(), timeout=_PROCESS_EXIT_TIMEOUT)


class ArecordStream:
    """Reads fixed-size PCM chunks from a capture command such as ``arecord``."""

    def __init__(
        self,
        command: list[str],
        bytes_per_chunk: int,
        logger: logging.Logger | None = None,
    ) -> None:
        self.command = command
        self.bytes_per_chunk = bytes_per_chunk
        self._proc: Process | None = None
        self._logger = logger or LOGGER

    @property
    def available(self) -> bool:
        return bool(self.command) and _binary_available(self.command[0])

    async def start(self) -> None:
        if self._proc is not None:
            return
        self._logger.debug("[audio] Microphone command: %s", " ".join(self.command))
        self._proc = await asyncio.create_subprocess_exec(
            *self.command,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )

    async def read_chunk(self) -> bytes:
        proc = self._proc
        if proc is None or proc.stdout is None:
            raise RuntimeError("Microphone stream is not running")
        try:
            return await proc.stdout.readexactly(self.bytes_per_chunk)
        except asyncio.IncompleteReadError as exc:
            detail = ""
            if proc.stderr is not None:
                detail = (await proc.stderr.read()).decode("utf-8", errors="ignore").strip()
            suffix = f" ({detail})" if detail else ""
            raise RuntimeError(f"Microphone stream ended unexpectedly{suffix}") from exc

    async def stop(self) -> None:
        proc, self._proc = self._proc, None
        if proc is not None:
            await _reap(proc)


class AplaySink:
    """Feeds PCM to the first available player; ``JARVOICE_AUDIO_PLAYER`` pins one."""

    def __init__(self, binary: str | None = None, logger: logging.Logger | None = None) -> None:
        self.binary = binary or os.environ.get("JARVOICE_AUDIO_PLAYER") or "auto"
        self._proc: Process | None = None
        self._logger = logger or LOGGER

    @property
    def available(self) -> bool:
        candidates = PLAYER_CANDIDATES if self.binary == "auto" else (self.binary,)
        return any(_binary_available(candidate) for candidate in candidates)

    async def start(self, rate: int, width: int, channels: int) -> None:
        await self.stop()
        player = _determine_player(self.binary, self._logger)
        try:
            cmd = player_command(player, rate, width, channels)
        except ValueError as exc:
            if player == "aplay":
                raise RuntimeError(str(exc)) from exc
            self._logger.warning("[audio] %s; using aplay", exc)
            cmd = player_command("aplay", rate, width, channels)
        self._logger.debug("[audio] Playback command: %s", " ".join(cmd))
        self._proc = await asyncio.create_subprocess_exec(
            *cmd,
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.PIPE,
        )

    async def write(self, chunk: bytes) -> None:
        proc = self._proc
        if proc is None or proc.stdin is None:
            raise RuntimeError("Playback is not active")
        try:
            proc.stdin.write(chunk)
            await proc.stdin.drain()
        except (BrokenPipeError, ConnectionResetError) as exc:
            await self.stop()
            raise RuntimeError("Playback process exited unexpectedly") from exc

    async def stop(self) -> None:
        """Close stdin and let the player drain what it already received."""
        proc, self._proc = self._proc, None
        if proc is None:
            return
        if proc.stdin is not None:
            proc.stdin.close()
            with contextlib.suppress(BrokenPipeError, ConnectionResetError):
                await proc.stdin.wait_closed()
        try:
            await asyncio.wait_for(proc.wait(), timeout=_PROCESS_EXIT_TIMEOUT)
        except TimeoutError:
            self._logger.debug("[audio] Player did not exit after draining; killing it")
            await _reap(proc, kill=True)

    async def kill(self) -> None:
        """Stop immediately, discarding buffered audio."""
        proc, self._proc = self._proc, None
        if proc is not None:
            await _reap(proc, kill=True)
