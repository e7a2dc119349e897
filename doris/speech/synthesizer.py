"""Text-to-speech adapters.

``ElevenLabsSynthesizer`` calls the ElevenLabs HTTP API with aiohttp.
``LocalCommandSynthesizer`` runs a local program (e.g. ``espeak-ng
--stdout``) that reads text on stdin and writes audio to stdout.
``FallbackSynthesizer`` tries several in order.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Protocol

import aiohttp

from doris.errors import SynthesisUnavailable

if TYPE_CHECKING:
    from collections.abc import Sequence

    from doris.config import Settings

logger = logging.getLogger(__name__)

ELEVENLABS_API_URL = "https://api.elevenlabs.io/v1/text-to-speech/{voice_id}"

# Tuned for a conversational, slightly expressive voice.
VOICE_SETTINGS = {
    "stability": 0.3,
    "similarity_boost": 0.7,
    "style": 0.5,
    "use_speaker_boost": True,
}


class SpeechSynthesizer(Protocol):
    async def synthesize(self, text: str) -> bytes:
        """Return encoded audio for *text* or raise ``SynthesisUnavailable``."""
        ...

    async def close(self) -> None: ...


class ElevenLabsSynthesizer:
    """ElevenLabs TTS client. Returns MP3 bytes."""

    def __init__(
        self,
        api_key: str,
        voice_id: str,
        *,
        model_id: str = "eleven_turbo_v2_5",
        timeout: float = 15.0,
    ) -> None:
        self.api_key = api_key
        self.voice_id = voice_id
        self.model_id = model_id
        self.timeout = timeout
        self._session: aiohttp.ClientSession | None = None

    def _get_session(self) -> aiohttp.ClientSession:
        """Return (and lazily create) the shared aiohttp session."""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                headers={"xi-api-key": self.api_key, "Accept": "audio/mpeg"},
                timeout=aiohttp.ClientTimeout(total=self.timeout),
            )
        return self._session

    async def synthesize(self, text: str) -> bytes:
        if not self.api_key:
            msg = "ElevenLabs is not configured (missing ELEVENLABS_API_KEY)"
            raise SynthesisUnavailable(msg)

        payload = {
            "text": text,
            "model_id": self.model_id,
            "voice_settings": VOICE_SETTINGS,
        }
        url = ELEVENLABS_API_URL.format(voice_id=self.voice_id)

        session = self._get_session()
        try:
            async with session.post(url, json=payload) as resp:
                if resp.status != 200:
                    body = await resp.text()
                    logger.error("TTS failed: status=%d body=%s", resp.status, body[:200])
                    msg = f"ElevenLabs returned {resp.status}"
                    raise SynthesisUnavailable(msg)
                audio = await resp.read()
        except (aiohttp.ClientError, TimeoutError) as exc:
            logger.error("TTS request failed: %s", exc)
            msg = f"ElevenLabs unreachable: {exc}"
            raise SynthesisUnavailable(msg) from exc

        logger.info("Synthesized %d chars into %d bytes of audio", len(text), len(audio))
        return audio

    async def close(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()


class LocalCommandSynthesizer:
    """Pipes text into a local TTS command and returns its stdout."""

    def __init__(self, command: Sequence[str], *, timeout: float = 15.0) -> None:
        self.command = list(command)
        self.timeout = timeout

    async def synthesize(self, text: str) -> bytes:
        if not self.command:
            msg = "No local TTS command configured"
            raise SynthesisUnavailable(msg)

        try:
            proc = await asyncio.create_subprocess_exec(
                *self.command,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            msg = f"Cannot run {self.command[0]}: {exc}"
            raise SynthesisUnavailable(msg) from exc

        try:
            stdout, stderr = await asyncio.wait_for(
                proc.communicate(text.encode("utf-8")), timeout=self.timeout
            )
        except TimeoutError as exc:
            proc.kill()
            await proc.wait()
            msg = f"{self.command[0]} timed out after {self.timeout:.0f}s"
            raise SynthesisUnavailable(msg) from exc

        if proc.returncode != 0 or not stdout:
            logger.error(
                "Local TTS exited with %s: %s",
                proc.returncode,
                stderr.decode("utf-8", "replace")[:200],
            )
            msg = f"{self.command[0]} exited with status {proc.returncode}"
            raise SynthesisUnavailable(msg)
        return stdout

    async def close(self) -> None:
        return None


class FallbackSynthesizer:
    """Tries each synthesizer in turn until one produces audio."""

    def __init__(self, synthesizers: Sequence[SpeechSynthesizer]) -> None:
        self.synthesizers = list(synthesizers)

    async def synthesize(self, text: str) -> bytes:
        errors: list[str] = []
        for synthesizer in self.synthesizers:
            try:
                return await synthesizer.synthesize(text)
            except SynthesisUnavailable as exc:
                logger.warning("%s failed: %s", type(synthesizer).__name__, exc.message)
                errors.append(exc.message)
        msg = "; ".join(errors) or "No speech synthesizer configured"
        raise SynthesisUnavailable(msg)

    async def close(self) -> None:
        for synthesizer in self.synthesizers:
            await synthesizer.close()


def build_synthesizer(settings: Settings) -> SpeechSynthesizer | None:
    """Wire whatever synthesis backends are configured, or None."""
    synthesizers: list[SpeechSynthesizer] = []
    if settings.elevenlabs_api_key:
        synthesizers.append(
            ElevenLabsSynthesizer(
                settings.elevenlabs_api_key,
                settings.elevenlabs_voice_id,
                model_id=settings.elevenlabs_model_id,
                timeout=settings.tts_timeout_seconds,
            )
        )
    command = settings.get_local_tts_command()
    if command:
        synthesizers.append(
            LocalCommandSynthesizer(command, timeout=settings.tts_timeout_seconds)
        )

    if not synthesizers:
        logger.info("Speech synthesis disabled (no backend configured)")
        return None
    if len(synthesizers) == 1:
        return synthesizers[0]
    return FallbackSynthesizer(synthesizers)
