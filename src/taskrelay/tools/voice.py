"""Text-to-speech tool backed by the ElevenLabs API."""

import logging
import time
from pathlib import Path
from typing import (
    Any,
    Dict,
    Optional,
)

import httpx
from pydantic import (
    BaseModel,
    Field,
)

from taskrelay.config import settings
from taskrelay.core.protocol import emit_file
from taskrelay.tools import (
    ToolOptions,
    register_tool,
)

logger = logging.getLogger(__name__)

AUDIO_URL_PREFIX = "/tmp"
ELEVENLABS_TTS_URL = "https://api.elevenlabs.io/v1/text-to-speech/{voice_id}"


class VoiceArgs(BaseModel):
    """Arguments of ``generate_voice``."""

    script: str = Field(..., description="Podcast script text to convert to speech")
    voice: Optional[str] = Field(None, description="Voice ID to use (default: configured voice)")


class AudioResult(BaseModel):
    """Where the synthesized audio ended up."""

    file_path: Optional[str] = None
    url_path: str = ""
    message: str


def audio_dir() -> Path:
    """Directory that generated audio is written to (served under ``/tmp``)."""
    return Path(settings.DATA_DIR) / "tmp"


async def synthesize_speech(script: str, voice_id: str | None = None) -> AudioResult:
    """
    Render *script* to an mp3 file.

    Raises
    ------
    RuntimeError
        If the TTS endpoint answers with an error status.
    """
    if not settings.ELEVENLABS_API_KEY:
        logger.warning("[voice] Missing ELEVENLABS_API_KEY - returning mock audio")
        return AudioResult(message="Mock audio (no key set)")

    out_dir = audio_dir()
    out_dir.mkdir(parents=True, exist_ok=True)
    filename = f"podcast_{int(time.time() * 1000)}.mp3"

    async with httpx.AsyncClient(timeout=120.0) as client:
        resp = await client.post(
            ELEVENLABS_TTS_URL.format(voice_id=voice_id or settings.ELEVENLABS_VOICE_ID),
            headers={"xi-api-key": settings.ELEVENLABS_API_KEY, "Content-Type": "application/json"},
            json={
                "text": script,
                "voice_settings": {"stability": 0.4, "similarity_boost": 0.9},
                "model_id": settings.ELEVENLABS_MODEL,
            },
        )
    if resp.is_error:
        raise RuntimeError(f"ElevenLabs TTS failed: {resp.text}")

    output_file = out_dir / filename
    output_file.write_bytes(resp.content)
    logger.info("Wrote %d bytes of audio to %s", len(resp.content), output_file)
    return AudioResult(
        file_path=str(output_file),
        url_path=f"{AUDIO_URL_PREFIX}/{filename}",
        message="Audio generated successfully",
    )


@register_tool("generate_voice", VoiceArgs)
async def generate_voice(args: VoiceArgs, options: ToolOptions) -> Dict[str, Any]:
    """Converts the podcast script into spoken audio using ElevenLabs text-to-speech."""
    options.emit("[VOICE] Generating podcast audio...")
    result = await synthesize_speech(args.script, voice_id=args.voice)

    if result.url_path:
        emit_file(options.emit, "generate_voice", "podcast_audio.mp3", result.url_path)

    # The URL reaches the UI only through the FILE line.
    return {"success": True, "message": result.message, "filename": "podcast_audio.mp3"}
