import os, httpx, logging
from typing import Optional
from .errors import GatewayFailure
from .settings import ELEVENLABS_MODEL_ID, NARRATION_OUTPUT_FORMAT, NARRATION_TIMEOUT_S

logger = logging.getLogger(__name__)

def _voice_id() -> str:
    vid = os.getenv("ELEVENLABS_VOICE_ID", "")
    if not vid:
        raise RuntimeError("ELEVENLABS_VOICE_ID is not set; please configure your .env")
    return vid

def _headers():
    api_key = os.getenv("ELEVENLABS_API_KEY", "")
    if not api_key:
        raise RuntimeError("ELEVENLABS_API_KEY is not set; please configure your .env")
    return {
        "xi-api-key": api_key,
        "Content-Type": "application/json",
        "Accept": "audio/mpeg",
    }

async def tts_to_bytes(text: str, transport: Optional[httpx.AsyncBaseTransport] = None) -> Optional[bytes]:
    """Narrate ``text``; returns None when the service answers with no audio."""
    payload = {
        "text": text,
        "model_id": ELEVENLABS_MODEL_ID,
        # expressive, atmospheric read
        "voice_settings": {"stability": 0.35, "similarity_boost": 0.75, "style": 0.45},
    }
    try:
        url = f"https://api.elevenlabs.io/v1/text-to-speech/{_voice_id()}"
        async with httpx.AsyncClient(timeout=NARRATION_TIMEOUT_S, transport=transport) as client:
            logger.info(f"Requesting narration from ElevenLabs ({len(text)} chars)")
            r = await client.post(
                url,
                headers=_headers(),
                params={"output_format": NARRATION_OUTPUT_FORMAT},
                json=payload,
            )
            r.raise_for_status()
    except (httpx.HTTPError, RuntimeError) as e:
        logger.error(f"ElevenLabs narration failed: {str(e)}")
        raise GatewayFailure(str(e)) from e

    if not r.content:
        logger.warning("ElevenLabs returned an empty audio body")
        return None
    logger.info(f"Narration received: {len(r.content)} bytes")
    return r.content
