"""
Voice Service.

Speech-to-text and text-to-speech through the Deepgram REST API, plus
validation of uploaded audio.

Errors follow one convention: any Deepgram failure, whether a non-2xx
status or a 200 payload without a usable result, raises UpstreamError.
"""

from typing import Mapping, Optional

import httpx
import structlog

from aiproxy.gateway.errors import UpstreamError, ValidationError
from aiproxy.schemas.voice import (
    TranscriptionOptions,
    TranscriptionResult,
    TranscriptionWord,
)

logger = structlog.get_logger(__name__)

PROVIDER = "deepgram"

DEFAULT_CONTENT_TYPE = "audio/wav"

CONTENT_TYPES = {
    "wav": "audio/wav",
    "mp3": "audio/mpeg",
    "flac": "audio/flac",
    "ogg": "audio/ogg",
    "webm": "audio/webm",
}

ACCEPTED_AUDIO_TYPES = frozenset({
    "audio/wav",
    "audio/x-wav",
    "audio/wave",
    "audio/mpeg",
    "audio/mp3",
    "audio/flac",
    "audio/ogg",
    "audio/webm",
    "audio/mp4",
})

MAX_AUDIO_BYTES = 10 * 1024 * 1024  # 10 MB


def get_content_type(audio_format: str) -> str:
    """MIME type for an audio format name, defaulting to WAV."""
    return CONTENT_TYPES.get(audio_format, DEFAULT_CONTENT_TYPE)


def validate_audio_input(
    content_type: Optional[str],
    audio: bytes,
    max_bytes: int = MAX_AUDIO_BYTES
) -> str:
    """
    Check an uploaded audio payload.

    Returns:
        The bare MIME type (parameters stripped)

    Raises:
        ValidationError: On a non-audio type, an empty body or an oversized body
    """
    mime = (content_type or "").split(";", 1)[0].strip().lower()
    if mime not in ACCEPTED_AUDIO_TYPES:
        raise ValidationError(f"Invalid content type: {content_type or 'missing'}")

    if not audio:
        raise ValidationError("Empty audio file")

    if len(audio) > max_bytes:
        raise ValidationError(
            f"Audio file too large: {len(audio)} bytes (max {max_bytes})"
        )

    return mime


def check_declared_size(content_length: Optional[str], max_bytes: int = MAX_AUDIO_BYTES) -> None:
    """Reject an upload whose Content-Length already exceeds the limit."""
    if not content_length or not content_length.strip().isdigit():
        return

    declared = int(content_length)
    if declared > max_bytes:
        raise ValidationError(
            f"Audio file too large: {declared} bytes (max {max_bytes})"
        )


class DeepgramClient:
    """
    Thin async client for the Deepgram pre-recorded and speak APIs.

    Usage:
        client = DeepgramClient(http_client, api_key)
        result = await client.transcribe(audio, "audio/wav")
        speech = await client.text_to_speech("Hello")
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        api_key: str,
        base_url: str = "https://api.deepgram.com",
        default_model: str = "nova-3",
        default_voice: str = "aura-asteria-en"
    ):
        self.client = client
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.default_model = default_model
        self.default_voice = default_voice

    @classmethod
    def from_settings(cls, deepgram_settings, client: httpx.AsyncClient) -> "DeepgramClient":
        return cls(
            client,
            deepgram_settings.api_key,
            base_url=deepgram_settings.base_url,
            default_model=deepgram_settings.transcription_model,
            default_voice=deepgram_settings.tts_voice,
        )

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    def _headers(self, content_type: str) -> Mapping[str, str]:
        return {
            "Authorization": f"Token {self.api_key}",
            "Content-Type": content_type,
        }

    def _require_configured(self) -> None:
        if not self.configured:
            raise ValidationError(
                "Provider 'deepgram' is not configured",
                details={"provider": PROVIDER},
            )

    async def _post(self, url: str, **kwargs) -> httpx.Response:
        try:
            response = await self.client.post(url, **kwargs)
        except httpx.HTTPError as e:
            logger.error("Deepgram request failed", url=url, error=str(e))
            raise UpstreamError(f"deepgram request failed: {e}", provider=PROVIDER) from e

        if response.status_code >= 400:
            logger.warning("Deepgram returned error status", status_code=response.status_code)
            raise UpstreamError(
                response.text or response.reason_phrase or "Unknown error",
                status_code=response.status_code,
                provider=PROVIDER,
                body=response.text,
            )
        return response

    async def transcribe(
        self,
        audio: bytes,
        content_type: str,
        options: Optional[TranscriptionOptions] = None
    ) -> TranscriptionResult:
        """
        Transcribe a pre-recorded audio payload.

        Raises:
            UpstreamError: If Deepgram fails or returns no transcript
        """
        self._require_configured()
        options = options or TranscriptionOptions()

        params = [
            ("model", options.model or self.default_model),
            ("smart_format", str(options.smart_format).lower()),
            ("diarize", str(options.diarize).lower()),
        ]
        if len(options.languages) == 1:
            params.append(("language", options.languages[0]))
        elif options.languages:
            # Code switching across several languages
            params.append(("language", "multi"))

        response = await self._post(
            f"{self.base_url}/v1/listen",
            params=params,
            headers=self._headers(content_type),
            content=audio,
        )

        try:
            payload = response.json()
        except ValueError as e:
            raise UpstreamError(f"Deepgram transcription error: {e}", provider=PROVIDER) from e

        return self._parse_transcription(payload)

    @staticmethod
    def _parse_transcription(payload) -> TranscriptionResult:
        if not isinstance(payload, dict):
            raise UpstreamError("Deepgram transcription error: unexpected payload", provider=PROVIDER)

        if payload.get("error") or payload.get("err_msg"):
            message = payload.get("err_msg") or payload.get("error")
            if isinstance(message, dict):
                message = message.get("message", "unknown error")
            raise UpstreamError(f"Deepgram transcription error: {message}", provider=PROVIDER)

        channels = (payload.get("results") or {}).get("channels") or []
        if not channels or not channels[0].get("alternatives"):
            raise UpstreamError("Deepgram transcription error: no results", provider=PROVIDER)

        channel = channels[0]
        alternative = channel["alternatives"][0]

        return TranscriptionResult(
            text=alternative.get("transcript", ""),
            confidence=alternative.get("confidence", 0.0),
            language=channel.get("detected_language"),
            words=[TranscriptionWord.model_validate(word) for word in alternative.get("words") or []],
        )

    async def text_to_speech(self, text: str, voice: Optional[str] = None) -> bytes:
        """
        Synthesize speech as WAV audio.

        Raises:
            ValidationError: If the text is empty
            UpstreamError: If Deepgram fails
        """
        if not text or not text.strip():
            raise ValidationError("Text is required")
        self._require_configured()

        response = await self._post(
            f"{self.base_url}/v1/speak",
            params={"model": voice or self.default_voice, "encoding": "linear16", "container": "wav"},
            headers=self._headers("application/json"),
            json={"text": text},
        )
        return response.content
