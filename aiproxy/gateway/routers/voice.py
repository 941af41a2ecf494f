"""
Voice Router.

Audio endpoints backed by Deepgram, optionally chained with a chat
completion from the LLM gateway.

Endpoints:
- POST /v1/listen - Transcribe an audio upload
- POST /v1/voice/transcribe - Transcribe an audio upload
- POST /v1/voice/query - Transcribe, then answer with a chat model
- POST /v1/text-to-speech - Synthesize speech from text
- POST /v1/voice/chat - Transcribe, answer, and speak the answer
"""

from typing import List, Optional
from urllib.parse import quote

import pydantic
import structlog
from fastapi import APIRouter, Query, Request, Response

from aiproxy.gateway.adapters import get_adapter, resolve_provider
from aiproxy.gateway.dependencies import (
    AdaptersDep,
    AdmittedDep,
    DeepgramDep,
    SettingsDep,
    read_json_body,
)
from aiproxy.gateway.errors import UpstreamError, ValidationError
from aiproxy.gateway.services.voice import DEFAULT_CONTENT_TYPE, check_declared_size, validate_audio_input
from aiproxy.schemas.chat import CompletionRequest, Message, Role
from aiproxy.schemas.voice import (
    TextToSpeechRequest,
    TranscriptionOptions,
    TranscriptionResult,
    VoiceQueryResponse,
)

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/v1", tags=["voice"])

DEFAULT_VOICE_MODEL = "gpt-4o"
DEFAULT_VOICE_SYSTEM_PROMPT = (
    "You are a helpful voice assistant. Answer briefly in plain spoken language."
)


def _split_languages(languages: Optional[str]) -> List[str]:
    if not languages:
        return []
    return [language.strip() for language in languages.split(",") if language.strip()]


async def _transcribe_upload(
    request: Request,
    settings,
    deepgram,
    model: Optional[str],
    languages: Optional[str],
    diarize: bool
) -> TranscriptionResult:
    check_declared_size(request.headers.get("content-length"), settings.deepgram.max_audio_bytes)
    audio = await request.body()
    content_type = validate_audio_input(
        request.headers.get("content-type"),
        audio,
        max_bytes=settings.deepgram.max_audio_bytes,
    )
    options = TranscriptionOptions(
        model=model,
        languages=_split_languages(languages),
        diarize=diarize,
    )
    result = await deepgram.transcribe(audio, content_type, options)
    logger.info(
        "Audio transcribed",
        audio_bytes=len(audio),
        language=result.language,
        confidence=result.confidence,
    )
    return result


async def _answer(adapters, model: str, transcription: str, system_prompt: str):
    completion_request = CompletionRequest(
        model=model,
        messages=[
            Message(role=Role.SYSTEM, content=system_prompt),
            Message(role=Role.USER, content=transcription),
        ],
    )
    adapter = get_adapter(adapters, model)
    return await adapter.complete(completion_request)


@router.post("/listen", response_model=TranscriptionResult)
async def listen(
    request: Request,
    settings: SettingsDep,
    deepgram: DeepgramDep,
    _admitted: AdmittedDep,
    model: Optional[str] = Query(None),
    languages: Optional[str] = Query(None),
    diarize: bool = Query(False)
):
    """Transcribe a pre-recorded audio upload."""
    return await _transcribe_upload(request, settings, deepgram, model, languages, diarize)


@router.post("/voice/transcribe", response_model=TranscriptionResult)
async def voice_transcribe(
    request: Request,
    settings: SettingsDep,
    deepgram: DeepgramDep,
    _admitted: AdmittedDep,
    model: Optional[str] = Query(None),
    languages: Optional[str] = Query(None),
    diarize: bool = Query(False)
):
    """Transcribe an audio upload."""
    return await _transcribe_upload(request, settings, deepgram, model, languages, diarize)


@router.post("/voice/query", response_model=VoiceQueryResponse)
async def voice_query(
    request: Request,
    settings: SettingsDep,
    adapters: AdaptersDep,
    deepgram: DeepgramDep,
    _admitted: AdmittedDep,
    model: str = Query(DEFAULT_VOICE_MODEL),
    languages: Optional[str] = Query(None),
    system_prompt: str = Query(DEFAULT_VOICE_SYSTEM_PROMPT)
):
    """Transcribe an audio question and answer it with a chat model."""
    transcription = await _transcribe_upload(request, settings, deepgram, None, languages, False)
    if not transcription.text.strip():
        raise ValidationError("No speech detected in audio")

    response = await _answer(adapters, model, transcription.text, system_prompt)
    return VoiceQueryResponse(transcription=transcription.text, response=response)


@router.post("/text-to-speech")
async def text_to_speech(
    request: Request,
    deepgram: DeepgramDep,
    _admitted: AdmittedDep
):
    """Synthesize speech from text. Body: {"text": ..., "voice": ...}."""
    body = await read_json_body(request)
    try:
        tts_request = TextToSpeechRequest.model_validate(body)
    except pydantic.ValidationError as e:
        raise ValidationError("Text is required") from e

    audio = await deepgram.text_to_speech(tts_request.text, tts_request.voice)
    return Response(content=audio, media_type=DEFAULT_CONTENT_TYPE)


@router.post("/voice/chat")
async def voice_chat(
    request: Request,
    settings: SettingsDep,
    adapters: AdaptersDep,
    deepgram: DeepgramDep,
    _admitted: AdmittedDep,
    model: str = Query(DEFAULT_VOICE_MODEL),
    voice: Optional[str] = Query(None),
    languages: Optional[str] = Query(None),
    system_prompt: str = Query(DEFAULT_VOICE_SYSTEM_PROMPT)
):
    """
    Voice conversation turn.

    Transcribes the uploaded audio, answers with a chat model and returns
    the answer as speech. The transcription is echoed in X-Transcription.
    """
    transcription = await _transcribe_upload(request, settings, deepgram, None, languages, False)
    if not transcription.text.strip():
        raise ValidationError("No speech detected in audio")

    response = await _answer(adapters, model, transcription.text, system_prompt)
    reply = response.content or ""
    if not reply.strip():
        raise UpstreamError("Model returned no text to speak", provider=resolve_provider(model).value)

    audio = await deepgram.text_to_speech(reply, voice)
    return Response(
        content=audio,
        media_type=DEFAULT_CONTENT_TYPE,
        headers={
            "X-Transcription": quote(transcription.text),
            "X-Response-Text": quote(reply),
        },
    )
