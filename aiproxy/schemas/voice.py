"""
Pydantic schemas for the voice endpoints.
"""

from typing import List, Optional

from pydantic import BaseModel, Field

from aiproxy.schemas.chat import CompletionResponse


class TranscriptionWord(BaseModel):
    word: str
    start: float = 0.0
    end: float = 0.0
    confidence: float = 0.0
    speaker: Optional[int] = None


class TranscriptionOptions(BaseModel):
    """Options forwarded to the transcription backend."""
    model: Optional[str] = None
    languages: List[str] = Field(default_factory=list)
    diarize: bool = False
    smart_format: bool = True


class TranscriptionResult(BaseModel):
    text: str
    confidence: float = 0.0
    language: Optional[str] = None
    words: List[TranscriptionWord] = Field(default_factory=list)


class TextToSpeechRequest(BaseModel):
    text: str = Field(min_length=1)
    voice: Optional[str] = None


class VoiceQueryResponse(BaseModel):
    transcription: str
    response: CompletionResponse
