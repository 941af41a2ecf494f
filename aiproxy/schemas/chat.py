"""
Pydantic schemas for the canonical chat completion API.

These are the provider-agnostic (OpenAI-shaped) request/response models.
Every upstream adapter translates to and from these shapes.
"""

import mimetypes
import time
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator


DEFAULT_IMAGE_MIME_TYPE = "image/jpeg"


class Role(str, Enum):
    """Canonical message roles."""

    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


class Provider(str, Enum):
    """Upstream provider families."""

    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    GEMINI = "google"


# ============== Content Blocks ==============

class TextBlock(BaseModel):
    """Plain text content block."""
    type: Literal["text"] = "text"
    text: str


class ImageSource(BaseModel):
    """Image location: a data URI or a remote URL."""
    url: str


class ImageBlock(BaseModel):
    """Image content block."""
    type: Literal["image"] = "image"
    image: ImageSource

    @property
    def url(self) -> str:
        return self.image.url

    @property
    def is_data_uri(self) -> bool:
        return self.image.url.startswith("data:")

    @property
    def mime_type(self) -> str:
        """MIME type from the data-URI prefix, else guessed from the URL."""
        if self.is_data_uri:
            header = self.image.url[5:].split(",", 1)[0]
            mime = header.split(";", 1)[0].strip()
            return mime or DEFAULT_IMAGE_MIME_TYPE
        guessed, _ = mimetypes.guess_type(self.image.url.split("?", 1)[0])
        return guessed or DEFAULT_IMAGE_MIME_TYPE

    @property
    def data(self) -> str:
        """Payload of a data URI (base64 text without the prefix)."""
        if not self.is_data_uri:
            return ""
        return self.image.url.split(",", 1)[1] if "," in self.image.url else ""


ContentBlock = Annotated[Union[TextBlock, ImageBlock], Field(discriminator="type")]


# ============== Tools ==============

class ToolFunction(BaseModel):
    """Function signature exposed to the model."""
    name: str
    description: Optional[str] = None
    parameters: Dict[str, Any] = Field(
        default_factory=lambda: {"type": "object", "properties": {}}
    )


class ToolDefinition(BaseModel):
    """Tool definition in OpenAI wire form."""
    type: Literal["function"] = "function"
    function: ToolFunction


class ToolCallFunction(BaseModel):
    name: str
    arguments: str = "{}"


class ToolCall(BaseModel):
    """A tool invocation requested by the model."""
    id: str
    type: Literal["function"] = "function"
    function: ToolCallFunction


# ============== Request ==============

class Message(BaseModel):
    """A single conversation turn."""

    model_config = ConfigDict(frozen=True)

    role: Role
    content: Union[str, List[ContentBlock]] = ""
    name: Optional[str] = None
    tool_call_id: Optional[str] = None
    tool_calls: Optional[List[ToolCall]] = None

    @field_validator("content", mode="before")
    @classmethod
    def normalize_content(cls, value: Any) -> Any:
        """Accept null content and OpenAI-style image_url parts."""
        if value is None:
            return ""
        if not isinstance(value, list):
            return value

        blocks = []
        for item in value:
            if isinstance(item, dict) and item.get("type") == "image_url":
                image_url = item.get("image_url")
                url = image_url.get("url") if isinstance(image_url, dict) else image_url
                blocks.append({"type": "image", "image": {"url": url}})
            else:
                blocks.append(item)
        return blocks

    def blocks(self) -> List[Union[TextBlock, ImageBlock]]:
        """Content as an ordered list of blocks."""
        if isinstance(self.content, str):
            return [TextBlock(text=self.content)] if self.content else []
        return list(self.content)

    @property
    def text(self) -> str:
        """All text blocks joined, images skipped."""
        if isinstance(self.content, str):
            return self.content
        return "\n".join(b.text for b in self.content if isinstance(b, TextBlock))

    @property
    def has_images(self) -> bool:
        return any(isinstance(b, ImageBlock) for b in self.blocks())


class CompletionRequest(BaseModel):
    """Canonical chat completion request."""

    model_config = ConfigDict(extra="ignore")

    model: str = Field(min_length=1)
    messages: List[Message] = Field(min_length=1)
    stream: bool = False
    temperature: Optional[float] = Field(default=None, ge=0, le=2)
    max_tokens: Optional[int] = Field(default=None, ge=1)
    response_format: Optional[Dict[str, Any]] = None
    tools: Optional[List[ToolDefinition]] = None

    @property
    def wants_json(self) -> bool:
        """True when the caller asked for a JSON-only reply."""
        if not self.response_format:
            return False
        return self.response_format.get("type") in ("json_object", "json_schema")


# ============== Response ==============

class ResponseMessage(BaseModel):
    role: Literal["assistant"] = "assistant"
    content: Optional[str] = None
    tool_calls: Optional[List[ToolCall]] = None


class Choice(BaseModel):
    index: int = 0
    message: ResponseMessage
    finish_reason: Optional[str] = None


class Usage(BaseModel):
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


class CompletionResponse(BaseModel):
    """Canonical (OpenAI-shaped) chat completion response."""

    id: str = Field(default_factory=lambda: generate_completion_id())
    object: Literal["chat.completion"] = "chat.completion"
    created: int = Field(default_factory=lambda: int(time.time()))
    model: str = ""
    choices: List[Choice]
    usage: Optional[Usage] = None

    @property
    def content(self) -> Optional[str]:
        """Text of the first choice."""
        return self.choices[0].message.content if self.choices else None


class ModelDescriptor(BaseModel):
    """Uniform model listing entry across providers."""
    id: str
    object: Literal["model"] = "model"
    provider: str
    display_name: str
    max_tokens: Optional[int] = None


class ModelListResponse(BaseModel):
    object: Literal["list"] = "list"
    data: List[ModelDescriptor]


def generate_completion_id() -> str:
    """Generate an OpenAI-style completion ID."""
    return f"chatcmpl-{uuid4().hex[:24]}"
