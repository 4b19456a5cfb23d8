"""Generative Language API wire schemas.

Field names are snake_case in Python and camelCase on the wire. Requests
are serialized with ``to_wire()``; responses are validated once at the
decode boundary.

Examples:
    >>> request = GenerateContentRequest(
    ...     contents=[Content(parts=[Part(text="Rate this shot")])],
    ...     generation_config={"responseMimeType": "application/json"},
    ... )
    >>> request.to_wire()
    {'contents': [{'role': 'user', 'parts': [{'text': 'Rate this shot'}]}], 'generationConfig': {...}}

Tests:
    - tests/unit/test_schemas.py::TestGeminiRequestSchemas
    - tests/unit/test_schemas.py::TestGeminiResponseSchemas
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel


class WireModel(BaseModel):
    """camelCase wire model base."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )

    def to_wire(self) -> dict[str, Any]:
        """Serialize for the wire (camelCase, no nulls)."""
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")


class InlineData(WireModel):
    """Base64 media embedded in the request body."""

    mime_type: str
    data: str = Field(repr=False)


class FileData(WireModel):
    """Reference to a previously uploaded file."""

    mime_type: str
    file_uri: str


class VideoMetadata(WireModel):
    """Sampling hints for a video part."""

    fps: int = Field(gt=0)


class Part(WireModel):
    """One content part: text, inline media or file reference."""

    text: str | None = None
    inline_data: InlineData | None = None
    file_data: FileData | None = None
    video_metadata: VideoMetadata | None = None

    @property
    def is_media(self) -> bool:
        return self.inline_data is not None or self.file_data is not None


class Content(WireModel):
    role: str | None = "user"
    parts: list[Part] = Field(default_factory=list)


class GenerateContentRequest(WireModel):
    """Body of ``models/{model}:generateContent``.

    generation_config is passed through verbatim; its keys are already in
    wire form.
    """

    contents: list[Content]
    generation_config: dict[str, Any] | None = None


class ErrorDetail(WireModel):
    message: str = ""
    code: int | None = None
    status: str | None = None


class ErrorResponse(WireModel):
    error: ErrorDetail


class UsageMetadata(WireModel):
    prompt_token_count: int | None = None
    candidates_token_count: int | None = None
    total_token_count: int | None = None

    def as_usage(self) -> dict[str, int]:
        """Token usage in the shape stored on GenerationResponse."""
        usage = {
            "input_tokens": self.prompt_token_count,
            "output_tokens": self.candidates_token_count,
            "total_tokens": self.total_token_count,
        }
        return {k: v for k, v in usage.items() if v is not None}


class Candidate(WireModel):
    content: Content | None = None
    finish_reason: str | None = None


class GenerateContentResponse(WireModel):
    """Success or error body from the generation endpoint."""

    candidates: list[Candidate] = Field(default_factory=list)
    usage_metadata: UsageMetadata | None = None
    error: ErrorDetail | None = None

    def first_text(self) -> str | None:
        """Text of the first part of the first candidate, if any."""
        part = self._first_part()
        return part.text if part else None

    def first_inline_data(self) -> InlineData | None:
        """First inline media part of the first candidate, if any.

        Image models can emit a text part before the image, so all parts
        of the first candidate are scanned.
        """
        if not self.candidates or self.candidates[0].content is None:
            return None
        for part in self.candidates[0].content.parts:
            if part.inline_data is not None:
                return part.inline_data
        return None

    def _first_part(self) -> Part | None:
        if not self.candidates:
            return None
        content = self.candidates[0].content
        if content is None or not content.parts:
            return None
        return content.parts[0]


class UploadMetadata(WireModel):
    """JSON part of a multipart/related upload: ``{"file": {"displayName": ...}}``."""

    file: dict[str, str]

    @classmethod
    def for_display_name(cls, display_name: str) -> UploadMetadata:
        return cls(file={"displayName": display_name})


class UploadedFile(WireModel):
    uri: str
    name: str | None = None
    mime_type: str | None = None
    state: str | None = None


class UploadResponse(WireModel):
    file: UploadedFile

    @model_validator(mode="before")
    @classmethod
    def require_file(cls, data: Any) -> Any:
        if isinstance(data, dict) and "file" not in data:
            raise ValueError("Upload response has no 'file' object")
        return data
