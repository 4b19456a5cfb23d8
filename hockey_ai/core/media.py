"""Media part assembly: inline small items, upload large ones.

Turns N media items plus a prompt into the ordered part list expected by
the generation endpoint. Items below the inline limit are base64-encoded
into the body; larger items are uploaded concurrently and referenced by
URI. The prompt part always comes last.

Examples:
    >>> assembler = MediaPartAssembler(ProviderType.GEMINI, uploader=provider)
    >>> parts = await assembler.assemble([clip], "Rate this wrist shot")
    >>> [p.file_data is not None for p in parts]
    [True, False]

Tests:
    - tests/unit/test_media.py
"""

from __future__ import annotations

import asyncio
import base64
import logging
from typing import Protocol

from hockey_ai.config import GB, MB, ProviderType
from hockey_ai.core.events import EventBus, EventKind
from hockey_ai.core.providers.base import (
    MediaItem,
    MediaRole,
    ProviderError,
    RequestCancelledError,
    UploadFailedError,
)
from hockey_ai.schemas.gemini import FileData, InlineData, Part, VideoMetadata

logger = logging.getLogger(__name__)

MAX_VIDEO_FPS = 24
INLINE_VIDEO_FPS = 10
UPLOADED_VIDEO_FPS = 30


class Uploader(Protocol):
    """Anything that can upload one media item and return its file URI."""

    async def upload_file(self, item: MediaItem, display_name: str) -> str: ...


def video_fps(item: MediaItem, uploaded: bool) -> int | None:
    """Frame-rate hint for a part.

    Args:
        item: The media item.
        uploaded: Whether the item is sent as a file reference.

    Returns:
        Caller fps capped at MAX_VIDEO_FPS, else a default that depends on
        the transport. None for non-video items.
    """
    if item.role != MediaRole.VIDEO:
        return None
    if item.frame_rate:
        return min(item.frame_rate, MAX_VIDEO_FPS)
    return UPLOADED_VIDEO_FPS if uploaded else INLINE_VIDEO_FPS


def encode_inline(item: MediaItem) -> InlineData:
    """Base64-encode an item into an inline part payload."""
    return InlineData(mime_type=item.mime_type, data=base64.b64encode(item.data).decode("ascii"))


class MediaPartAssembler:
    """Builds ordered request parts for one provider.

    Attributes:
        provider: Provider whose upload endpoint and limits are used
        inline_size_limit: Items at or above this size are uploaded
        upload_size_limit: Items at or above this size are rejected
    """

    def __init__(
        self,
        provider: ProviderType,
        uploader: Uploader | None = None,
        inline_size_limit: int = 20 * MB,
        upload_size_limit: int = 2 * GB,
        events: EventBus | None = None,
    ) -> None:
        self.provider = provider
        self.uploader = uploader
        self.inline_size_limit = inline_size_limit
        self.upload_size_limit = upload_size_limit
        self.events = events or EventBus()

    def needs_upload(self, item: MediaItem) -> bool:
        return item.size >= self.inline_size_limit

    def validate(self, items: list[MediaItem]) -> None:
        """Reject items that cannot be sent at all.

        Raises:
            UploadFailedError: If an item exceeds the upload limit, or needs an
                upload the provider cannot perform.
        """
        for index, item in enumerate(items):
            if item.size >= self.upload_size_limit:
                raise UploadFailedError(
                    self.provider,
                    f"{item.size} bytes exceeds the {self.upload_size_limit} byte upload limit",
                    item_index=index,
                )
            if self.needs_upload(item) and self.uploader is None:
                raise UploadFailedError(
                    self.provider,
                    "provider does not support file uploads",
                    item_index=index,
                )

    async def assemble(self, items: list[MediaItem], prompt: str) -> list[Part]:
        """Build the part list: media in item order, then the prompt.

        All uploads run concurrently. The call returns only after every
        scheduled upload has finished; if any failed, the first failure in
        item order is raised and inline parts are discarded.

        Args:
            items: Media items in the order they should appear.
            prompt: Text prompt, appended after all media.

        Returns:
            Ordered list of parts.

        Raises:
            UploadFailedError: If validation or any upload fails.
            RequestCancelledError: If an upload task was cancelled.
        """
        self.validate(items)

        uploads: dict[int, asyncio.Task[str]] = {}
        for index, item in enumerate(items):
            if self.needs_upload(item):
                display_name = item.display_name or f"{item.role.value}_{index + 1}_upload"
                uploads[index] = asyncio.create_task(
                    self.uploader.upload_file(item, display_name),
                    name=f"upload-{self.provider.value}-{index}",
                )

        if uploads:
            logger.info(
                f"Uploading {len(uploads)} of {len(items)} media item(s) to {self.provider.value}"
            )

        try:
            inline: dict[int, InlineData] = {}
            for index, item in enumerate(items):
                if index not in uploads:
                    inline[index] = await asyncio.to_thread(encode_inline, item)
            results = await asyncio.gather(*uploads.values(), return_exceptions=True)
        finally:
            pending = [task for task in uploads.values() if not task.done()]
            for task in pending:
                task.cancel()
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)

        uris: dict[int, str] = {}
        for index, result in zip(uploads, results):
            if isinstance(result, BaseException):
                error = self._upload_error(index, result)
                if error is result:
                    raise error
                raise error from result
            uris[index] = result

        if uploads:
            self.events.publish(EventKind.UPLOADS_COMPLETE, self.provider, count=len(uploads))

        parts: list[Part] = []
        for index, item in enumerate(items):
            uploaded = index in uris
            fps = video_fps(item, uploaded)
            parts.append(
                Part(
                    file_data=FileData(mime_type=item.mime_type, file_uri=uris[index]) if uploaded else None,
                    inline_data=None if uploaded else inline[index],
                    video_metadata=VideoMetadata(fps=fps) if fps is not None else None,
                )
            )
        parts.append(Part(text=prompt))
        return parts

    def _upload_error(self, index: int, error: BaseException) -> ProviderError:
        if isinstance(error, asyncio.CancelledError):
            return RequestCancelledError(self.provider)
        if isinstance(error, UploadFailedError):
            if error.item_index is not None:
                return error
            return UploadFailedError(
                self.provider, error.reason, item_index=index, status_code=error.status_code
            )
        if isinstance(error, ProviderError):
            return UploadFailedError(
                self.provider, error.message, item_index=index, status_code=error.status_code
            )
        return UploadFailedError(self.provider, str(error) or type(error).__name__, item_index=index)
