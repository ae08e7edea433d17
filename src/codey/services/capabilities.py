"""Host capabilities the chat client consumes but does not implement itself."""

from __future__ import annotations

import logging
import mimetypes
from pathlib import Path
from typing import AsyncIterator, Protocol

from ..chat.message_model import Attachment

__all__ = ["Dictation", "FileReader", "LocalFileReader", "DEFAULT_MIME_TYPE", "MAX_ATTACHMENT_BYTES"]

LOGGER = logging.getLogger(__name__)
DEFAULT_MIME_TYPE = "application/octet-stream"
MAX_ATTACHMENT_BYTES = 20 * 1024 * 1024


class FileReader(Protocol):
    """Turns a host file handle into an attachment."""

    def read_file(self, handle: str | Path) -> Attachment:
        ...


class Dictation(Protocol):
    """Speech-to-text source; yields transcript fragments until stopped."""

    def start_dictation(self) -> AsyncIterator[str]:
        ...

    def stop_dictation(self) -> None:
        ...


class LocalFileReader:
    """Reads attachments from the local filesystem."""

    def __init__(self, *, max_bytes: int = MAX_ATTACHMENT_BYTES) -> None:
        self._max_bytes = max_bytes

    def read_file(self, handle: str | Path) -> Attachment:
        """Read ``handle`` and encode it as a data-URL attachment.

        Raises:
            FileNotFoundError: If the path does not exist.
            ValueError: If the file is larger than the configured limit.
        """
        path = Path(handle).expanduser()
        size = path.stat().st_size
        if size > self._max_bytes:
            raise ValueError(f"{path.name} is {size} bytes; the limit is {self._max_bytes}")
        mime_type, _ = mimetypes.guess_type(path.name)
        data = path.read_bytes()
        LOGGER.debug("Read attachment %s (%d bytes, %s)", path, len(data), mime_type or DEFAULT_MIME_TYPE)
        return Attachment.from_bytes(path.name, mime_type or DEFAULT_MIME_TYPE, data)
