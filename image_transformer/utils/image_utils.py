"""
Image intake helpers for Image Transformer.

Validates a user-selected file (size, extension, decodable image type) and
wraps it together with the prompt text into the input the run controller
accepts.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union

from PIL import Image, UnidentifiedImageError

from ..config import (
    ALLOWED_EXTENSIONS,
    ALLOWED_MIME_TYPES,
    MAX_UPLOAD_BYTES,
    MESSAGE_FILE_TOO_LARGE,
)
from ..exceptions import InvalidInputError


@dataclass(frozen=True)
class UploadFile:
    """A validated local image ready to be uploaded"""
    path: Path
    filename: str
    mime_type: str
    size: int


@dataclass(frozen=True)
class PendingInput:
    """What the user wants to submit: a file (mandatory) and a prompt (optional)"""
    file: Optional[UploadFile] = None
    prompt_text: str = ""


def load_upload(path: Union[str, Path]) -> UploadFile:
    """
    Validate a local file and return an UploadFile handle.

    Raises:
        InvalidInputError: missing file, over MAX_UPLOAD_BYTES, disallowed
            extension, or content that is not a PNG/JPEG/GIF image.
    """
    file_path = Path(path)
    if not file_path.is_file():
        raise InvalidInputError(f"File not found: {file_path.name}")

    size = file_path.stat().st_size
    if size > MAX_UPLOAD_BYTES:
        raise InvalidInputError(MESSAGE_FILE_TOO_LARGE)

    if file_path.suffix.lower() not in ALLOWED_EXTENSIONS:
        raise InvalidInputError(
            f"Unsupported file type '{file_path.suffix}'. Supports PNG, JPG, GIF up to 10MB"
        )

    mime_type = _detect_mime_type(file_path)
    if mime_type not in ALLOWED_MIME_TYPES:
        raise InvalidInputError(f"Unsupported image format: {mime_type}")

    return UploadFile(path=file_path, filename=file_path.name, mime_type=mime_type, size=size)


def _detect_mime_type(file_path: Path) -> str:
    """Identify the image format from its content, not its name"""
    try:
        with Image.open(file_path) as image:
            image.verify()
            return Image.MIME.get(image.format or "", "application/octet-stream")
    except (UnidentifiedImageError, OSError, SyntaxError) as e:
        raise InvalidInputError(f"Not a readable image: {file_path.name}") from e


def build_pending_input(path: Optional[Union[str, Path]], prompt_text: Optional[str] = "") -> PendingInput:
    """
    Build a PendingInput from the presentation layer's current selection.

    A missing path yields an input without a file; the controller rejects it.
    """
    upload = load_upload(path) if path else None
    return PendingInput(file=upload, prompt_text=prompt_text or "")
