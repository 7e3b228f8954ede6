"""Product image payloads.

A product image arrives either as a raw upload (bytes plus a media type) or
as an already encoded string. Products only ever store the encoded form, so
:func:`resolve_image` must run before a product is constructed.
"""

from __future__ import annotations

import base64
import mimetypes
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union

from . import log


DEFAULT_MEDIA_TYPE = "application/octet-stream"


@dataclass(frozen=True)
class RawUpload:
    """Binary image content that still needs encoding."""

    data: bytes
    media_type: str = DEFAULT_MEDIA_TYPE

    @classmethod
    def from_path(cls, path: Path) -> "RawUpload":
        """Read ``path`` and guess its media type from the file extension.

        Raises:
            FileNotFoundError: If ``path`` does not exist.
        """

        path = Path(path).expanduser().resolve()
        if not path.exists():
            raise FileNotFoundError(f"Image not found: {path}")
        media_type, _ = mimetypes.guess_type(path.name)
        return cls(data=path.read_bytes(), media_type=media_type or DEFAULT_MEDIA_TYPE)


@dataclass(frozen=True)
class EncodedImage:
    """Self-contained encoded image, usually a ``data:`` URL."""

    value: str


ImagePayload = Union[RawUpload, EncodedImage]


def encode_data_url(upload: RawUpload) -> EncodedImage:
    """Encode ``upload`` as a base64 ``data:`` URL."""

    encoded = base64.b64encode(upload.data).decode("ascii")
    return EncodedImage(value=f"data:{upload.media_type};base64,{encoded}")


def resolve_image(payload: Optional[ImagePayload]) -> Optional[EncodedImage]:
    """Return the encoded form of ``payload``.

    Encoded images and ``None`` pass through untouched; raw uploads are
    encoded with :func:`encode_data_url`.

    Raises:
        TypeError: If ``payload`` is neither variant.
    """

    if payload is None or isinstance(payload, EncodedImage):
        return payload
    if isinstance(payload, RawUpload):
        encoded = encode_data_url(payload)
        log.debug(
            "Encoded %d byte(s) of %s image data",
            len(payload.data),
            payload.media_type,
        )
        return encoded
    raise TypeError(f"Unsupported image payload: {type(payload).__name__}")
