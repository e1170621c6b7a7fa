"""
Bounded request body ingestion and media type helpers.
"""
import codecs
import re
from typing import Dict, Tuple
import structlog
from starlette.requests import ClientDisconnect, Request
from .errors import BodyReadError

log = structlog.get_logger()

DEFAULT_ENCODING = "utf-8"

_SIZE_PATTERN = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*(b|kb|mb|gb|tb)?\s*$", re.IGNORECASE)
_SIZE_UNITS = {"b": 1, "kb": 1 << 10, "mb": 1 << 20, "gb": 1 << 30, "tb": 1 << 40}


def parse_byte_size(value: str | int) -> int:
    """
    Parse a byte size such as 1024, "10kb" or "1.5mb" (base 1024).

    Raises:
        ValueError: If the value is not a size
    """
    if isinstance(value, int):
        if value < 0:
            raise ValueError(f"Invalid byte size: {value}")
        return value
    match = _SIZE_PATTERN.match(value)
    if not match:
        raise ValueError(f"Invalid byte size: {value!r}")
    number, unit = match.groups()
    return int(float(number) * _SIZE_UNITS[(unit or "b").lower()])


def parse_media_type(header: str | None) -> Tuple[str, Dict[str, str]]:
    """
    Split a Content-Type header into its media type and parameters.

    Returns:
        ("type/subtype", {param: value}) with lowercased names; the media
        type is "" when the header is missing or malformed
    """
    if not header:
        return "", {}
    parts = header.split(";")
    media_type = parts[0].strip().lower()
    if media_type.count("/") != 1 or not all(media_type.split("/")):
        media_type = ""
    params = {}
    for part in parts[1:]:
        name, sep, value = part.partition("=")
        if not sep:
            continue
        value = value.strip()
        if len(value) >= 2 and value[0] == value[-1] == '"':
            value = value[1:-1]
        params[name.strip().lower()] = value
    return media_type, params


def is_json_type(media_type: str) -> bool:
    return media_type == "application/json" or media_type.endswith("+json")


def is_text_type(media_type: str) -> bool:
    return media_type.startswith("text/")


def has_body(request: Request) -> bool:
    """A request carries a body when it declares a length or a transfer encoding."""
    if "transfer-encoding" in request.headers:
        return True
    return declared_length(request) is not None


def declared_length(request: Request) -> int | None:
    value = request.headers.get("content-length")
    if value is None:
        return None
    try:
        length = int(value)
    except ValueError:
        return None
    return length if length >= 0 else None


class BodyReader:
    """Buffers a request body under a byte cap and decodes it as text."""

    async def read(
        self,
        request: Request,
        limit: int,
        length: int | None = None,
        encoding: str | None = None,
    ) -> str:
        """
        Read and decode the full request body.

        Args:
            request: Incoming request
            limit: Maximum number of bytes accepted
            length: Expected number of bytes, usually Content-Length
            encoding: Charset to decode with (defaults to utf-8)

        Returns:
            The decoded body text

        Raises:
            BodyReadError: With a 413, 400 or 415 status
        """
        encoding = encoding or DEFAULT_ENCODING
        try:
            codec = codecs.lookup(encoding)
        except LookupError:
            codec = None
        # bytes-to-bytes codecs (base64, hex, ...) are not charsets
        if codec is None or not getattr(codec, "_is_text_encoding", True):
            raise BodyReadError(
                f"Unsupported charset {encoding!r}",
                type="encoding.unsupported",
                status_code=415,
                encoding=encoding,
            )

        if length is not None and length > limit:
            raise BodyReadError(
                "Request entity too large",
                type="entity.too.large",
                status_code=413,
                length=length,
                limit=limit,
            )

        chunks = []
        received = 0
        try:
            async for chunk in request.stream():
                received += len(chunk)
                if received > limit:
                    raise BodyReadError(
                        "Request entity too large",
                        type="entity.too.large",
                        status_code=413,
                        received=received,
                        limit=limit,
                    )
                chunks.append(chunk)
        except ClientDisconnect:
            raise BodyReadError(
                "Request aborted",
                type="request.aborted",
                status_code=400,
                received=received,
            )

        if length is not None and received != length:
            raise BodyReadError(
                "Request size did not match content length",
                type="request.size.invalid",
                status_code=400,
                length=length,
                received=received,
            )

        try:
            text = codec.decode(b"".join(chunks), "strict")[0]
        except UnicodeDecodeError as e:
            raise BodyReadError(
                f"Body is not valid {encoding}",
                type="encoding.invalid",
                status_code=400,
                encoding=encoding,
                reason=str(e),
            )

        log.debug("body.read", received=received, encoding=encoding)
        if text.startswith("\ufeff"):
            text = text[1:]
        return text
