"""Data URI encoding and image utilities for asset upload and generation payloads"""

import base64
import binascii
import logging
import mimetypes
import re
from io import BytesIO
from pathlib import Path
from typing import Optional, Tuple, Union

import httpx
from PIL import Image, UnidentifiedImageError

from errors import FetchFailed
from models.asset import UploadFile

logger = logging.getLogger("DataURI")

DATA_URI_PREFIX = "data:"
_DATA_URI_RE = re.compile(r"^data:(?P<mime>[\w.+-]+/[\w.+-]+)?(?P<params>(?:;[\w.+-]+=[\w.+-]+)*);base64,")
DEFAULT_MIME_TYPE = "application/octet-stream"
FETCH_HEADERS = {
    "Accept": "image/avif,image/webp,image/apng,image/*,*/*;q=0.8",
}


def is_data_uri(locator: str) -> bool:
    """True if the locator already carries its bytes inline"""
    return isinstance(locator, str) and locator.startswith(DATA_URI_PREFIX)


def encode_data_uri(data: bytes, mime_type: str) -> str:
    """Encode bytes as a base64 data URI: ``data:<mime>;base64,<body>``"""
    mime_type = (mime_type or DEFAULT_MIME_TYPE).split(";")[0].strip() or DEFAULT_MIME_TYPE
    return f"data:{mime_type};base64,{base64.b64encode(data).decode('ascii')}"


def parse_data_uri(uri: str) -> Tuple[str, bytes]:
    """Split a base64 data URI into (mime_type, bytes).

    Raises:
        ValueError: If the URI is not a base64 data URI or the body is not valid base64
    """
    match = _DATA_URI_RE.match(uri or "")
    if not match:
        raise ValueError("Not a base64 data URI")
    mime_type = match.group("mime") or DEFAULT_MIME_TYPE
    try:
        data = base64.b64decode(uri[match.end():], validate=True)
    except (binascii.Error, ValueError) as e:
        raise ValueError(f"Invalid base64 body in data URI: {e}")
    return mime_type, data


def sniff_mime_type(data: bytes, file_name: Optional[str] = None) -> str:
    """Guess MIME type from the file name, falling back to decoding the image header"""
    if file_name:
        guessed, _ = mimetypes.guess_type(file_name)
        if guessed:
            return guessed
    try:
        with Image.open(BytesIO(data)) as img:
            mime_type = Image.MIME.get(img.format or "")
            if mime_type:
                return mime_type
    except (UnidentifiedImageError, OSError) as e:
        logger.debug(f"Could not identify image bytes: {e}")
    return DEFAULT_MIME_TYPE


def downscale_image(data: bytes, max_dim: int, mime_type: Optional[str] = None) -> Tuple[bytes, str]:
    """Downscale so the longest edge is at most max_dim, keeping PNG/JPEG/WEBP format.

    Images already within bounds are returned untouched.
    """
    with Image.open(BytesIO(data)) as img:
        width, height = img.size
        image_format = (img.format or "PNG").upper()
        if max(width, height) <= max_dim:
            return data, mime_type or Image.MIME.get(image_format, DEFAULT_MIME_TYPE)

        if width > height:
            new_size = (max_dim, max(1, int(height * (max_dim / width))))
        else:
            new_size = (max(1, int(width * (max_dim / height))), max_dim)
        resized = img.resize(new_size, Image.Resampling.LANCZOS)

        if image_format not in ("PNG", "JPEG", "WEBP"):
            image_format = "PNG"
        if image_format == "JPEG" and resized.mode not in ("RGB", "L"):
            resized = resized.convert("RGB")

        output = BytesIO()
        save_kwargs = {"format": image_format}
        if image_format in ("JPEG", "WEBP"):
            save_kwargs["quality"] = 90
        resized.save(output, **save_kwargs)

    logger.info(f"Downscaled image {width}x{height} -> {new_size[0]}x{new_size[1]} ({image_format})")
    return output.getvalue(), Image.MIME[image_format]


def load_upload_file(path: Union[str, Path]) -> UploadFile:
    """Read a local image file the user selected for upload"""
    file_path = Path(path).expanduser()
    if not file_path.is_file():
        raise FileNotFoundError(str(file_path))
    data = file_path.read_bytes()
    return UploadFile(
        file_name=file_path.name,
        data=data,
        mime_type=sniff_mime_type(data, file_path.name),
    )


async def fetch_as_data_uri(
    locator: str,
    client: Optional[httpx.AsyncClient] = None,
    timeout: float = 30,
) -> str:
    """Resolve a locator to a data URI.

    Data URIs are returned unchanged. Anything else is fetched over HTTP and the
    body re-encoded with the response's content type.

    Raises:
        FetchFailed: On a network error or non-success status
    """
    if is_data_uri(locator):
        return locator

    if client is None:
        async with httpx.AsyncClient(follow_redirects=True, timeout=timeout) as owned_client:
            return await fetch_as_data_uri(locator, owned_client, timeout)

    try:
        response = await client.get(locator, headers=FETCH_HEADERS, timeout=timeout)
        response.raise_for_status()
    except httpx.HTTPStatusError as e:
        logger.error(f"Failed to fetch image from {locator}: status {e.response.status_code}")
        raise FetchFailed(locator, f"status {e.response.status_code}", e.response.status_code) from e
    except httpx.HTTPError as e:
        logger.error(f"Failed to fetch image from {locator}: {e}")
        raise FetchFailed(locator, str(e) or type(e).__name__) from e

    content = response.content
    mime_type = response.headers.get("content-type", "").split(";")[0].strip()
    if not mime_type or not mime_type.startswith("image/"):
        mime_type = sniff_mime_type(content)
    return encode_data_uri(content, mime_type)
