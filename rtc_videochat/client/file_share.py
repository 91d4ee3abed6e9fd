"""Encoding of files shared through ``file`` envelopes.

Files travel inside the signaling envelope as base64 data URLs, so they are
limited by the relay's maximum frame size.
"""

import base64
import binascii
import mimetypes
from pathlib import Path
from typing import Tuple, Union

from rtc_videochat.exceptions import ProtocolError

DATA_URL_PREFIX = "data:"


def encode_file(file_path: Union[str, Path]) -> Tuple[str, str]:
    """Read a file and encode it as a data URL.

    Returns:
        Tuple of (data_url, filename).
    """
    path = Path(file_path)
    mime_type = mimetypes.guess_type(path.name)[0] or "application/octet-stream"
    encoded = base64.b64encode(path.read_bytes()).decode("ascii")
    return f"{DATA_URL_PREFIX}{mime_type};base64,{encoded}", path.name


def decode_data_url(data_url: str) -> Tuple[str, bytes]:
    """Split a base64 data URL into its mime type and raw bytes.

    Raises:
        ProtocolError: If the value is not a base64 data URL.
    """
    if not isinstance(data_url, str) or not data_url.startswith(DATA_URL_PREFIX):
        raise ProtocolError("File payload is not a data URL")

    header, sep, encoded = data_url[len(DATA_URL_PREFIX):].partition(",")
    if not sep or not header.endswith(";base64"):
        raise ProtocolError("File payload is not base64 encoded")

    try:
        content = base64.b64decode(encoded, validate=True)
    except binascii.Error as e:
        raise ProtocolError(f"Invalid base64 in file payload: {e}") from e

    mime_type = header[: -len(";base64")] or "application/octet-stream"
    return mime_type, content


def safe_filename(filename: str) -> str:
    """Reduce an announced filename to a bare name safe to write locally.

    Examples:
        >>> safe_filename("../../etc/passwd")
        'passwd'
    """
    name = Path(str(filename).replace("\\", "/")).name
    if name in ("", ".", ".."):
        return "received_file"
    return name


def save_received_file(data_url: str, filename: str, dest_dir: Union[str, Path]) -> Path:
    """Decode a received file and write it under ``dest_dir``.

    An existing file with the same name is not overwritten; a numeric suffix
    is added instead.

    Returns:
        Path of the written file.
    """
    _, content = decode_data_url(data_url)
    dest = Path(dest_dir)
    dest.mkdir(parents=True, exist_ok=True)

    name = Path(safe_filename(filename))
    target = dest / name
    counter = 1
    while target.exists():
        target = dest / f"{name.stem}_{counter}{name.suffix}"
        counter += 1

    target.write_bytes(content)
    return target
