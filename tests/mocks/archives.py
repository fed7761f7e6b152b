"""
Damaged archive payloads.
"""

import io
import zipfile

# Local file header: fixed part is 30 bytes, name/extra lengths at 26/28
_LOCAL_HEADER_SIZE = 30


def corrupt_zip_entry(payload: bytes, name: str) -> bytes:
    """
    Scramble the compressed data of one zip entry.

    The central directory stays intact, so the archive opens normally and
    fails only when the entry is read.
    """
    with zipfile.ZipFile(io.BytesIO(payload)) as zf:
        info = zf.getinfo(name)

    data = bytearray(payload)
    offset = info.header_offset
    name_len = int.from_bytes(data[offset + 26 : offset + 28], "little")
    extra_len = int.from_bytes(data[offset + 28 : offset + 30], "little")
    start = offset + _LOCAL_HEADER_SIZE + name_len + extra_len

    for i in range(start, start + info.compress_size):
        data[i] ^= 0x5A
    return bytes(data)
