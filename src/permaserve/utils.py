"""Utility helpers for item names, wire decoding and exclusive file creation."""

from __future__ import annotations

import os
import re
from pathlib import Path
from uuid import uuid4

NAME_PATTERN = re.compile(r"[A-Za-z0-9_-][A-Za-z0-9._-]*")


def is_valid_item_name(name: str, max_length: int = 12) -> bool:
    """Check the name is short enough and safe to use as a directory name."""
    if not name or len(name) > max_length:
        return False
    return NAME_PATTERN.fullmatch(name) is not None


def decode_hex(payload: str) -> bytes:
    """Decode the hex-string encoding the ledger uses for binary fields."""
    return bytes.fromhex(payload)


def write_exclusive(target: Path, data: bytes) -> bool:
    """Create ``target`` with ``data`` unless it already exists.

    The payload is written to a temporary sibling and published with a hard
    link, so the target appears complete or not at all. Returns ``False`` when
    another writer got there first.
    """
    target.parent.mkdir(parents=True, exist_ok=True)
    temp_path = target.parent / f".{target.name}.{uuid4().hex}.tmp"
    try:
        with temp_path.open("xb") as fh:
            fh.write(data)
        try:
            os.link(temp_path, target)
        except FileExistsError:
            return False
        return True
    finally:
        temp_path.unlink(missing_ok=True)
