from __future__ import annotations

import hashlib
import json
from pathlib import Path
from typing import Any

CHECKSUM_PREFIX = "sha256:"


def canonicalize(value: Any) -> str:
    """Serialize ``value`` as key-sorted compact JSON.

    Object keys are sorted recursively, array order is kept, and no
    insignificant whitespace is emitted, so structurally equal values always
    produce identical strings regardless of the order their keys were built in.
    """
    return json.dumps(
        value,
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        allow_nan=False,
    )


def checksum(value: Any) -> str:
    digest = hashlib.sha256(canonicalize(value).encode("utf-8")).hexdigest()
    return f"{CHECKSUM_PREFIX}{digest}"


def sha256_hex(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def compute_file_hash(path: Path, chunk_size: int = 1024 * 1024) -> str:
    digest = hashlib.sha256()
    with path.open("rb") as handle:
        while True:
            chunk = handle.read(chunk_size)
            if not chunk:
                break
            digest.update(chunk)
    return digest.hexdigest()


__all__ = [
    "CHECKSUM_PREFIX",
    "canonicalize",
    "checksum",
    "compute_file_hash",
    "sha256_hex",
]
