from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import TYPE_CHECKING, Any, Union

from seed_toolkit.utils.hashing import canonicalize

if TYPE_CHECKING:  # pragma: no cover
    import polars as pl

PathLike = Union[str, Path]

_LOGGER = logging.getLogger("seed_toolkit.io")


def write_canonical_json_atomic(path: PathLike, obj: Any) -> None:
    write_text_atomic(path, canonicalize(obj))


def write_text_atomic(path: PathLike, text: str) -> None:
    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)

    with _tempfile(target) as tmp_path:
        with open(tmp_path, "w", encoding="utf-8") as fp:
            fp.write(text)
            fp.flush()
            os.fsync(fp.fileno())
        os.replace(tmp_path, target)


def write_csv_atomic(path: PathLike, dataframe: "pl.DataFrame") -> None:
    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)

    with _tempfile(target) as tmp_path:
        dataframe.write_csv(tmp_path)
        _fsync_path(tmp_path)
        os.replace(tmp_path, target)


class _AtomicTempFile:
    def __init__(self, temp_path: Path):
        self.temp_path = temp_path

    def __enter__(self) -> Path:
        return self.temp_path

    def __exit__(self, exc_type, exc, tb) -> None:
        if exc_type is None:
            return
        try:
            self.temp_path.unlink(missing_ok=True)
        except OSError as cleanup_exc:
            _LOGGER.warning("Could not remove %s: %s", self.temp_path, cleanup_exc)


def _tempfile(target: Path) -> _AtomicTempFile:
    return _AtomicTempFile(target.with_name(f"{target.name}.tmp"))


def _fsync_path(temp_path: Path) -> None:
    with open(temp_path, "rb") as fp:
        os.fsync(fp.fileno())


__all__ = [
    "write_canonical_json_atomic",
    "write_csv_atomic",
    "write_text_atomic",
]
