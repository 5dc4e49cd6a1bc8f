from __future__ import annotations

from pathlib import Path

import pytest

pl = pytest.importorskip("polars")

from seed_toolkit.utils.io import (  # noqa: E402
    write_canonical_json_atomic,
    write_csv_atomic,
    write_text_atomic,
)


def test_write_text_atomic_creates_directories_and_replaces(tmp_path: Path) -> None:
    target = tmp_path / "nested" / "manifest.json"

    write_text_atomic(target, "first")
    write_text_atomic(target, "second")

    assert target.read_text(encoding="utf-8") == "second"
    assert not any(target.parent.glob("*.tmp"))


def test_write_canonical_json_atomic_is_compact_and_sorted(tmp_path: Path) -> None:
    target = tmp_path / "out.json"

    write_canonical_json_atomic(target, {"b": 1, "a": {"d": 2, "c": 3}})

    assert target.read_text(encoding="utf-8") == '{"a":{"c":3,"d":2},"b":1}'


def test_failed_replace_leaves_no_temp_file(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    target = tmp_path / "bad.json"

    def broken_replace(src, dst):
        raise OSError("disk full")

    monkeypatch.setattr("seed_toolkit.utils.io.os.replace", broken_replace)

    with pytest.raises(OSError, match="disk full"):
        write_canonical_json_atomic(target, {"value": 1})

    assert not target.exists()
    assert not (tmp_path / "bad.json.tmp").exists()


def test_write_csv_atomic_round_trip(tmp_path: Path) -> None:
    df = pl.DataFrame({"name": ["alice", "bob"], "score": [10, 20]})
    target = tmp_path / "exports" / "sample.csv"

    write_csv_atomic(target, df)
    assert target.is_file()

    round_trip = pl.read_csv(target)
    assert round_trip.sort("name").to_dict(as_series=False) == df.sort("name").to_dict(
        as_series=False
    )
