from __future__ import annotations

import os
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Union

from seed_toolkit.errors import OutputPathPolicyError

PathLike = Union[str, Path]

DEFAULT_ROOTS: Dict[str, str] = {
    "manifest": "toolkit-manifests",
    "report": os.path.join("artifacts", "reports"),
    "fixture": os.path.join("fixtures", "golden"),
}


def is_within(base: PathLike, candidate: PathLike) -> bool:
    """Return True when ``candidate`` equals ``base`` or sits beneath it."""
    base_abs = os.path.abspath(os.fspath(base))
    candidate_abs = os.path.abspath(os.fspath(candidate))
    try:
        rel = os.path.relpath(candidate_abs, base_abs)
    except ValueError:
        # different drives on Windows
        return False
    if os.path.isabs(rel):
        return False
    return rel != ".." and not rel.startswith(".." + os.sep)


def allowed_roots_for(
    kind: str,
    allowed_roots: Iterable[PathLike] = (),
    cwd: Optional[PathLike] = None,
) -> List[Path]:
    if kind not in DEFAULT_ROOTS:
        raise ValueError(f"Unknown output kind: {kind}")
    base = Path(os.path.abspath(os.fspath(cwd) if cwd is not None else os.getcwd()))
    roots = [base / DEFAULT_ROOTS[kind]]
    for raw in allowed_roots:
        raw_str = os.fspath(raw).strip()
        if not raw_str:
            continue
        root = Path(raw_str)
        if not root.is_absolute():
            root = base / root
        roots.append(Path(os.path.abspath(root)))
    return roots


def resolve_output_dir(
    kind: str,
    requested_dir: Optional[PathLike] = None,
    *,
    allowed_roots: Iterable[PathLike] = (),
    cwd: Optional[PathLike] = None,
) -> Path:
    """Resolve an output directory and confine it to the allow-listed roots.

    ``kind`` selects the default root (``manifest``, ``report`` or
    ``fixture``). Relative requests resolve against ``cwd``. Raises
    :class:`OutputPathPolicyError` when no allowed root contains the result.
    """
    roots = allowed_roots_for(kind, allowed_roots, cwd)
    if requested_dir is None:
        return roots[0]

    base = Path(os.path.abspath(os.fspath(cwd) if cwd is not None else os.getcwd()))
    requested = Path(os.fspath(requested_dir))
    if not requested.is_absolute():
        requested = base / requested
    resolved = Path(os.path.abspath(requested))

    if any(is_within(root, resolved) for root in roots):
        return resolved

    raise OutputPathPolicyError(
        f"Output path {resolved} for {kind} is outside the allowed roots: "
        + ", ".join(str(root) for root in roots),
        details={"kind": kind, "requested": str(resolved)},
    )


__all__ = ["DEFAULT_ROOTS", "allowed_roots_for", "is_within", "resolve_output_dir"]
