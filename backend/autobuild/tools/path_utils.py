from __future__ import annotations

from pathlib import Path, PurePosixPath

from .exceptions import PathValidationError


def ensure_within(base_dir: Path, candidate: Path) -> Path:
    """Validate that *candidate* resides within *base_dir* and return it resolved."""

    resolved_base = base_dir.resolve()
    resolved_candidate = candidate.resolve()
    if resolved_candidate == resolved_base or resolved_candidate.is_relative_to(resolved_base):
        return resolved_candidate
    raise PathValidationError(f"Path '{candidate}' escapes workspace '{base_dir}'")


def resolve_workspace_path(base_dir: Path, relative_path: str) -> Path:
    """Resolve *relative_path* against *base_dir*, rejecting absolute and ``..`` paths."""

    normalized = relative_path.replace("\\", "/")
    pure = PurePosixPath(normalized)
    if pure.is_absolute() or ".." in pure.parts:
        raise PathValidationError(f"Path '{relative_path}' is not a workspace-relative path")
    return ensure_within(base_dir, base_dir.joinpath(*pure.parts))
