"""Domain models for image construction."""

from __future__ import annotations

from .models import (
    BuildState,
    CopyOptions,
    CopyResult,
    FstabKind,
    FstabSpec,
    effective_excludes,
    is_under,
)


__all__ = [
    "BuildState",
    "CopyOptions",
    "CopyResult",
    "FstabKind",
    "FstabSpec",
    "effective_excludes",
    "is_under",
]
