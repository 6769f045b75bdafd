"""
Image discovery and decoding.

This module walks a directory tree for files with a given extension and
decodes single images into RGB24 arrays.  It is intentionally kept decoupled
from the embedding logic so the walk can be tested without any model.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Iterator, List

import numpy as np
from PIL import Image

from .errors import DecodeError, WalkError

SUPPORTED_FORMATS = ("JPEG",)


def _raise(err: OSError) -> None:
    raise err


def file_extension(name: str) -> str:
    """Suffix of ``name`` from its last dot, so ``".jpg"`` has extension ``".jpg"``."""
    dot = name.rfind(".")
    return name[dot:] if dot >= 0 else ""


def iter_image_paths(root: Path, extension: str = ".jpg", recurse: bool = True) -> Iterator[Path]:
    """Yield files under ``root`` whose extension equals ``extension``.

    The comparison is case sensitive.  Directories are visited in lexical
    order so the discovery order is stable between runs.  Errors while
    listing a directory are raised rather than ignored.
    """
    for dirpath, dirnames, filenames in os.walk(root, onerror=_raise):
        dirnames.sort()
        if not recurse:
            dirnames.clear()
        for fn in sorted(filenames):
            if file_extension(fn) == extension:
                yield Path(dirpath) / fn


def collect_image_paths(root: Path, extension: str = ".jpg", recurse: bool = True) -> List[Path]:
    """Walk ``root`` completely and return the matching paths.

    Raises
    ------
    WalkError
        If ``root`` or any directory below it cannot be listed.
    """
    if not Path(root).is_dir():
        raise WalkError(f"faces directory {root} does not exist or is not a directory")
    try:
        return list(iter_image_paths(root, extension=extension, recurse=recurse))
    except OSError as exc:
        raise WalkError(f"walking {root}: {exc}") from exc


def decode_image(path: Path) -> np.ndarray:
    """Decode a JPEG file into an ``(height, width, 3)`` uint8 RGB array."""
    try:
        with Image.open(path) as im:
            if im.format not in SUPPORTED_FORMATS:
                raise DecodeError(path, f"unsupported image format {im.format}")
            rgb = im.convert("RGB")
            return np.asarray(rgb, dtype=np.uint8)
    except (OSError, ValueError, Image.DecompressionBombError) as exc:
        raise DecodeError(path, str(exc)) from exc
