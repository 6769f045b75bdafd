"""
Error taxonomy for the facemodes pipeline.

Errors fall into two severities.  :class:`ItemError` and its subclasses
describe a problem with a single image; the extraction loop logs them and
moves on to the next file.  Everything else derived from
:class:`FaceModesError` aborts the run, and the command line entry point
turns it into a logged message and a non‑zero exit status.
"""

from __future__ import annotations


class FaceModesError(Exception):
    """Base class for all errors raised by this package."""


class ConfigurationError(FaceModesError):
    """The run configuration is inconsistent or refers to missing artifacts."""


class StorageError(FaceModesError):
    """Unrecoverable failure reading or writing persistent state."""


class WalkError(StorageError):
    """The faces directory could not be enumerated."""


class CopyError(StorageError):
    """A source image could not be copied completely into a cluster folder."""


class DimensionMismatchError(FaceModesError, ValueError):
    """A vector's length does not match the embedding size of the run."""

    def __init__(self, expected: int, actual: int, what: str = "vector") -> None:
        super().__init__(f"{what} has {actual} dimensions, expected {expected}")
        self.expected = expected
        self.actual = actual


class ItemError(FaceModesError):
    """Recoverable failure affecting a single image."""

    def __init__(self, path, reason: str) -> None:
        super().__init__(f"{path}: {reason}")
        self.path = path
        self.reason = reason


class DecodeError(ItemError):
    """The image file could not be opened or decoded."""


class InferenceError(ItemError):
    """The inference engine failed to produce an embedding for an image."""
