"""
Configuration structures for running the facemodes pipeline.

We use a frozen :class:`dataclasses.dataclass` to describe the parameters
accepted by the command line interface.  The configuration is built once at
startup and handed to every component, so a test can drive the whole
pipeline with a synthetic :class:`RunConfig` instead of command line flags.

The :func:`parse_args` function converts command line arguments into a
:class:`RunConfig` instance.  Flags use a single dash spelling
in the style of Go tools (``-faces``, ``-nodes``, ``-peaks=false``, ...).
"""

from __future__ import annotations

import argparse
import enum
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

DEFAULT_EMBEDDING_SIZE = 128
DEFAULT_MAX_NODES = 1024
DEFAULT_BANDWIDTH = 0.8


class CachePolicy(str, enum.Enum):
    """How the extraction loop treats paths already present in the cache."""

    #: reprocess every file and overwrite its cache entry
    REFRESH = "refresh"
    #: skip inference but insert the cached vector into the mode store
    REUSE = "reuse"
    #: skip the file entirely; the stored modes already account for it
    SKIP = "skip"


@dataclass(frozen=True)
class RunConfig:
    """Parameters controlling a single pipeline run.

    Attributes
    ----------
    faces_dir: Path, optional
        Root directory of face images to embed.  When omitted no extraction
        happens and the run only loads, reports and materializes state.
    recurse: bool
        Whether to descend into subdirectories of ``faces_dir``.
    classifier_desc: Path, optional
        Model description artifact (OpenVINO ``.xml``, Caffe prototxt) or the
        single model file for formats that have one (``.t7``, ``.onnx``).
        Required whenever ``faces_dir`` is set.
    classifier_weights: Path, optional
        Model weights artifact for two‑file formats.
    backend: str
        ``"dnn"`` for OpenCV DNN or ``"insightface"`` for an ArcFace ONNX
        model run through ONNX Runtime.
    device: str
        Device selector, e.g. ``"CPU"``, ``"GPU"``, ``"CUDA"``, ``"MYRIAD"``.
    input_size: int
        Side length of the square input blob fed to the OpenCV DNN backend.
    embedding_size: int, optional
        Explicit embedding size.  Must agree with the engine when one is
        loaded; otherwise sizes an empty mode store.
    max_nodes: int
        Maximum number of nodes kept by the mode store (0 for unbounded).
    bandwidth: float
        Euclidean radius within which mode store nodes belong to one peak.
    output_path: Path, optional
        Where to write the mode store state at the end of the run.
    input_path: Path, optional
        Mode store state to start from.
    extension: str
        Case‑sensitive file extension of the images to process.
    emit_peaks: bool
        Print the peak list as JSON on standard output.
    embeddings_path: Path, optional
        Embedding cache file, read at startup and rewritten at the end.
    clusters_dir: Path, optional
        Directory to create and fill with one folder per peak.
    cache_policy: CachePolicy
        Treatment of images whose path is already cached.
    log_level: str
        Logging level name used by the command line entry point.
    command_line: str, optional
        Full original command line invocation, logged for reproducibility.
    """
    faces_dir: Optional[Path] = None
    recurse: bool = True
    classifier_desc: Optional[Path] = None
    classifier_weights: Optional[Path] = None
    backend: str = "dnn"
    device: str = "CPU"
    input_size: int = 96
    embedding_size: Optional[int] = None
    max_nodes: int = DEFAULT_MAX_NODES
    bandwidth: float = DEFAULT_BANDWIDTH
    output_path: Optional[Path] = None
    input_path: Optional[Path] = None
    extension: str = ".jpg"
    emit_peaks: bool = True
    embeddings_path: Optional[Path] = None
    clusters_dir: Optional[Path] = None
    cache_policy: CachePolicy = CachePolicy.REFRESH
    log_level: str = "INFO"
    command_line: Optional[str] = None

    @property
    def requires_classifier(self) -> bool:
        return self.faces_dir is not None

    @property
    def uses_cache(self) -> bool:
        return self.embeddings_path is not None

    @property
    def materializes_clusters(self) -> bool:
        return self.clusters_dir is not None


def _str2bool(value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in ("1", "t", "true", "yes", "y"):
        return True
    if lowered in ("0", "f", "false", "no", "n"):
        return False
    raise argparse.ArgumentTypeError(f"invalid boolean value: {value!r}")


def _optional_path(value: str) -> Optional[Path]:
    # blank means "none"
    return Path(value) if value else None


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="prime-modes",
        description="Accumulate face embeddings into a mode store and sort images by nearest mode",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
        allow_abbrev=False,
    )
    parser.add_argument("-faces", dest="faces_dir", type=_optional_path, default=None,
                        help="root directory with prime faces")
    parser.add_argument("-recurse", "-r", dest="recurse", type=_str2bool, nargs="?",
                        const=True, default=True, help="recurse subdirectories")
    parser.add_argument("-classifierDesc", dest="classifier_desc", type=_optional_path,
                        default=None, help="classifier description file")
    parser.add_argument("-classifierWeights", dest="classifier_weights", type=_optional_path,
                        default=None, help="classifier weights file")
    parser.add_argument("-backend", dest="backend", choices=["dnn", "insightface"],
                        default="dnn", help="inference backend")
    parser.add_argument("-device", dest="device", type=str, default="CPU",
                        help="device to run classification on")
    parser.add_argument("-inputSize", dest="input_size", type=int, default=96,
                        help="side length of the network input (dnn backend)")
    parser.add_argument("-embeddingSize", dest="embedding_size", type=int, default=None,
                        help="embedding size when no classifier is loaded")
    parser.add_argument("-nodes", dest="max_nodes", type=int, default=DEFAULT_MAX_NODES,
                        help="maximum number of nodes in modal structure")
    parser.add_argument("-bandwidth", dest="bandwidth", type=float, default=DEFAULT_BANDWIDTH,
                        help="distance below which nodes belong to the same mode")
    parser.add_argument("-output", "-o", dest="output_path", type=_optional_path, default=None,
                        help="output file for modal structure")
    parser.add_argument("-input", "-i", dest="input_path", type=_optional_path, default=None,
                        help="input modal to start from (blank for none)")
    parser.add_argument("-extension", dest="extension", type=str, default=".jpg",
                        help="image extension (only JPEG images are decoded)")
    parser.add_argument("-peaks", dest="emit_peaks", type=_str2bool, nargs="?",
                        const=True, default=True,
                        help="extract the peaks from the data structure")
    parser.add_argument("-embeddings", dest="embeddings_path", type=_optional_path,
                        default=None, help="read or write the embeddings to this file")
    parser.add_argument("-clusters", dest="clusters_dir", type=_optional_path, default=None,
                        help="cluster output directory")
    parser.add_argument("-cachePolicy", dest="cache_policy",
                        choices=[p.value for p in CachePolicy], default=CachePolicy.REFRESH.value,
                        help="refresh, reuse or skip images already in the embeddings file")
    parser.add_argument("-logLevel", dest="log_level", type=str.upper, default="INFO",
                        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
                        help="logging verbosity")
    return parser


def parse_args(argv: Optional[list[str]] = None) -> RunConfig:
    """Parse command line arguments and return a :class:`RunConfig` instance.

    Parameters
    ----------
    argv: list of str, optional
        List of command line arguments.  If omitted, :mod:`sys.argv` will be
        used.  This parameter facilitates testing.
    """
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.max_nodes < 0:
        parser.error("-nodes must not be negative")
    if args.bandwidth <= 0:
        parser.error("-bandwidth must be positive")
    if args.embedding_size is not None and args.embedding_size <= 0:
        parser.error("-embeddingSize must be positive")

    return RunConfig(
        faces_dir=args.faces_dir,
        recurse=args.recurse,
        classifier_desc=args.classifier_desc,
        classifier_weights=args.classifier_weights,
        backend=args.backend,
        device=args.device,
        input_size=args.input_size,
        embedding_size=args.embedding_size,
        max_nodes=args.max_nodes,
        bandwidth=args.bandwidth,
        output_path=args.output_path,
        input_path=args.input_path,
        extension=args.extension,
        emit_peaks=args.emit_peaks,
        embeddings_path=args.embeddings_path,
        clusters_dir=args.clusters_dir,
        cache_policy=CachePolicy(args.cache_policy),
        log_level=args.log_level,
        command_line=" ".join([parser.prog] + list(argv or [])),
    )
