"""
High‑level orchestration of the facemodes pipeline.

This module ties together the lower‑level components: walking the faces
directory, embedding each image, accumulating the embeddings in the mode
store, persisting the embedding cache and mode store, reporting the peaks
and copying the images into one folder per peak.
"""

from __future__ import annotations

import json
import logging
import sys
from contextlib import ExitStack
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Sequence, TextIO

import numpy as np

from .clustering import PROGRESS_INTERVAL, materialize_clusters
from .config import DEFAULT_EMBEDDING_SIZE, CachePolicy, RunConfig
from .embedders import Embedder, get_embedder
from .embeddings_io import EmbeddingCache
from .errors import (
    ConfigurationError, DimensionMismatchError, FaceModesError, InferenceError, ItemError,
)
from .images import collect_image_paths, decode_image
from .modes import MultiModal, Peak, load_mode_store, save_mode_store

log = logging.getLogger(__name__)


@dataclass
class ExtractionStats:
    processed: int = 0
    cached: int = 0
    failed: int = 0


@dataclass
class RunResult:
    """Summary of a finished run."""
    stats: ExtractionStats
    peaks: List[Peak]
    copied: List[Path] = field(default_factory=list)


def embed_image(path: Path, embedder: Embedder) -> np.ndarray:
    """Decode ``path`` and return its embedding.

    Raises :class:`~facemodes.errors.ItemError` for failures confined to
    this image.
    """
    img = decode_image(path)
    try:
        return embedder.embed(img)
    except InferenceError as exc:
        raise InferenceError(path, exc.reason) from exc


def extract_embeddings(paths: Sequence[Path], embedder: Optional[Embedder], store: MultiModal,
                       cache: EmbeddingCache,
                       policy: CachePolicy = CachePolicy.REFRESH) -> ExtractionStats:
    """Embed every path, inserting the results into ``store`` and ``cache``.

    Images that cannot be decoded or embedded are logged and skipped.  A
    vector with the wrong length is fatal and propagates.
    """
    stats = ExtractionStats()
    for i, path in enumerate(paths):
        if i % PROGRESS_INTERVAL == 0:
            log.info("image #%d", i)
        key = str(path)
        if policy is not CachePolicy.REFRESH and key in cache:
            if policy is CachePolicy.REUSE:
                store.insert(cache[key])
            stats.cached += 1
            continue
        if embedder is None:
            raise ConfigurationError(f"no classifier loaded to embed {path}")
        try:
            embedding = embed_image(path, embedder)
        except ItemError as exc:
            log.warning("skipping %s", exc)
            stats.failed += 1
            continue
        store.insert(embedding)
        cache[key] = embedding
        stats.processed += 1
    log.info("embedded %d images (%d from cache, %d failed)",
             stats.processed, stats.cached, stats.failed)
    return stats


def resolve_embedding_size(config: RunConfig, embedder: Optional[Embedder],
                           cache: Optional[EmbeddingCache] = None) -> Optional[int]:
    """Return the embedding size of the run, or ``None`` to take it from stored state.

    Without an engine, an explicit size or stored state, the cached vectors
    decide; an empty cache falls back to the default size.
    """
    if embedder is not None:
        size = embedder.embedding_size
        if config.embedding_size is not None and config.embedding_size != size:
            raise ConfigurationError(
                f"-embeddingSize {config.embedding_size} does not match the classifier's {size}")
        return size
    if config.embedding_size is not None:
        return config.embedding_size
    if config.input_path is not None:
        return None
    if cache is not None and cache.dimensions is not None:
        return cache.dimensions
    return DEFAULT_EMBEDDING_SIZE


def reconcile_cache(config: RunConfig, cache: EmbeddingCache, store: MultiModal,
                    extracting: bool) -> EmbeddingCache:
    """Check the cached vectors against the store before extraction.

    When images are reprocessed with the refresh policy, a cache written by a
    model of another size is discarded.  With the reuse or skip policy the
    cached vectors stay part of the run, so a mismatch is fatal.  Without
    extraction the check is deferred to cluster assignment.
    """
    if cache.dimensions is None or cache.dimensions == store.dimensions or not extracting:
        return cache
    if config.cache_policy is CachePolicy.REFRESH:
        log.warning("discarding %d cached embeddings of %d dimensions, the run uses %d",
                    len(cache), cache.dimensions, store.dimensions)
        return EmbeddingCache()
    raise DimensionMismatchError(store.dimensions, cache.dimensions, what="embedding cache")


def write_peaks(peaks: Sequence[Peak], out: TextIO) -> None:
    json.dump([p.to_dict() for p in peaks], out, indent=2)
    out.write("\n")


def run_pipeline(config: RunConfig, embedder: Optional[Embedder] = None,
                 out: Optional[TextIO] = None) -> RunResult:
    """Run the pipeline described by ``config``.

    Parameters
    ----------
    config: RunConfig
        Configuration settings for this run.
    embedder: Embedder, optional
        Inference engine to use instead of the one described by
        ``config``.  It is closed at the end of extraction like one built
        here.
    out: text stream, optional
        Destination of the peak list; defaults to standard output.
    """
    if config.command_line:
        log.info("starting: %s", config.command_line)
    if config.requires_classifier and embedder is None and config.classifier_desc is None:
        raise ConfigurationError("-faces requires -classifierDesc")

    cache = EmbeddingCache.load(config.embeddings_path) if config.uses_cache else EmbeddingCache()

    paths: List[Path] = []
    if config.faces_dir is not None:
        paths = collect_image_paths(config.faces_dir, extension=config.extension,
                                    recurse=config.recurse)
        log.info("found %d %s images under %s", len(paths), config.extension, config.faces_dir)

    with ExitStack() as store_scope:
        with ExitStack() as engine_scope:
            if embedder is None and config.requires_classifier:
                embedder = get_embedder(config)
            if embedder is not None:
                engine_scope.enter_context(embedder)
            size = resolve_embedding_size(config, embedder, cache)
            store = store_scope.enter_context(
                load_mode_store(config.input_path, size, config.max_nodes, config.bandwidth))
            cache = reconcile_cache(config, cache, store, extracting=embedder is not None)
            try:
                stats = extract_embeddings(paths, embedder, store, cache,
                                           policy=config.cache_policy)
            except FaceModesError:
                # keep the embeddings computed before the failure
                if config.uses_cache and len(cache):
                    cache.save(config.embeddings_path)
                raise

        if config.uses_cache:
            cache.save(config.embeddings_path)

        peaks = store.peaks()
        log.info("mode store holds %d nodes and %d peaks", len(store), len(peaks))

        if config.emit_peaks:
            write_peaks(peaks, out if out is not None else sys.stdout)

        if config.output_path is not None:
            save_mode_store(store, config.output_path)

        copied: List[Path] = []
        if config.materializes_clusters and peaks:
            if cache.dimensions is not None and cache.dimensions != store.dimensions:
                raise DimensionMismatchError(store.dimensions, cache.dimensions,
                                             what="embedding cache")
            copied = materialize_clusters(cache, peaks, config.clusters_dir,
                                          extension=config.extension)
        elif config.materializes_clusters:
            log.warning("no peaks found, not creating %s", config.clusters_dir)

    return RunResult(stats=stats, peaks=peaks, copied=copied)
