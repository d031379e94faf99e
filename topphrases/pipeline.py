"""
Top phrases search: map the sources into a counter store, then reduce the store to the top K.

Memory use is O(1) in the input size and in the number of distinct phrases
(plus O(K) for the answer); the filesystem holds one directory per distinct
phrase while the run lasts.
"""
import logging
import os
from functools import partial
from pathlib import Path
from typing import List, Optional, Tuple

import dask.bag as db
from dask.diagnostics import ProgressBar

from topphrases.counter_store import CounterStore
from topphrases.errors import InvalidArgumentError
from topphrases.extractor import (
    DEFAULT_CHUNK_SIZE,
    DEFAULT_SEPARATOR,
    extract_file,
    extract_stream,
    normalize_separator,
)
from topphrases.fingerprint import to_hex
from topphrases.reducer import reduce_top_k
from topphrases.working_area import WorkingArea

logger = logging.getLogger("topphrases.pipeline")


class TopPhrase:
    """One result row: how often a phrase occurred and its content."""

    def __init__(self, count: int, phrase: bytes, fingerprint: bytes):
        self.count = count
        self.phrase = phrase
        self.fingerprint = fingerprint

    @property
    def phrase_text(self) -> str:
        return self.phrase.decode("utf-8", errors="replace")

    @property
    def hex(self) -> str:
        return to_hex(self.fingerprint)

    def __repr__(self) -> str:
        return f"TopPhrase(count={self.count}, phrase={self.phrase_text!r})"


def validate_top_limit(top_limit) -> int:
    if top_limit is None or isinstance(top_limit, bool) or not isinstance(top_limit, int):
        raise InvalidArgumentError(f"Top limit must be an integer, got {top_limit!r}")
    return top_limit


def resolve_sources(source) -> List[Path]:
    """Turn a path or a list of paths into readable file paths."""
    if isinstance(source, (str, os.PathLike)):
        sources = [source]
    else:
        sources = list(source or [])
    if not sources:
        raise InvalidArgumentError("No phrase source given")

    resolved = []
    for s in sources:
        path = Path(s)
        if not path.is_file() or not os.access(path, os.R_OK):
            raise InvalidArgumentError(f"Can't read phrase source: {path}")
        resolved.append(path)
    return resolved


def _map_part(item: Tuple[str, str], separator: bytes, chunk_size: int, verify_content: bool) -> int:
    source, part_root = item
    part = WorkingArea(part_root)
    store = CounterStore(part.store_path, verify_content=verify_content)
    return extract_file(source, store, part.scratch_path, separator=separator, chunk_size=chunk_size)


def map_sources(
    sources: List[Path],
    area: WorkingArea,
    separator=DEFAULT_SEPARATOR,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    workers: int = 1,
    client=None,
    verify_content: bool = True,
    progress: bool = False,
) -> Tuple[CounterStore, int]:
    """Map phase over one or more source files.

    With several sources and ``workers > 1`` every source is mapped into its
    own part store by a Dask bag (threads, or ``client`` when given), then the
    part stores are merged into the run's store. Parts never share a
    directory, so workers need no coordination.

    Returns:
        The populated store and the number of phrase instances mapped
    """
    separator = normalize_separator(separator)
    store = CounterStore(area.store_path, verify_content=verify_content)

    if workers <= 1 or len(sources) < 2:
        phrases = 0
        for source in sources:
            phrases += extract_file(
                source,
                store,
                area.scratch_path,
                separator=separator,
                chunk_size=chunk_size,
                progress=progress,
            )
        return store, phrases

    parts = [area.part(i) for i in range(len(sources))]
    logger.info(f"Mapping {len(sources)} sources with {workers} workers")
    bag = db.from_sequence(
        [(str(s), str(p.root)) for s, p in zip(sources, parts)],
        npartitions=len(sources),
    )
    mapped = bag.map(partial(_map_part, separator=separator, chunk_size=chunk_size, verify_content=verify_content))

    if client is not None:
        counts = mapped.compute(scheduler=client)
    elif progress:
        with ProgressBar():
            counts = mapped.compute(scheduler="threads", num_workers=workers)
    else:
        counts = mapped.compute(scheduler="threads", num_workers=workers)

    for part in parts:
        merged = store.merge_from(CounterStore(part.store_path, verify_content=verify_content))
        logger.info(f"Merged {merged:,} distinct phrases from {part.root.name}")
    return store, sum(counts)


def find_top_phrases(
    source,
    top_limit: int,
    separator=DEFAULT_SEPARATOR,
    work_dir=None,
    run_id: Optional[str] = None,
    keep_on_failure: bool = False,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    workers: int = 1,
    client=None,
    verify_content: bool = True,
    progress: bool = False,
) -> List[TopPhrase]:
    """Find the ``top_limit`` most frequent phrases in ``source``.

    Args:
        source: Path, list of paths, or a binary stream
        top_limit: Number of phrases to return; 0 or less returns []
        separator: Single byte separating phrases on a line
        work_dir: Parent directory of the run's working area
        run_id: Working area name; defaults to process and thread ids
        keep_on_failure: Keep the working area when the run fails
        chunk_size: Bytes per read
        workers: Parallel map workers (used with several source files)
        client: Optional dask.distributed Client for the parallel map
        verify_content: Compare whole phrases, not only lengths, on increments
        progress: Show progress bars

    Returns:
        Phrases ordered by count descending, then fingerprint ascending

    Raises:
        InvalidArgumentError: bad limit, separator or source
        DigestCollisionError: two different phrases share a fingerprint
        StorageIOError: the working area could not be written or read
    """
    validate_top_limit(top_limit)
    separator = normalize_separator(separator)
    stream = source if hasattr(source, "read") else None
    if stream is not None and not isinstance(stream.read(0), bytes):
        raise InvalidArgumentError("Phrase stream must be opened in binary mode")
    sources = [] if stream is not None else resolve_sources(source)
    if top_limit <= 0:
        return []

    with WorkingArea.for_run(work_dir, run_id, keep_on_failure=keep_on_failure) as area:
        if stream is not None:
            store = CounterStore(area.store_path, verify_content=verify_content)
            phrases = extract_stream(stream, store, area.scratch_path, separator=separator, chunk_size=chunk_size)
        else:
            store, phrases = map_sources(
                sources,
                area,
                separator=separator,
                chunk_size=chunk_size,
                workers=workers,
                client=client,
                verify_content=verify_content,
                progress=progress,
            )
        logger.info(f"Map phase done: {phrases:,} phrases")

        winners = reduce_top_k(store.iter_entries(), top_limit, progress=progress)
        # Read the contents before the working area goes away
        results = [TopPhrase(e.count, e.read_phrase(), e.fingerprint) for e in winners]

    return results
