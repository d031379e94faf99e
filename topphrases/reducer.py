"""
Reduce phase: bounded top-K selection over the entries of a CounterStore.
"""
import heapq
import logging
from typing import Iterable, List, Tuple

from tqdm import tqdm

from topphrases.counter_store import CounterEntry

logger = logging.getLogger("topphrases.reducer")


def sort_key(entry: CounterEntry) -> Tuple[int, bytes]:
    """Result order: count descending, then fingerprint ascending."""
    return -entry.count, entry.fingerprint


def _heap_key(entry: CounterEntry) -> Tuple[int, bytes]:
    # Smallest key = worst entry: lowest count, then highest fingerprint.
    # All fingerprints have the same length, so inverting the bytes reverses their order.
    return entry.count, bytes(255 - b for b in entry.fingerprint)


def reduce_top_k(entries: Iterable[CounterEntry], top_k: int, progress: bool = False) -> List[CounterEntry]:
    """Keep the ``top_k`` best entries of a single pass over ``entries``.

    Memory is O(top_k) whatever the number of entries. Ties are broken by
    fingerprint, so the result does not depend on the order of ``entries``.
    """
    if top_k <= 0:
        return []

    heap: List[Tuple[Tuple[int, bytes], int, CounterEntry]] = []
    seen = 0
    for entry in tqdm(entries, desc="Reducing", unit="phrase", disable=not progress):
        key = _heap_key(entry)
        # seen keeps tuples unique so entries themselves are never compared
        if len(heap) < top_k:
            heapq.heappush(heap, (key, seen, entry))
        elif key > heap[0][0]:
            heapq.heapreplace(heap, (key, seen, entry))
        seen += 1

    top = sorted((item[2] for item in heap), key=sort_key)
    logger.info(f"Reduced {seen:,} distinct phrases to the top {len(top):,}")
    return top
