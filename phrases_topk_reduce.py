#!/usr/bin/env python
"""
Reduce step: walk a counter store written by phrases_topk_map.py and emit the global top-K phrases.
"""
from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

from topphrases.counter_store import CounterStore
from topphrases.errors import TopPhrasesError
from topphrases.io_utils import write_results_to_tsv
from topphrases.pipeline import TopPhrase, validate_top_limit
from topphrases.reducer import reduce_top_k
from topphrases.working_area import WorkingArea

logger = logging.getLogger("phrases_topk_reduce")
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[logging.StreamHandler()],
)


def main(argv=None) -> int:
    ap = argparse.ArgumentParser(description="Reduce step: emit the top-K phrases of a counter store.")
    ap.add_argument("--store_dir", required=True, help="Working area written by phrases_topk_map.py")
    ap.add_argument("--output_path", required=True, help="Path to write the sorted top-K TSV")
    ap.add_argument("--top_k", type=int, default=1_000, help="Keep only the top-K phrases by count")
    ap.add_argument("--drop_store", action="store_true", help="Remove the working area once reduced")
    ap.add_argument("--no_progress", action="store_true")
    args = ap.parse_args(argv)

    area = WorkingArea(Path(args.store_dir))
    if not area.is_sealed:
        logger.error(f"No completely mapped counter store found in {area.root}; rerun phrases_topk_map.py")
        return 1

    try:
        validate_top_limit(args.top_k)
        store = CounterStore(area.store_path)
        winners = reduce_top_k(store.iter_entries(), args.top_k, progress=not args.no_progress)
        top = [TopPhrase(e.count, e.read_phrase(), e.fingerprint) for e in winners]
        write_results_to_tsv(top, args.output_path)
        if args.drop_store:
            area.release()
    except (TopPhrasesError, OSError) as e:
        logger.error(str(e))
        return 1

    logger.info(f"Reduced store {area.root} -> wrote {len(top):,} rows to {args.output_path}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
