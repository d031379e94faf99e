#!/usr/bin/env python
"""
Map step: count the phrases of the input files into a counter store that is kept on disk.

Run phrases_topk_reduce.py on the same --store_dir afterwards.
"""
from __future__ import annotations

import argparse
import logging
import os
import sys
from pathlib import Path

from topphrases.errors import TopPhrasesError
from topphrases.extractor import DEFAULT_CHUNK_SIZE
from topphrases.pipeline import map_sources, resolve_sources
from topphrases.working_area import WorkingArea

logger = logging.getLogger("phrases_topk_map")
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[logging.StreamHandler()],
)


def main(argv=None) -> int:
    ap = argparse.ArgumentParser(description="Map step: count phrases into an on-disk counter store.")
    ap.add_argument("--input", required=True, nargs="+", help="Text file(s) with phrases")
    ap.add_argument("--store_dir", required=True, help="Working area receiving the counter store")
    ap.add_argument("--separator", default="|", help="Phrase separator (one character)")
    ap.add_argument("--chunk_size", type=int, default=DEFAULT_CHUNK_SIZE)
    ap.add_argument("--workers", type=int, default=int(os.environ.get("TOPPHRASES_WORKERS", 1)))
    ap.add_argument("--keep_on_failure", action="store_true", help="Keep the (unsealed) area if the map fails")
    ap.add_argument("--length_check_only", action="store_true", help="Detect digest collisions by length only")
    ap.add_argument("--no_progress", action="store_true")
    args = ap.parse_args(argv)

    try:
        sources = resolve_sources(args.input)
    except TopPhrasesError as e:
        logger.error(str(e))
        return 1

    # Any exit before seal() drops the area, or keeps it unsealed for inspection
    area = WorkingArea(Path(args.store_dir), keep_on_failure=args.keep_on_failure, keep_on_success=True)
    try:
        with area:
            store, phrases = map_sources(
                sources,
                area,
                separator=args.separator,
                chunk_size=args.chunk_size,
                workers=args.workers,
                verify_content=not args.length_check_only,
                progress=not args.no_progress,
            )
            area.seal()
    except TopPhrasesError as e:
        logger.error(str(e))
        return 1

    logger.info(f"Map done. Read {len(sources)} files; counted {phrases:,} phrases into {store.root}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
