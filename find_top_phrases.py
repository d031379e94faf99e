#!/usr/bin/env python3
"""
Find the most frequent phrases in one or more text files.

Phrases are separated by a separator character ('|' by default) and by line
ends. Counting happens on disk, so the input and the number of distinct
phrases may be far larger than memory.
"""
from __future__ import annotations

import argparse
import logging
import sys

from topphrases.cluster import cleanup_cluster, optimize_workers_for_sources, setup_dask_cluster
from topphrases.errors import TopPhrasesError
from topphrases.extractor import DEFAULT_CHUNK_SIZE
from topphrases.io_utils import write_results_to_tsv
from topphrases.pipeline import find_top_phrases, resolve_sources
from topphrases.working_area import DEFAULT_WORK_DIR

logger = logging.getLogger("find_top_phrases")
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[logging.StreamHandler()],
)


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(description="Report the K most frequent phrases of the input files.")
    ap.add_argument("--input", required=True, nargs="+", help="Text file(s) with phrases")
    ap.add_argument("--top_k", type=int, required=True, help="Number of phrases to report")
    ap.add_argument("--separator", default="|", help="Phrase separator (one character)")
    ap.add_argument("--output_path", default=None, help="Optional TSV file for the results")
    ap.add_argument("--work_dir", default=DEFAULT_WORK_DIR, help="Parent directory of the working area")
    ap.add_argument("--run_id", default=None, help="Working area name (default: process and thread ids)")
    ap.add_argument("--keep_on_failure", action="store_true", help="Keep the working area if the run fails")
    ap.add_argument("--chunk_size", type=int, default=DEFAULT_CHUNK_SIZE, help="Bytes per read")
    ap.add_argument("--workers", type=int, default=1, help="Parallel map workers (0 = derive from input size)")
    ap.add_argument("--use_cluster", action="store_true", help="Run the parallel map on a local Dask cluster")
    ap.add_argument("--memory_per_worker", type=str, default="4GB")
    ap.add_argument("--length_check_only", action="store_true", help="Detect digest collisions by length only")
    ap.add_argument("--no_progress", action="store_true", help="Hide progress bars")
    return ap


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)

    client = None
    try:
        sources = resolve_sources(args.input)
        workers = args.workers if args.workers > 0 else optimize_workers_for_sources(sources)
        if args.use_cluster and workers > 1 and len(sources) > 1:
            client = setup_dask_cluster(workers, memory_per_worker=args.memory_per_worker)

        top = find_top_phrases(
            sources,
            args.top_k,
            separator=args.separator,
            work_dir=args.work_dir,
            run_id=args.run_id,
            keep_on_failure=args.keep_on_failure,
            chunk_size=args.chunk_size,
            workers=workers,
            client=client,
            verify_content=not args.length_check_only,
            progress=not args.no_progress,
        )

        for item in top:
            print(f'[{item.count}] "{item.phrase_text}" ({item.hex})')

        if args.output_path:
            write_results_to_tsv(top, args.output_path)
    except (TopPhrasesError, OSError) as e:
        logger.error(str(e))
        return 1
    finally:
        if client is not None:
            cleanup_cluster(client)

    logger.info(f"Reported {len(top)} phrases from {len(sources)} source(s)")
    return 0


if __name__ == "__main__":
    sys.exit(main())
