"""
Common I/O utilities for the working area and for writing results.
"""
import logging
import os
import shutil
from pathlib import Path
from typing import Any, Dict, List

import pandas as pd

from topphrases.errors import StorageIOError

logger = logging.getLogger("topphrases.io_utils")

RESULT_COLUMNS = ["rank", "count", "fingerprint", "phrase"]


def ensure_output_directory(output_path: str):
    """Ensure the output directory exists."""
    os.makedirs(os.path.dirname(output_path) or ".", exist_ok=True)


def ensure_directory(path: Path) -> Path:
    """Create ``path`` and its parents, raising StorageIOError on failure."""
    try:
        os.makedirs(path, exist_ok=True)
    except OSError as e:
        raise StorageIOError(f"Can't create directory: {path}", path) from e
    return Path(path)


def drop_tree(path: Path) -> bool:
    """Recursively delete ``path``.

    Returns:
        True if something was removed, False if ``path`` was already absent
    """
    if not os.path.lexists(path):
        return False
    try:
        if os.path.isdir(path) and not os.path.islink(path):
            shutil.rmtree(path)
        else:
            os.remove(path)
    except FileNotFoundError:
        return False
    except OSError as e:
        raise StorageIOError(f"Can't delete dir: {path}", path) from e
    return True


def cleanup_temp_dir(temp_dir: Path):
    """Best-effort removal used on abnormal exit: failures are logged, never raised.

    Args:
        temp_dir: Path to the directory to clean up
    """
    try:
        drop_tree(temp_dir)
        logger.info(f"Cleaned up directory: {temp_dir}")
    except StorageIOError as e:
        logger.warning(f"Failed to clean up directory {temp_dir}: {e.__cause__ or e}")


def top_phrases_to_rows(results) -> List[Dict[str, Any]]:
    """Flatten TopPhrase results into TSV rows."""
    rows = []
    for rank, item in enumerate(results, start=1):
        rows.append({
            "rank": rank,
            "count": item.count,
            "fingerprint": item.hex,
            "phrase": item.phrase_text,
        })
    return rows


def write_results_to_tsv(results, output_path: str) -> int:
    """Write TopPhrase results to a tab separated file.

    Args:
        results: Ordered TopPhrase results
        output_path: Output file path

    Returns:
        Number of rows written
    """
    ensure_output_directory(output_path)
    rows = top_phrases_to_rows(results)
    if not rows:
        logger.warning("No phrases found. Creating empty TSV file.")
    df = pd.DataFrame(rows, columns=RESULT_COLUMNS)
    df.to_csv(output_path, sep="\t", index=False, encoding="utf-8")
    logger.info(f"Wrote {len(df):,} rows to {output_path}")
    return len(df)


def read_results_tsv(path: str) -> pd.DataFrame:
    """Read a results TSV back; empty phrases stay empty strings."""
    return pd.read_csv(
        path,
        sep="\t",
        dtype={"phrase": str, "fingerprint": str},
        keep_default_na=False,
    )
