"""
Local Dask cluster utilities for mapping several sources in parallel.
"""
import logging
import os
from typing import Iterable, Optional

from dask.distributed import Client

logger = logging.getLogger("topphrases.cluster")


def setup_dask_cluster(n_workers: int, memory_per_worker: str = "4GB") -> Client:
    """Start a local Dask cluster and return its client.

    Workers share this machine's filesystem, which the part stores of the
    parallel map rely on.

    Args:
        n_workers: Number of worker processes
        memory_per_worker: Memory limit per worker (e.g., "4GB")

    Returns:
        Configured Dask client
    """
    logger.info(f"Starting local Dask cluster with {n_workers} workers")
    client = Client(n_workers=n_workers, threads_per_worker=1, memory_limit=memory_per_worker)
    logger.info(f"Dashboard: {client.dashboard_link}")
    return client


def cleanup_cluster(client: Client):
    """Close the Dask client and its local cluster."""
    try:
        client.close()
    except Exception as e:
        logger.warning(f"Error during cluster cleanup: {e}")


def optimize_workers_for_sources(
    sources: Iterable,
    bytes_per_worker: int = 64 * 1024 * 1024,
    max_workers: Optional[int] = None,
) -> int:
    """Pick a worker count from the total size of the sources.

    Never more workers than sources (each source is mapped by one worker) or
    than ``max_workers`` (defaults to the CPU count).

    Args:
        sources: Source file paths
        bytes_per_worker: Input volume that justifies one more worker
        max_workers: Upper bound on the number of workers

    Returns:
        Number of workers, at least 1
    """
    sources = list(sources)
    max_workers = max_workers or os.cpu_count() or 1
    total_bytes = sum(os.path.getsize(s) for s in sources)
    by_volume = max(1, -(-total_bytes // bytes_per_worker))
    n_workers = max(1, min(len(sources), by_volume, max_workers))
    logger.info(f"Calculated optimal workers: {n_workers} for {len(sources)} sources, {total_bytes:,} bytes")
    return n_workers
