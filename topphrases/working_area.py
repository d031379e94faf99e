"""
Isolated on-disk working area of one aggregation run.

Each run owns its directory: the counter store, the scratch space for phrases
too long to buffer, and one part area per parallel map worker. The area is
acquired with ``with`` and released on every exit path; after a failure it
can be kept for postmortem inspection.
"""
import logging
import os
import signal
import threading
import warnings
from pathlib import Path
from typing import Optional

from topphrases.errors import StaleWorkingAreaWarning, StorageIOError
from topphrases.io_utils import cleanup_temp_dir, drop_tree, ensure_directory

logger = logging.getLogger("topphrases.working_area")

DEFAULT_WORK_DIR = os.environ.get("TOPPHRASES_WORK_DIR", "out")
MAPPED_MARKER = "MAPPED"


def default_run_id() -> str:
    """A separate storage for each process and thread."""
    return f"{os.getpid()}_{threading.get_ident()}"


class WorkingArea:
    def __init__(self, root, keep_on_failure: bool = False, keep_on_success: bool = False):
        self.root = Path(root)
        self.keep_on_failure = keep_on_failure
        self.keep_on_success = keep_on_success
        self._previous_sigterm = None
        self._handles_sigterm = False

    @classmethod
    def for_run(
        cls,
        work_dir=None,
        run_id: Optional[str] = None,
        keep_on_failure: bool = False,
        keep_on_success: bool = False,
    ) -> "WorkingArea":
        work_dir = Path(work_dir or DEFAULT_WORK_DIR)
        return cls(
            work_dir / f"storage_{run_id or default_run_id()}",
            keep_on_failure=keep_on_failure,
            keep_on_success=keep_on_success,
        )

    @property
    def store_path(self) -> Path:
        return self.root / "store"

    @property
    def scratch_path(self) -> Path:
        return self.root / "scratch"

    @property
    def parts_path(self) -> Path:
        return self.root / "parts"

    @property
    def marker_path(self) -> Path:
        return self.root / MAPPED_MARKER

    @property
    def is_sealed(self) -> bool:
        """True once a map phase ran to completion in this area."""
        return self.marker_path.is_file() and self.store_path.is_dir()

    def seal(self) -> None:
        """Drop the scratch space and mark the store as completely mapped."""
        drop_tree(self.scratch_path)
        drop_tree(self.parts_path)
        ensure_directory(self.store_path)
        try:
            self.marker_path.touch()
        except OSError as e:
            raise StorageIOError(f"Can't write marker: {self.marker_path}", self.marker_path) from e
        logger.info(f"Sealed working area {self.root}")

    def part(self, index: int) -> "WorkingArea":
        """Child area owned by a single parallel map worker."""
        child = WorkingArea(self.parts_path / f"part-{index:05d}")
        ensure_directory(child.store_path.parent)
        ensure_directory(child.scratch_path)
        return child

    def acquire(self) -> "WorkingArea":
        if self.root.exists():
            # Left behind by a run that terminated abnormally
            message = f"Unclean storage found at {self.root}. Fixing that..."
            logger.warning(message)
            warnings.warn(message, StaleWorkingAreaWarning, stacklevel=3)
            drop_tree(self.root)
        ensure_directory(self.scratch_path)
        logger.info(f"Acquired working area {self.root}")
        return self

    def release(self) -> None:
        if drop_tree(self.root):
            logger.info(f"Released working area {self.root}")

    def __enter__(self) -> "WorkingArea":
        self.acquire()
        self._install_sigterm_handler()
        return self

    def __exit__(self, exc_type, exc, tb):
        self._restore_sigterm_handler()
        if exc_type is None:
            if self.keep_on_success:
                logger.info(f"Keeping working area {self.root}")
            else:
                self.release()
        elif self.keep_on_failure:
            logger.warning(f"Keeping working area {self.root} for postmortem inspection")
        else:
            # Must not mask the error that got us here
            cleanup_temp_dir(self.root)
        return False

    def _install_sigterm_handler(self):
        # Signal handlers can only be set from the main thread
        if threading.current_thread() is not threading.main_thread():
            return

        def _terminate(signum, frame):
            raise SystemExit(128 + signum)

        self._previous_sigterm = signal.signal(signal.SIGTERM, _terminate)
        self._handles_sigterm = True

    def _restore_sigterm_handler(self):
        if self._handles_sigterm:
            previous = self._previous_sigterm
            signal.signal(signal.SIGTERM, previous if previous is not None else signal.SIG_DFL)
            self._handles_sigterm = False
