"""
Disk-resident phrase counters addressed by fingerprint.

The hex form of every fingerprint is split into groups of GROUP_SIZE
characters, one directory level per group:

    <root>/ABC/DEF/.../X/<count>

The leaf directory holds exactly one file. Its name is the decimal occurrence
count and its content the bytes of the first phrase seen with that
fingerprint, so counting one more occurrence is a single rename and the
number of distinct phrases never has to fit in memory.
"""
import io
import logging
import os
import shutil
import threading
import time
from pathlib import Path
from typing import BinaryIO, Iterator, List, Optional, Tuple, Union

from topphrases.errors import DigestCollisionError, InvalidArgumentError, StorageIOError
from topphrases.fingerprint import (
    DIGEST_ALGORITHM,
    GROUP_SIZE,
    digest_size,
    fingerprint,
    from_hex,
    shard_depth,
    shard_parts,
    to_hex,
)
from topphrases.io_utils import drop_tree, ensure_directory

logger = logging.getLogger("topphrases.counter_store")

MAX_RENAME_RETRIES = 64
COMPARE_BLOCK_SIZE = 64 * 1024
PENDING_PREFIX = "."

# A phrase is either held in memory or spilled to a scratch file
Phrase = Union[bytes, bytearray, memoryview, Path]


class CounterEntry:
    """One distinct phrase in a store: fingerprint, occurrence count and content file."""

    def __init__(self, fingerprint: bytes, count: int, path: Path):
        self.fingerprint = fingerprint
        self.count = count
        self.path = Path(path)

    @property
    def hex(self) -> str:
        return to_hex(self.fingerprint)

    def open(self) -> BinaryIO:
        return open(self.path, "rb")

    def read_phrase(self) -> bytes:
        try:
            with self.open() as f:
                return f.read()
        except OSError as e:
            raise StorageIOError(f"Can't read stored phrase: {self.path}", self.path) from e

    def __repr__(self) -> str:
        return f"CounterEntry(count={self.count}, fingerprint={self.hex})"


def _is_in_memory(phrase: Phrase) -> bool:
    return isinstance(phrase, (bytes, bytearray, memoryview))


def _phrase_size(phrase: Phrase) -> int:
    if _is_in_memory(phrase):
        return len(phrase)
    return os.path.getsize(phrase)


def _open_phrase(phrase: Phrase) -> BinaryIO:
    if _is_in_memory(phrase):
        return io.BytesIO(phrase)
    return open(phrase, "rb")


def _same_content(stored: Path, phrase: Phrase) -> bool:
    with open(stored, "rb") as left, _open_phrase(phrase) as right:
        while True:
            a = left.read(COMPARE_BLOCK_SIZE)
            b = right.read(COMPARE_BLOCK_SIZE)
            if a != b:
                return False
            if not a:
                return True


class CounterStore:
    """Fingerprint -> (count, first-seen phrase) map kept in a directory tree.

    Args:
        root: Directory holding the tree; created on first write
        group_size: Hex characters per directory level
        algorithm: hashlib algorithm the fingerprints come from
        verify_content: Compare full phrase content on every increment, not
            only its length, when checking for digest collisions
        max_retries: Attempts at the count rename before giving up when
            other writers keep renaming the same counter
    """

    def __init__(
        self,
        root,
        group_size: int = GROUP_SIZE,
        algorithm: str = DIGEST_ALGORITHM,
        verify_content: bool = True,
        max_retries: int = MAX_RENAME_RETRIES,
    ):
        self.root = Path(root)
        self.group_size = group_size
        self.algorithm = algorithm
        self.verify_content = verify_content
        self.max_retries = max_retries
        self.digest_size = digest_size(algorithm)
        self.depth = shard_depth(self.digest_size, group_size)

    def __repr__(self) -> str:
        return f"CounterStore(root={str(self.root)!r}, algorithm={self.algorithm!r})"

    def leaf_path(self, fp: bytes) -> Path:
        if len(fp) != self.digest_size:
            raise InvalidArgumentError(
                f"Expected a {self.digest_size}-byte {self.algorithm} fingerprint, got {len(fp)} bytes"
            )
        return self.root.joinpath(*shard_parts(fp, self.group_size))

    def create_or_increment(self, fp: bytes, phrase: Phrase, by: int = 1) -> None:
        """Count ``by`` more occurrences of the phrase with fingerprint ``fp``.

        A phrase given as a Path is a scratch file; on first sight it is moved
        into the store, otherwise it is left where it is.

        Raises:
            DigestCollisionError: the stored phrase differs from ``phrase``
            StorageIOError: a directory could not be created or renamed
        """
        self._add(fp, phrase, by)

    def absorb(self, entry: CounterEntry) -> None:
        """Add an entry of another store to this one, consuming its file."""
        created = self._add(entry.fingerprint, entry.path, entry.count)
        if not created:
            try:
                os.remove(entry.path)
            except OSError as e:
                raise StorageIOError(f"Can't remove merged counter: {entry.path}", entry.path) from e

    def merge_from(self, other: "CounterStore") -> int:
        """Absorb every entry of ``other`` and drop it. Returns the number of entries merged."""
        if other.algorithm != self.algorithm or other.group_size != self.group_size:
            raise InvalidArgumentError(f"Can't merge {other!r} into {self!r}: layouts differ")
        merged = 0
        for entry in other.iter_entries():
            self.absorb(entry)
            merged += 1
        other.drop_all()
        logger.debug(f"Merged {merged} entries from {other.root} into {self.root}")
        return merged

    def iter_entries(self) -> Iterator[CounterEntry]:
        """Walk the tree depth-first, yielding one entry per leaf directory.

        The order is filesystem traversal order, not frequency order.
        """
        if not self.root.is_dir():
            return
        yield from self._walk(self.root, 0, "")

    def lookup(self, fp: bytes) -> Optional[CounterEntry]:
        leaf = self.leaf_path(fp)
        if not leaf.is_dir():
            return None
        current = self._current(leaf)
        if current is None:
            return None
        path, count = current
        return CounterEntry(fp, count, path)

    def count_of(self, phrase: bytes) -> int:
        """Occurrences recorded for ``phrase``, 0 if it was never seen."""
        entry = self.lookup(fingerprint(phrase, self.algorithm))
        return entry.count if entry is not None else 0

    def drop_all(self) -> None:
        if drop_tree(self.root):
            logger.info(f"Removed the storage directory {self.root}")

    def _add(self, fp: bytes, phrase: Phrase, by: int) -> bool:
        if by < 1:
            raise InvalidArgumentError(f"Counts can only grow, got increment {by}")
        leaf = self.leaf_path(fp)
        ensure_directory(leaf.parent)
        try:
            os.mkdir(leaf)
        except FileExistsError:
            self._increment(leaf, phrase, by)
            return False
        except OSError as e:
            raise StorageIOError(f"Can't create directory: {leaf}", leaf) from e
        self._deposit(leaf, phrase, by)
        return True

    def _deposit(self, leaf: Path, phrase: Phrase, count: int) -> None:
        target = leaf / str(count)
        try:
            if _is_in_memory(phrase):
                pending = leaf / f"{PENDING_PREFIX}pending-{os.getpid()}-{threading.get_ident()}"
                with open(pending, "wb") as f:
                    f.write(phrase)
                os.rename(pending, target)
            else:
                shutil.move(str(phrase), str(target))
        except OSError as e:
            raise StorageIOError(f"Can't store phrase counter: {target}", target) from e

    def _current(self, leaf: Path) -> Optional[Tuple[Path, int]]:
        try:
            names = [n for n in os.listdir(leaf) if not n.startswith(PENDING_PREFIX)]
        except OSError as e:
            raise StorageIOError(f"Can't list counter directory: {leaf}", leaf) from e
        if not names:
            return None
        if len(names) > 1:
            raise StorageIOError(f"Corrupt counter directory, expected one file: {leaf}", leaf)
        try:
            count = int(names[0])
        except ValueError:
            raise StorageIOError(f"Corrupt counter file name {names[0]!r} in {leaf}", leaf) from None
        return leaf / names[0], count

    def _increment(self, leaf: Path, phrase: Phrase, by: int) -> None:
        for _ in range(self.max_retries):
            current = self._current(leaf)
            if current is None:
                # Directory created by another writer whose file is not in place yet
                time.sleep(0.001)
                continue
            stored, count = current
            try:
                self._check_collision(stored, phrase)
                # Compare-and-swap: fails if another writer renamed the counter first
                os.rename(stored, leaf / str(count + by))
                return
            except FileNotFoundError:
                continue
            except OSError as e:
                raise StorageIOError(f"Can't increment counter: {stored}", stored) from e
        raise StorageIOError(f"Gave up incrementing {leaf} after {self.max_retries} attempts", leaf)

    def _check_collision(self, stored: Path, phrase: Phrase) -> None:
        stored_size = os.path.getsize(stored)
        size = _phrase_size(phrase)
        if stored_size != size:
            raise DigestCollisionError(
                f"Digest algorithm collision detected for {stored.parent}: "
                f"stored phrase has {stored_size} bytes, new one {size}",
                stored,
            )
        if self.verify_content and not _same_content(stored, phrase):
            raise DigestCollisionError(
                f"Digest algorithm collision detected for {stored.parent}: "
                f"phrases of {size} bytes differ",
                stored,
            )

    def _walk(self, directory: Path, level: int, prefix: str) -> Iterator[CounterEntry]:
        try:
            with os.scandir(directory) as it:
                children: List[Tuple[str, bool]] = [
                    (e.name, e.is_dir(follow_symlinks=False)) for e in it
                    if not e.name.startswith(PENDING_PREFIX)
                ]
        except OSError as e:
            raise StorageIOError(f"Can't walk storage directory: {directory}", directory) from e

        if level == self.depth:
            files = [name for name, is_dir in children if not is_dir]
            if len(files) != 1:
                raise StorageIOError(f"Corrupt counter directory, expected one file: {directory}", directory)
            try:
                count = int(files[0])
            except ValueError:
                raise StorageIOError(f"Corrupt counter file name {files[0]!r} in {directory}", directory) from None
            yield CounterEntry(from_hex(prefix), count, directory / files[0])
            return

        for name, is_dir in children:
            if is_dir:
                yield from self._walk(directory / name, level + 1, prefix + name)
