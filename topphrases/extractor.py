"""
Map phase: split a byte stream into phrases and count each one in a CounterStore.

Phrases are separated by a single separator byte or by line terminators
("\\n", "\\r" and "\\r\\n"). The source is read in fixed-size chunks and
every phrase is fingerprinted incrementally, so memory use does not depend on
the input size: at most one chunk plus the phrase being scanned (up to the
spill threshold) is held at a time.
"""
import logging
import os
import re
import threading
from pathlib import Path
from typing import BinaryIO, Optional, Tuple

from tqdm import tqdm

from topphrases.counter_store import CounterStore, Phrase
from topphrases.errors import InvalidArgumentError, StorageIOError
from topphrases.fingerprint import DIGEST_ALGORITHM, new_hasher
from topphrases.io_utils import ensure_directory

logger = logging.getLogger("topphrases.extractor")

DEFAULT_SEPARATOR = b"|"
DEFAULT_CHUNK_SIZE = int(os.environ.get("TOPPHRASES_CHUNK_SIZE", 8 * 1024))

CR = ord("\r")
LF = ord("\n")


def normalize_separator(separator) -> bytes:
    if isinstance(separator, str):
        separator = separator.encode("utf-8")
    if not isinstance(separator, (bytes, bytearray)) or len(separator) != 1:
        raise InvalidArgumentError(f"Separator must be a single byte, got {separator!r}")
    if separator in (b"\r", b"\n"):
        raise InvalidArgumentError("Line terminators always separate phrases; pick another separator")
    return bytes(separator)


class PhraseBuffer:
    """Bytes and running digest of the phrase currently being scanned.

    Up to ``spill_threshold`` bytes stay in memory. A longer phrase is moved to
    ``scratch_file`` and the rest of it is appended there, so an arbitrarily
    long phrase never has to fit in memory.
    """

    def __init__(self, scratch_file: Path, spill_threshold: int, algorithm: str = DIGEST_ALGORITHM):
        self.scratch_file = Path(scratch_file)
        self.spill_threshold = spill_threshold
        self.algorithm = algorithm
        self.length = 0
        self._hasher = new_hasher(algorithm)
        self._memory = bytearray()
        self._spill = None

    @property
    def spilled(self) -> bool:
        return self._spill is not None

    def append(self, data) -> None:
        if not data:
            return
        self._hasher.update(data)
        self.length += len(data)
        try:
            if self._spill is not None:
                self._spill.write(data)
            elif len(self._memory) + len(data) > self.spill_threshold:
                self._spill = open(self.scratch_file, "wb")
                self._spill.write(self._memory)
                self._spill.write(data)
                self._memory = bytearray()
            else:
                self._memory += data
        except OSError as e:
            raise StorageIOError(f"Can't write scratch file: {self.scratch_file}", self.scratch_file) from e

    def finish(self) -> Tuple[bytes, Phrase]:
        """Return (fingerprint, phrase) and start over with an empty phrase."""
        fp = self._hasher.digest()
        if self._spill is not None:
            self._spill.close()
            self._spill = None
            phrase = self.scratch_file
        else:
            phrase = bytes(self._memory)
        self._hasher = new_hasher(self.algorithm)
        self._memory = bytearray()
        self.length = 0
        return fp, phrase

    def discard(self) -> None:
        if self._spill is not None:
            self._spill.close()
            self._spill = None
        try:
            os.remove(self.scratch_file)
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"Failed to remove scratch file {self.scratch_file}: {e}")


def extract_stream(
    stream: BinaryIO,
    store: CounterStore,
    scratch_dir,
    separator=DEFAULT_SEPARATOR,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    spill_threshold: Optional[int] = None,
    progress: Optional[tqdm] = None,
) -> int:
    """Count every phrase of ``stream`` in ``store``.

    A separator closes the current phrase and opens the next one on the same
    line; a line terminator closes the phrase and the line. An empty line is
    therefore one empty phrase, "|||" is four, and the end of the stream adds a
    final phrase only while a line is still open.

    Args:
        stream: Binary stream to read from
        store: Store receiving one create_or_increment per phrase
        scratch_dir: Directory for phrases longer than ``spill_threshold``
        separator: Single separator byte (or one-character string)
        chunk_size: Bytes per read
        spill_threshold: Bytes of one phrase kept in memory (defaults to ``chunk_size``)
        progress: Optional tqdm bar updated with the bytes read

    Returns:
        Number of phrase instances counted
    """
    separator = normalize_separator(separator)
    if chunk_size < 1:
        raise InvalidArgumentError(f"Chunk size must be positive, got {chunk_size}")
    boundary = re.compile(b"[" + re.escape(separator) + b"\r\n]")
    scratch_file = ensure_directory(Path(scratch_dir)) / f"phrase-{os.getpid()}-{threading.get_ident()}"
    buffer = PhraseBuffer(scratch_file, spill_threshold or chunk_size, store.algorithm)

    phrases = 0
    line_open = False
    after_cr = False

    def emit():
        nonlocal phrases
        fp, phrase = buffer.finish()
        store.create_or_increment(fp, phrase)
        phrases += 1

    try:
        while True:
            try:
                chunk = stream.read(chunk_size)
            except OSError as e:
                raise StorageIOError("Can't read the phrase source") from e
            if not chunk:
                break
            if progress is not None:
                progress.update(len(chunk))

            view = memoryview(chunk)
            start = 0
            for match in boundary.finditer(chunk):
                pos = match.start()
                marker = chunk[pos]
                if marker == LF and after_cr and pos == start:
                    # Second half of "\r\n"
                    after_cr = False
                    start = pos + 1
                    continue
                buffer.append(view[start:pos])
                emit()
                after_cr = marker == CR
                line_open = marker not in (CR, LF)
                start = pos + 1

            # Carry the unfinished phrase over to the next chunk
            if start < len(chunk):
                buffer.append(view[start:])
                after_cr = False
                line_open = True

        if line_open:
            emit()
    finally:
        buffer.discard()

    return phrases


def extract_file(
    path,
    store: CounterStore,
    scratch_dir,
    separator=DEFAULT_SEPARATOR,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    spill_threshold: Optional[int] = None,
    progress: bool = False,
) -> int:
    """Count every phrase of the file at ``path`` in ``store``."""
    path = Path(path)
    try:
        size = os.path.getsize(path)
        source = open(path, "rb")
    except OSError as e:
        raise InvalidArgumentError(f"Can't read phrase source {path}: {e}") from e

    logger.info(f"Mapping phrases of {path} ({size:,} bytes)")
    with source, tqdm(total=size, unit="B", unit_scale=True, desc=f"Mapping {path.name}", disable=not progress) as bar:
        phrases = extract_stream(
            source,
            store,
            scratch_dir,
            separator=separator,
            chunk_size=chunk_size,
            spill_threshold=spill_threshold,
            progress=bar,
        )
    logger.info(f"Mapped {phrases:,} phrases from {path}")
    return phrases
