from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import NamedTuple, Union

from .errors import SourceReadError

log = logging.getLogger("wsreplay.core.reader")

CHUNK_SIZE = 64 * 1024


class Record(NamedTuple):
    data: bytes
    bytes_read: int
    eof: bool


class RecordReader:
    """Forward-only reader yielding one delimiter-terminated record at a time.

    Each instance opens its own handle on the capture, so readers created for
    the same path never share a cursor. Records keep their trailing delimiter;
    the last record of a file without a trailing delimiter is returned as-is.
    """

    def __init__(self, path: Union[str, Path], delimiter: bytes) -> None:
        if len(delimiter) != 1:
            raise ValueError("delimiter must be a single byte")
        self.path = Path(path)
        self.delimiter = delimiter
        self.bytes_total = 0
        self._buf = bytearray()
        self._eos = False
        self._fh = None
        try:
            self._fh = open(self.path, "rb")
            self.file_size = os.fstat(self._fh.fileno()).st_size
        except OSError as exc:
            if self._fh is not None:
                self._fh.close()
            raise SourceReadError(str(self.path), exc) from exc

    # ------------------------------------------------------------------
    # Reading
    # ------------------------------------------------------------------

    def read_next(self) -> Record:
        """Read up to and including the next delimiter, or to end of stream."""

        start = 0
        while True:
            idx = self._buf.find(self.delimiter, start)
            if idx >= 0:
                return self._take(idx + 1)
            if self._eos:
                return self._take(len(self._buf))
            start = len(self._buf)
            self._fill()

    def at_end(self) -> bool:
        """True once nothing is left after the last record returned.

        May read ahead one chunk from the file to find out.
        """

        if self._buf:
            return False
        if not self._eos:
            self._fill()
        return self._eos and not self._buf

    def _take(self, n: int) -> Record:
        data = bytes(self._buf[:n])
        del self._buf[:n]
        self.bytes_total += n
        return Record(data=data, bytes_read=n, eof=n == 0)

    def _fill(self) -> None:
        if self._fh is None:
            raise SourceReadError(str(self.path), OSError("reader is closed"))
        try:
            chunk = self._fh.read(CHUNK_SIZE)
        except OSError as exc:
            raise SourceReadError(str(self.path), exc) from exc
        if chunk:
            self._buf += chunk
        else:
            self._eos = True

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def close(self) -> None:
        if self._fh is not None:
            self._fh.close()
            self._fh = None
            log.debug("Closed %s after %d bytes", self.path, self.bytes_total)

    @property
    def closed(self) -> bool:
        return self._fh is None

    def __enter__(self) -> "RecordReader":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


def probe_source(path: Union[str, Path]) -> int:
    """Open the capture once and return its size in bytes."""

    with RecordReader(path, b"\n") as reader:
        return reader.file_size


__all__ = ["Record", "RecordReader", "probe_source", "CHUNK_SIZE"]
