# autoshut_stream.py
# STEAM AUTO-SHUTDOWN STREAM SCANNER
# Version: 1.0.0

"""
STREAM SCANNER
==============
Constant-memory pattern search over forward-only byte streams.

Used to pull the app name out of a store page without buffering the page:
the body is scanned for a start marker, then everything up to an end marker
is captured.

COMPONENTS:
- ByteReader: adapts file-like objects and chunk iterators to exact reads
- WindowMatcher: ring-buffer window compared against the pattern on every byte
- PrefixAutomaton: Knuth-Morris-Pratt state machine with the same interface
- match_pattern / extract_between / scan_between: the public scan functions

No function in this module raises because of the stream. A stream that ends
early or fails mid-read is reported as "not found" (or READ_ERROR through
scan_between).
"""

from dataclasses import dataclass
from typing import Iterable, List, Optional, Union

# =========================================================
# CONSTANTS
# =========================================================

STRATEGY_WINDOW = "window"
STRATEGY_KMP = "kmp"
DEFAULT_STRATEGY = STRATEGY_WINDOW

STATUS_FOUND = "found"
STATUS_NOT_FOUND = "not_found"
STATUS_READ_ERROR = "read_error"


# =========================================================
# SCAN RESULT
# =========================================================
@dataclass(frozen=True)
class ScanResult:
    """
    Outcome of a delimited scan.

    status is one of STATUS_FOUND, STATUS_NOT_FOUND, STATUS_READ_ERROR.
    data holds the captured bytes only when status is STATUS_FOUND.
    error holds the exception raised by the stream for STATUS_READ_ERROR.
    """
    status: str
    data: Optional[bytes] = None
    error: Optional[BaseException] = None

    @property
    def found(self) -> bool:
        return self.status == STATUS_FOUND


# =========================================================
# BYTE READER
# =========================================================
class ByteReader:
    """
    Forward-only reader over a byte source.

    The source is either an object with read(n) (files, BytesIO, raw HTTP
    responses) or an iterable of bytes chunks (Response.iter_content). File-like
    sources are never read past the bytes actually requested, so the source
    position after a scan is exactly where the scan stopped.
    """

    def __init__(self, source: Union[Iterable[bytes], object]):
        if hasattr(source, "read"):
            self._read = source.read
            self._chunks = None
        else:
            self._read = None
            self._chunks = iter(source)

        self._buffer = b""
        self._offset = 0
        self.exhausted = False
        self.error: Optional[BaseException] = None

    @classmethod
    def wrap(cls, source) -> "ByteReader":
        """Return source itself if it already is a ByteReader."""
        if isinstance(source, cls):
            return source
        return cls(source)

    def _fill(self, wanted: int) -> bool:
        """Load the next block from the source. False once the source is done."""
        if self.exhausted:
            return False

        try:
            if self._chunks is not None:
                chunk = b""
                while not chunk:
                    chunk = next(self._chunks)
            else:
                chunk = self._read(wanted)
        except StopIteration:
            chunk = b""
        except Exception as e:
            # requests and urllib3 errors both land here
            self.error = e
            chunk = b""

        if not chunk:
            self.exhausted = True
            return False

        self._buffer = bytes(chunk)
        self._offset = 0
        return True

    def read_exact(self, size: int) -> Optional[bytes]:
        """
        Read exactly size bytes.

        Returns:
            The bytes, or None if the source ended or failed first
        """
        out = bytearray()
        while len(out) < size:
            if self._offset >= len(self._buffer):
                if not self._fill(size - len(out)):
                    return None
            take = min(size - len(out), len(self._buffer) - self._offset)
            out += self._buffer[self._offset:self._offset + take]
            self._offset += take
        return bytes(out)

    def read_byte(self) -> Optional[int]:
        """Read a single byte as an int, or None at end of stream."""
        if self._offset >= len(self._buffer):
            if not self._fill(1):
                return None
        byte = self._buffer[self._offset]
        self._offset += 1
        return byte

    def miss(self) -> ScanResult:
        """Result to report when a scan ran out of stream."""
        if self.error is not None:
            return ScanResult(STATUS_READ_ERROR, error=self.error)
        return ScanResult(STATUS_NOT_FOUND)


# =========================================================
# MATCHERS
# =========================================================
def _check_pattern(pattern: bytes) -> bytes:
    if not pattern:
        raise ValueError("pattern must not be empty")
    return bytes(pattern)


class WindowMatcher:
    """
    Sliding window of the last len(pattern) bytes, kept in a ring buffer.

    Each admitted byte overwrites the oldest slot, then the whole window is
    compared with the pattern.
    """

    def __init__(self, pattern: bytes):
        self.pattern = _check_pattern(pattern)
        self.size = len(self.pattern)
        self._window = bytearray(self.size)
        self._head = 0      # slot holding the oldest byte
        self._filled = 0

    def reset(self):
        self._head = 0
        self._filled = 0

    def admit(self, byte: int) -> bool:
        """Push one byte; True when the window now equals the pattern."""
        self._window[self._head] = byte
        self._head = (self._head + 1) % self.size

        if self._filled < self.size:
            self._filled += 1
            if self._filled < self.size:
                return False

        return self._matches()

    def seed(self, block: bytes) -> bool:
        matched = False
        for byte in block:
            matched = self.admit(byte)
        return matched

    def _matches(self) -> bool:
        split = self.size - self._head
        return (self._window[self._head:] == self.pattern[:split]
                and self._window[:self._head] == self.pattern[split:])


def _failure_table(pattern: bytes) -> List[int]:
    table = [0] * len(pattern)
    k = 0
    for i in range(1, len(pattern)):
        while k and pattern[i] != pattern[k]:
            k = table[k - 1]
        if pattern[i] == pattern[k]:
            k += 1
        table[i] = k
    return table


class PrefixAutomaton:
    """
    Knuth-Morris-Pratt matcher: tracks the longest pattern prefix that is a
    suffix of the bytes seen so far. Amortised O(1) per byte.
    """

    def __init__(self, pattern: bytes):
        self.pattern = _check_pattern(pattern)
        self.size = len(self.pattern)
        self._failure = _failure_table(self.pattern)
        self._state = 0

    def reset(self):
        self._state = 0

    def admit(self, byte: int) -> bool:
        state = self._state
        if state == self.size:
            state = self._failure[state - 1]
        while state and self.pattern[state] != byte:
            state = self._failure[state - 1]
        if self.pattern[state] == byte:
            state += 1
        self._state = state
        return state == self.size

    def seed(self, block: bytes) -> bool:
        matched = False
        for byte in block:
            matched = self.admit(byte)
        return matched


MATCHERS = {
    STRATEGY_WINDOW: WindowMatcher,
    STRATEGY_KMP: PrefixAutomaton,
}


def make_matcher(pattern: bytes, strategy: str = DEFAULT_STRATEGY):
    """Build a matcher for pattern using the named strategy."""
    try:
        matcher_cls = MATCHERS[strategy]
    except KeyError:
        raise ValueError(f"Unknown match strategy: {strategy!r}") from None
    return matcher_cls(pattern)


# =========================================================
# SCAN FUNCTIONS
# =========================================================
def _advance_to(matcher, reader: ByteReader) -> bool:
    """Consume the reader until matcher fires. False if the stream runs out."""
    block = reader.read_exact(matcher.size)
    if block is None:
        return False
    if matcher.seed(block):
        return True

    while True:
        byte = reader.read_byte()
        if byte is None:
            return False
        if matcher.admit(byte):
            return True


def match_pattern(pattern: bytes, stream, strategy: str = DEFAULT_STRATEGY) -> bool:
    """
    Scan stream forward until pattern has been read.

    The stream is left positioned right after the match. A stream shorter
    than the pattern, or one that fails, simply gives False.
    """
    matcher = make_matcher(pattern, strategy)
    return _advance_to(matcher, ByteReader.wrap(stream))


def scan_between(start: bytes, end: bytes, stream,
                 strategy: str = DEFAULT_STRATEGY) -> ScanResult:
    """
    Capture the bytes between the first start marker and the next end marker.

    Args:
        start: Marker to skip to
        end: Marker that closes the capture
        stream: File-like object, chunk iterable or ByteReader
        strategy: STRATEGY_WINDOW or STRATEGY_KMP

    Returns:
        ScanResult. Empty content (end directly after start) is NOT_FOUND.
    """
    start_matcher = make_matcher(start, strategy)
    end_matcher = make_matcher(end, strategy)
    reader = ByteReader.wrap(stream)

    if not _advance_to(start_matcher, reader):
        return reader.miss()

    block = reader.read_exact(end_matcher.size)
    if block is None or end_matcher.seed(block):
        return reader.miss()

    # bytes are captured before we know whether they open the end marker
    capture = bytearray(block)
    trim = end_matcher.size - 1

    while True:
        byte = reader.read_byte()
        if byte is None:
            return reader.miss()
        if end_matcher.admit(byte):
            if trim:
                del capture[-trim:]
            return ScanResult(STATUS_FOUND, data=bytes(capture))
        capture.append(byte)


def extract_between(start: bytes, end: bytes, stream,
                    strategy: str = DEFAULT_STRATEGY) -> Optional[bytes]:
    """Captured bytes between start and end, or None when not found."""
    return scan_between(start, end, stream, strategy).data
