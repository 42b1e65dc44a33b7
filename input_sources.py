import logging
import os
import stat
import sys
from enum import Enum
from typing import BinaryIO, Optional, Tuple

import serial

logger = logging.getLogger(__name__)

BUFFER_SIZE = 8192
MODEM_IDENTIFY = b"ATI\r\n"
STDIN_NAMES = ("stdin", "-")


class InputKind(Enum):
    UNKNOWN = "unknown"
    CELL_MODEM = "cell_modem"
    CONTROLLER_LOG = "controller_log"
    TEXT_COMMANDS = "text_commands"


class InputSetupError(Exception):
    """An input source could not be opened at startup."""


class LineBuffer:
    """Accumulates bytes until a CR or LF completes a line."""

    def __init__(self, max_bytes: int = BUFFER_SIZE):
        self.max_bytes = max_bytes
        self._buf = bytearray()
        self._overflowed = False

    def __len__(self) -> int:
        return len(self._buf)

    def feed(self, chunk: bytes) -> Optional[str]:
        line = None
        for byte in chunk:
            if byte in (0x0A, 0x0D):
                if not self._overflowed and self._buf:
                    line = self._buf.decode("utf-8", errors="replace")
                self._buf.clear()
                self._overflowed = False
                continue
            if len(self._buf) >= self.max_bytes - 1:
                if not self._overflowed:
                    logger.warning("Discarding over-long input line (%s bytes)", len(self._buf))
                self._overflowed = True
                self._buf.clear()
            if not self._overflowed:
                self._buf.append(byte)
        return line


class InputSource:
    is_local = False

    def __init__(self, label: str):
        self.label = label
        self.kind = InputKind.UNKNOWN
        self.buffer = LineBuffer()

    def read_byte(self) -> bytes:
        raise NotImplementedError

    def write_reply(self, text: str) -> None:
        logger.debug("No reply channel for %s", self.label)

    def close(self) -> None:
        pass

    def poll(self) -> Tuple[bool, Optional[str]]:
        """Read at most one byte. Returns (got_data, completed_line)."""
        chunk = self.read_byte()
        if not chunk:
            return False, None
        return True, self.buffer.feed(chunk)

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.label!r}, kind={self.kind.value})"


class StdinSource(InputSource):
    is_local = True

    def __init__(self, label: str = "-", stream=None, out=None):
        super().__init__(label)
        self.stream = stream or sys.stdin
        self.out = out or sys.stdout
        self.fd = self.stream.fileno()
        os.set_blocking(self.fd, False)
        self.kind = InputKind.TEXT_COMMANDS

    def read_byte(self) -> bytes:
        try:
            return os.read(self.fd, 1)
        except BlockingIOError:
            return b""

    def write_reply(self, text: str) -> None:
        self.out.write(text.rstrip("\n") + "\r\n")
        self.out.flush()

    def close(self) -> None:
        os.set_blocking(self.fd, True)


class FileSource(InputSource):
    """Tails a log file: only lines written after startup are seen."""

    def __init__(self, path: str):
        super().__init__(path)
        try:
            self._file: BinaryIO = open(path, "rb")
            offset = self._file.seek(0, os.SEEK_END)
        except OSError as exc:
            raise InputSetupError(f"Could not open '{path}' for read: {exc}") from exc
        logger.info("Seeked to offset %s of '%s'", offset, path)

    def read_byte(self) -> bytes:
        return self._file.read(1)

    def close(self) -> None:
        self._file.close()


class SerialSource(InputSource):
    def __init__(self, path: str, baudrate: int = 115200):
        super().__init__(path)
        try:
            self.port = serial.Serial(path, baudrate=baudrate, timeout=0, write_timeout=1)
        except (serial.SerialException, OSError) as exc:
            raise InputSetupError(f"Could not open '{path}' for read and write: {exc}") from exc
        # Ask a cellular modem to identify itself; the answer is read like any other line.
        self.port.write(MODEM_IDENTIFY)

    def read_byte(self) -> bytes:
        try:
            return self.port.read(1)
        except serial.SerialException as exc:
            logger.error("Read from %s failed: %s", self.label, exc)
            return b""

    def write_reply(self, text: str) -> None:
        try:
            self.port.write(text.encode("utf-8") + b"\r\n")
        except serial.SerialException as exc:
            logger.error("Could not write reply to %s: %s", self.label, exc)

    def close(self) -> None:
        self.port.close()


def open_input(name: str, baudrate: int = 115200) -> InputSource:
    if name in STDIN_NAMES:
        logger.info("Registering stdin as input stream")
        return StdinSource(name)

    try:
        st = os.stat(name)
    except OSError as exc:
        raise InputSetupError(f"stat('{name}') failed: {exc}") from exc

    if stat.S_ISREG(st.st_mode):
        logger.info("'%s' is a regular file", name)
        return FileSource(name)
    if stat.S_ISCHR(st.st_mode):
        logger.info("'%s' is a character device", name)
        return SerialSource(name, baudrate=baudrate)
    raise InputSetupError(f"Input file '{name}' is neither regular file nor character device.")
