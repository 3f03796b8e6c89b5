"""Remote command being prepared or run"""

import io
import threading
from typing import BinaryIO, Optional

from .errors import CommandError, CommandTimeoutError


class DiscardWriter(io.RawIOBase):
    """Writable sink that drops everything written to it"""

    def writable(self) -> bool:
        return True

    def write(self, data) -> int:
        return len(data)


class RemoteCommand:
    """A command to run remotely and its asynchronous completion

    The communicator calls ``init()`` before starting the command and
    ``set_exit_status()`` exactly once when the remote process terminates.
    Callers block on ``wait()``, which may be called any number of times.
    """

    def __init__(self, command: str, stdin: Optional[BinaryIO] = None,
                 stdout: Optional[BinaryIO] = None, stderr: Optional[BinaryIO] = None):
        """Initialize remote command

        Args:
            command: Command text to run remotely
            stdin: Input stream (defaults to empty input)
            stdout: Output sink (defaults to discarding output)
            stderr: Error sink (defaults to discarding output)
        """
        self.command = command
        self.stdin = stdin if stdin is not None else io.BytesIO(b"")
        self.stdout = stdout if stdout is not None else DiscardWriter()
        self.stderr = stderr if stderr is not None else DiscardWriter()

        self.exit_status = 0
        self.error: Optional[BaseException] = None

        self._exit_event = threading.Event()
        self._lock = threading.Lock()
        self._signalled = False
        self._result: Optional[CommandError] = None

    def init(self) -> None:
        """Prepare the completion signal; called by the communicator before starting"""
        with self._lock:
            self._exit_event = threading.Event()
            self._signalled = False
            self._result = None
            self.exit_status = 0
            self.error = None

    def set_exit_status(self, status: int, error: Optional[BaseException] = None) -> None:
        """Record the terminal result and fire the completion signal

        Raises:
            RuntimeError: If the command has already completed
        """
        with self._lock:
            if self._signalled:
                raise RuntimeError(f"completion already signalled for {self.command!r}")
            self.exit_status = status
            self.error = error
            if error is not None or status != 0:
                self._result = CommandError(self.command, status, error)
            self._signalled = True
        # Fields are written before the event becomes observable
        self._exit_event.set()

    @property
    def done(self) -> bool:
        return self._exit_event.is_set()

    def wait(self, timeout: Optional[float] = None) -> None:
        """Block until the remote command completes

        Args:
            timeout: Seconds to wait before giving up (None waits forever)

        Raises:
            CommandError: If an execution error was recorded or the exit status is non-zero
            CommandTimeoutError: If the command did not complete within timeout
        """
        if not self._exit_event.wait(timeout):
            raise CommandTimeoutError(self.command, timeout)

        if self._result is not None:
            raise self._result
