"""Analyzer process supervision.

Keeps exactly one analyzer server usable: spawns it, notices when it exits,
relaunches it after a fixed backoff and serializes requests over its stdio.
"""

import logging
import subprocess
import threading
import time
from typing import Any, Callable

from uvaclient.codec import Framing, StreamFraming
from uvaclient.errors import (
    AnalyzerError,
    ProcessCrash,
    ProtocolError,
    SpawnFailure,
    StreamClosed,
    restart_notice,
)

logger = logging.getLogger(__name__)

ErrorListener = Callable[[AnalyzerError], None]


class AnalyzerProcess:
    """One analyzer process with its stdio pipes.

    Never replaced in place: the supervisor discards a dead instance and
    builds a new one.
    """

    def __init__(
        self,
        command: list[str],
        on_exit: Callable[[ProcessCrash], None] | None = None
    ):
        """Initialize the process wrapper.

        Args:
            command: Command line to spawn.
            on_exit: Called once, from the watcher thread, if the process
                exits without ``stop()`` having been called.
        """
        self.command = command
        self.on_exit = on_exit
        self.process: subprocess.Popen | None = None
        self.last_error: AnalyzerError | None = None
        self._stopping = False
        self._watcher: threading.Thread | None = None

    @property
    def pid(self) -> int | None:
        return self.process.pid if self.process else None

    @property
    def running(self) -> bool:
        return (
            self.process is not None
            and not self._stopping
            and self.process.poll() is None
        )

    @property
    def stdout(self):
        return self.process.stdout if self.process else None

    def launch(self) -> bool:
        """Spawn the process.

        Returns:
            True if the process started, False if it could not be spawned
            (``last_error`` then holds a ``SpawnFailure``).
        """
        start = time.monotonic()
        try:
            self.process = subprocess.Popen(
                self.command,
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
            )
        except (OSError, ValueError) as e:
            logger.error(f"Failed to start analyzer {self.command[0]}: {e}")
            self.last_error = SpawnFailure(f"Unable to start {self.command[0]}: {e}")
            return False

        if not self.process.pid:
            logger.error(f"Analyzer {self.command[0]} started without a process id")
            self.last_error = SpawnFailure(f"Unable to start {self.command[0]}: no process id")
            self.process = None
            return False

        elapsed_ms = (time.monotonic() - start) * 1000
        logger.info(f"Analyzer server started in {elapsed_ms:.0f}ms (PID {self.process.pid})")

        self._watcher = threading.Thread(
            target=self._watch,
            daemon=True,
            name=f"analyzer-watch-{self.process.pid}"
        )
        self._watcher.start()
        threading.Thread(
            target=self._drain_stderr,
            daemon=True,
            name=f"analyzer-stderr-{self.process.pid}"
        ).start()
        return True

    def _watch(self) -> None:
        code = self.process.wait()
        if self._stopping:
            return

        logger.error(f"Analyzer process {self.process.pid} exited with code {code}")
        self.last_error = ProcessCrash(code)
        if self.on_exit:
            self.on_exit(self.last_error)

    def _drain_stderr(self) -> None:
        # An undrained stderr pipe would eventually block the analyzer
        stream = self.process.stderr
        try:
            for line in iter(stream.readline, b""):
                logger.debug(f"[analyzer] {line.decode('utf-8', errors='replace').rstrip()}")
        except (OSError, ValueError):
            pass

    def send(self, data: bytes) -> bool:
        """Write a request to the process input.

        Returns:
            True if written, False if stdin is not writable (``last_error``
            then holds a ``ProtocolError``).
        """
        stdin = self.process.stdin if self.process else None
        if stdin is None or stdin.closed or not self.running:
            self.last_error = ProtocolError("stdin is not writable")
            return False

        try:
            stdin.write(data)
            stdin.flush()
        except (OSError, ValueError) as e:
            logger.error(f"Error writing to analyzer stdin: {e}")
            self.last_error = ProtocolError(f"unable to write command: {e}")
            return False
        return True

    def wait(self, timeout: float) -> int | None:
        """Wait for the process to exit; returns its exit code or None."""
        if self.process is None:
            return None
        try:
            return self.process.wait(timeout=timeout)
        except subprocess.TimeoutExpired:
            return None

    def join_watcher(self, timeout: float) -> None:
        """Block until the exit watcher has delivered its report."""
        if self._watcher is not None and self._watcher is not threading.current_thread():
            self._watcher.join(timeout)

    def stop(self) -> None:
        """Terminate the process on purpose; no crash is reported."""
        self._stopping = True
        process = self.process
        if process is None:
            return

        # Terminate before closing pipes: a reader may still be blocked on stdout
        try:
            if process.poll() is None:
                process.terminate()
                try:
                    process.wait(timeout=1)
                except subprocess.TimeoutExpired:
                    logger.warning("Analyzer did not terminate gracefully, forcing kill")
                    process.kill()
                    process.wait(timeout=1)
        except (OSError, subprocess.TimeoutExpired) as e:
            logger.error(f"Error stopping analyzer process: {e}")

        for stream in (process.stdin, process.stdout, process.stderr):
            if stream:
                try:
                    stream.close()
                except OSError as e:
                    logger.debug(f"Error closing analyzer pipe: {e}")

        logger.info(f"Analyzer process stopped (exit code: {process.returncode})")


class ProcessSupervisor:
    """Owns the analyzer server and restarts it whenever it fails.

    Error listeners are registered once on the supervisor and survive every
    instance replacement. Requests are serialized by a lock, so at most one
    request is in flight against the current process.
    """

    def __init__(
        self,
        command: list[str],
        framing: Framing | None = None,
        restart_backoff: float = 3.0,
        request_timeout: float = 10.0
    ):
        self.command = list(command)
        self.framing = framing or StreamFraming()
        self.restart_backoff = restart_backoff
        self.request_timeout = request_timeout
        self.last_error: AnalyzerError | None = None

        self._instance: AnalyzerProcess | None = None
        self._listeners: list[ErrorListener] = []
        self._lock = threading.RLock()
        self._restart_lock = threading.Lock()
        self._restart_timer: threading.Timer | None = None
        self._closed = False

    @property
    def running(self) -> bool:
        instance = self._instance
        return instance is not None and instance.running

    @property
    def pid(self) -> int | None:
        instance = self._instance
        return instance.pid if instance else None

    @property
    def restart_pending(self) -> bool:
        return self._restart_timer is not None

    def add_error_listener(self, listener: ErrorListener) -> None:
        self._listeners.append(listener)

    def remove_error_listener(self, listener: ErrorListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def report(self, error: AnalyzerError) -> None:
        """Deliver an error to every listener."""
        self.last_error = error
        for listener in list(self._listeners):
            try:
                listener(error)
            except Exception:
                logger.exception(f"Error listener failed while handling: {error}")

    def launch(self) -> bool:
        """Start the first analyzer instance.

        Returns:
            False if the process could not be spawned. This is recoverable:
            the host offers a retry, which calls ``launch`` again.
        """
        with self._lock:
            self._closed = False
            instance = self._spawn()
            if instance is None:
                return False
            self._instance = instance
            return True

    def _spawn(self) -> AnalyzerProcess | None:
        instance = AnalyzerProcess(self.command, on_exit=self._handle_crash)
        if not instance.launch():
            self.last_error = instance.last_error
            return None
        return instance

    def _handle_crash(self, error: ProcessCrash) -> None:
        logger.warning(restart_notice(error))
        self.report(error)
        self._schedule_restart()

    def _schedule_restart(self) -> None:
        with self._restart_lock:
            if self._closed or self._restart_timer is not None:
                return
            logger.info(f"Restarting analyzer server in {self.restart_backoff}s")
            self._restart_timer = threading.Timer(self.restart_backoff, self._restart)
            self._restart_timer.daemon = True
            self._restart_timer.start()

    def _restart(self) -> None:
        with self._restart_lock:
            self._restart_timer = None
            if self._closed:
                return

        with self._lock:
            if self._instance is not None:
                self._instance.stop()
                self._instance = None
            instance = self._spawn()
            self._instance = instance

        if instance is None:
            # No retry limit: keep trying on the same fixed backoff
            self.report(self.last_error or SpawnFailure("Unable to restart analyzer"))
            self._schedule_restart()
        else:
            logger.info(f"Analyzer server restarted (PID {instance.pid})")

    def _discard(self, instance: AnalyzerProcess) -> None:
        with self._lock:
            if self._instance is instance:
                self._instance = None
        instance.stop()

    def _read_response(self, instance: AnalyzerProcess) -> Any:
        """Read one framed response, giving up after ``request_timeout``."""
        response_event = threading.Event()
        response_container: list = [None, None]  # payload, error

        def reader():
            try:
                response_container[0] = self.framing.read_response(instance.stdout)
            except Exception as e:
                response_container[1] = e
            finally:
                response_event.set()

        threading.Thread(target=reader, daemon=True, name="analyzer-reader").start()

        if not response_event.wait(self.request_timeout):
            raise ProtocolError(f"no response within {self.request_timeout}s")

        error = response_container[1]
        if isinstance(error, (OSError, ValueError)) and not isinstance(error, AnalyzerError):
            raise StreamClosed(f"analyzer output is no longer readable: {error}") from error
        if error is not None:
            raise error
        return response_container[0]

    def request(self, data: bytes) -> Any:
        """Send one request and return the decoded JSON response.

        Raises:
            ProtocolError: If the request could not be written, or the response
                timed out or could not be decoded. Listeners have already been
                told, except for ``StreamClosed`` caused by a crash, which the
                exit watcher reports.
        """
        with self._lock:
            instance = self._instance
            if instance is None or not instance.send(data):
                error = (
                    instance.last_error
                    if instance is not None
                    else ProtocolError("stdin is not writable")
                )
                logger.error(f"Unable to write command: {error}")
                self.report(error)
                self._schedule_restart()
                raise error

            start = time.monotonic()
            try:
                payload = self._read_response(instance)
            except StreamClosed as e:
                if instance.wait(timeout=1.0) is None:
                    # Output closed but the process lives on; it is unusable
                    self.report(e)
                    self._discard(instance)
                    self._schedule_restart()
                else:
                    # Deliver the crash before the caller sees the failure
                    instance.join_watcher(timeout=1.0)
                raise
            except ProtocolError as e:
                logger.error(f"Analyzer request failed: {e}")
                self.report(e)
                self._discard(instance)
                self._schedule_restart()
                raise

            elapsed_ms = (time.monotonic() - start) * 1000
            logger.debug(f"Analyzer responded in {elapsed_ms:.0f}ms")
            return payload

    def close(self) -> None:
        """Stop the analyzer and cancel any pending restart."""
        with self._restart_lock:
            self._closed = True
            if self._restart_timer is not None:
                self._restart_timer.cancel()
                self._restart_timer = None

        with self._lock:
            instance = self._instance
            self._instance = None
        if instance is not None:
            instance.stop()
