"""One process per request: the document is piped in, the result read until exit."""

import logging
import subprocess
import time
from typing import Callable

from uvaclient.codec import decode_document
from uvaclient.errors import ProcessCrash, ProtocolError, SpawnFailure
from uvaclient.models import AnalysisResult

logger = logging.getLogger(__name__)


class OneShotRunner:
    """Runs ``analyzer <path> --stdin`` for a single document.

    Each call owns its process, so responses can never be confused between
    concurrent callers.
    """

    def __init__(self, command_factory: Callable[[str], list[str]], timeout: float = 10.0):
        """Initialize the runner.

        Args:
            command_factory: Builds the command line for a document path.
            timeout: Seconds to wait for the process to finish.
        """
        self.command_factory = command_factory
        self.timeout = timeout

    def run(self, document_text: str, document_path: str) -> AnalysisResult:
        """Analyze ``document_text`` in a fresh analyzer process.

        Raises:
            SpawnFailure: If the process could not be started.
            ProcessCrash: If it failed without producing output.
            ProtocolError: If it timed out or its output is not valid JSON.
        """
        command = self.command_factory(document_path)
        start = time.monotonic()

        try:
            process = subprocess.Popen(
                command,
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
            )
        except (OSError, ValueError) as e:
            logger.error(f"Failed to start analyzer {command[0]}: {e}")
            raise SpawnFailure(f"Unable to start {command[0]}: {e}") from e

        try:
            stdout, stderr = process.communicate(
                document_text.encode("utf-8"), timeout=self.timeout
            )
        except subprocess.TimeoutExpired as e:
            process.kill()
            process.communicate()
            raise ProtocolError(f"analyzer did not finish within {self.timeout}s") from e

        if process.returncode != 0 and not stdout.strip():
            if stderr:
                logger.error(f"Analyzer stderr: {stderr.decode('utf-8', errors='replace')}")
            raise ProcessCrash(process.returncode)

        result = decode_document(stdout)

        elapsed_ms = (time.monotonic() - start) * 1000
        logger.debug(f"One-shot analysis of {document_path} finished in {elapsed_ms:.0f}ms")
        return result
