"""Public facade: analyze a document snapshot and always get a result back."""

import logging
import tempfile
import time
from pathlib import Path

from uvaclient.codec import decode_payload, encode_request, get_framing
from uvaclient.config import ClientConfig, oneshot_command, server_command
from uvaclient.errors import AnalyzerError, ProtocolError
from uvaclient.models import AnalysisResult, Location
from uvaclient.oneshot import OneShotRunner
from uvaclient.projection import find_declaration
from uvaclient.supervisor import ErrorListener, ProcessSupervisor

logger = logging.getLogger(__name__)


def handoff_path(document_path: str) -> Path:
    """Temporary path the analyzer reads the document content from.

    Derived from the base name only, so same-named files in different
    directories share it.
    """
    return Path(tempfile.gettempdir()) / Path(document_path).name


def write_handoff_file(document_text: str, document_path: str) -> Path:
    path = handoff_path(document_path)
    path.write_text(document_text, encoding="utf-8")
    return path


class AnalyzerClient:
    """Combines the process supervisor and the wire codec.

    None of the analysis methods raise: every failure becomes an empty
    ``AnalysisResult`` and, where the host should know about it, a call to
    the error listeners registered with ``on_error``.
    """

    def __init__(
        self,
        config: ClientConfig | None = None,
        root: Path | None = None,
        supervisor: ProcessSupervisor | None = None,
        oneshot: OneShotRunner | None = None
    ):
        self.config = config or ClientConfig()
        self.root = root

        if supervisor is None:
            supervisor = ProcessSupervisor(
                server_command(self.config, root),
                framing=get_framing(self.config.framing),
                restart_backoff=self.config.restart_backoff,
                request_timeout=self.config.request_timeout,
            )
        self.supervisor = supervisor

        if oneshot is None:
            oneshot = OneShotRunner(
                lambda path: oneshot_command(self.config, path, root),
                timeout=self.config.request_timeout,
            )
        self.oneshot = oneshot

    def start(self) -> bool:
        """Launch the analyzer server.

        Returns:
            False if it could not be spawned; the host should show
            ``SPAWN_FAILURE_MESSAGE`` with a Retry action that calls
            ``start`` again.
        """
        if self.config.invocation == "oneshot":
            return True
        return self.supervisor.launch()

    def on_error(self, listener: ErrorListener) -> None:
        """Subscribe to runtime errors; the subscription survives restarts."""
        self.supervisor.add_error_listener(listener)

    def close(self) -> None:
        self.supervisor.close()

    def _supports(self, language_id: str, document_path: str) -> bool:
        if language_id != self.config.language_id:
            logger.debug(
                f"Skipping {document_path}: language '{language_id}' is not "
                f"'{self.config.language_id}'"
            )
            return False
        return True

    def _fail(self, error: AnalyzerError) -> AnalysisResult:
        self.supervisor.report(error)
        return AnalysisResult.empty()

    def analyze(
        self,
        document_text: str,
        document_path: str,
        language_id: str
    ) -> AnalysisResult:
        """Analyze a document snapshot.

        Args:
            document_text: Current (possibly unsaved) document content.
            document_path: Original path of the document.
            language_id: Host language id; anything else than the configured
                language returns an empty result without any process work.

        Returns:
            The decoded result, or an empty result on any failure.
        """
        if not self._supports(language_id, document_path):
            return AnalysisResult.empty()

        start = time.monotonic()

        if self.config.invocation == "oneshot":
            try:
                result = self.oneshot.run(document_text, document_path)
            except AnalyzerError as e:
                logger.error(f"Analysis of {document_path} failed: {e}")
                return self._fail(e)
        else:
            try:
                handoff = write_handoff_file(document_text, document_path)
            except OSError as e:
                logger.error(f"Unable to write handoff file for {document_path}: {e}")
                return self._fail(ProtocolError(f"unable to write handoff file: {e}"))

            try:
                payload = self.supervisor.request(encode_request(document_path, str(handoff)))
            except AnalyzerError as e:
                # Already delivered to the listeners by the supervisor
                logger.error(f"Analysis of {document_path} failed: {e}")
                return AnalysisResult.empty()

            try:
                result = decode_payload(payload)
            except ProtocolError as e:
                logger.error(f"Analysis of {document_path} returned an unusable response: {e}")
                return self._fail(e)

        elapsed_ms = (time.monotonic() - start) * 1000
        logger.info(
            f"Analysis of {document_path} succeeded in {elapsed_ms:.0f}ms "
            f"(reported {result.elapsed})"
        )
        return result

    def tokens(
        self,
        document_text: str,
        document_path: str,
        language_id: str
    ) -> AnalysisResult:
        """Run a one-shot token query; only ``tokens`` is expected to be filled."""
        if not self._supports(language_id, document_path):
            return AnalysisResult.empty()

        try:
            return self.oneshot.run(document_text, document_path)
        except AnalyzerError as e:
            logger.error(f"Token query for {document_path} failed: {e}")
            return self._fail(e)

    def definition(
        self,
        document_text: str,
        document_path: str,
        language_id: str,
        name: str
    ) -> Location | None:
        """Find where ``name`` is declared, for "go to definition"."""
        result = self.analyze(document_text, document_path, language_id)
        declaration = find_declaration(result, name)
        return declaration.location if declaration else None
