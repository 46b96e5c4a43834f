"""Error taxonomy for the analyzer client.

None of these escape ``AnalyzerClient``: they are either turned into an empty
``AnalysisResult`` or delivered to the registered error listeners.
"""

SPAWN_FAILURE_MESSAGE = (
    "Unable to start analyzer server. Make sure uvalang-analyzer is installed "
    "and is in your PATH. If you have just installed it, you may need to "
    "restart your editor or your computer."
)


class AnalyzerError(Exception):
    """Base class for all analyzer client failures."""


class SpawnFailure(AnalyzerError):
    """The analyzer process could not be started or has no pid."""


class ProcessCrash(AnalyzerError):
    """The analyzer process exited while it was expected to keep running."""

    def __init__(self, exit_code: int | None):
        self.exit_code = exit_code
        super().__init__(f"Exited with code {exit_code}")


class ProtocolError(AnalyzerError):
    """The request could not be written or the response could not be decoded."""


class StreamClosed(ProtocolError):
    """The analyzer output stream ended in the middle of a response."""


class MalformedElement(AnalyzerError):
    """A single list entry in a response could not be converted."""


def restart_notice(error: Exception) -> str:
    """Transient user-facing message for runtime errors."""
    return f"{error}. The server will be restarted."
