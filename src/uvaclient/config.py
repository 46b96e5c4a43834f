"""Configuration management for the analyzer client."""

import shutil
from dataclasses import dataclass
from pathlib import Path

import yaml

from uvaclient.codec import FRAMINGS

CONFIG_FILE_NAME = ".uvaclient"

INVOCATIONS = ("server", "oneshot")


@dataclass
class ClientConfig:
    """Settings for locating and talking to the analyzer.

    Attributes:
        executable: Analyzer binary name, resolved from PATH in release mode.
        development: Use the local build output instead of PATH.
        development_path: Build output path, relative to the project root.
        framing: Response framing spoken by the persistent server.
        invocation: "server" for the persistent process, "oneshot" to spawn
            one process per request.
        restart_backoff: Seconds to wait before relaunching a crashed server.
        request_timeout: Seconds to wait for one response.
        language_id: The only language id the client analyzes.
    """
    executable: str = "uvalang-analyzer"
    development: bool = False
    development_path: str = "build/uvalang-analyzer"
    framing: str = "stream"
    invocation: str = "server"
    restart_backoff: float = 3.0
    request_timeout: float = 10.0
    language_id: str = "uva"


def load_client_config(root: Path | None = None) -> ClientConfig:
    """Load client configuration from the .uvaclient file in the project root.

    Args:
        root: Project root. If None, uses current directory.

    Returns:
        ClientConfig object with loaded or default values.

    Notes:
        If the file doesn't exist or can't be parsed, returns default config.
        Unknown framing/invocation values also fall back to defaults.
        Expected YAML structure:

        ```yaml
        analyzer:
          executable: uvalang-analyzer
          development: false
          framing: length-prefixed
          restart_backoff: 3.0
        ```
    """
    if root is None:
        root = Path.cwd()

    config_path = root / CONFIG_FILE_NAME

    if not config_path.exists():
        return ClientConfig()

    try:
        with open(config_path, "r") as f:
            data = yaml.safe_load(f)

        if not isinstance(data, dict):
            return ClientConfig()

        section = data.get("analyzer", {})
        if not isinstance(section, dict):
            return ClientConfig()

        development = section.get("development", ClientConfig.development)
        if not isinstance(development, bool):
            # Quoted values like "false" would otherwise read as true
            development = ClientConfig.development

        config = ClientConfig(
            executable=str(section.get("executable", ClientConfig.executable)),
            development=development,
            development_path=str(
                section.get("development_path", ClientConfig.development_path)
            ),
            framing=str(section.get("framing", ClientConfig.framing)),
            invocation=str(section.get("invocation", ClientConfig.invocation)),
            restart_backoff=float(
                section.get("restart_backoff", ClientConfig.restart_backoff)
            ),
            request_timeout=float(
                section.get("request_timeout", ClientConfig.request_timeout)
            ),
            language_id=str(section.get("language_id", ClientConfig.language_id)),
        )
    except (yaml.YAMLError, OSError, KeyError, TypeError, ValueError):
        # Return default config on any parsing errors
        return ClientConfig()

    if config.framing not in FRAMINGS:
        config.framing = ClientConfig.framing
    if config.invocation not in INVOCATIONS:
        config.invocation = ClientConfig.invocation

    return config


def resolve_executable(config: ClientConfig, root: Path | None = None) -> str:
    """Resolve the analyzer binary for the configured mode.

    Args:
        config: Client configuration.
        root: Project root used for the development build path.

    Returns:
        Path to the analyzer binary. In release mode falls back to the bare
        executable name when it is not found on PATH, so that spawning
        reports the failure.
    """
    if config.development:
        if root is None:
            root = Path.cwd()
        return str(root / config.development_path)

    return shutil.which(config.executable) or config.executable


def server_command(config: ClientConfig, root: Path | None = None) -> list[str]:
    """Command line for the persistent analyzer server."""
    return [resolve_executable(config, root), "--server"]


def oneshot_command(
    config: ClientConfig,
    document_path: str,
    root: Path | None = None
) -> list[str]:
    """Command line for a one-shot analysis reading the document from stdin."""
    return [resolve_executable(config, root), document_path, "--stdin"]
