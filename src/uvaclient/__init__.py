"""uvaclient - analyzer client for the Uva language."""

try:
    from importlib.metadata import version

    __version__ = version("uvaclient")
except Exception:
    __version__ = "0.0.0.dev0+local"  # Fallback for development
