"""Version information for the CFMM arbitrage system."""

__version__ = "0.3.0"


def get_version() -> str:
    """Version string shown by ``cfmm-arb --version``."""
    return __version__
