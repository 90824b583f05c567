"""Per-request session state, async item handles, streaming bodies and upstream routing for an edge compute host."""

__version__ = "0.1.0"
__all__ = ["__version__"]