"""Parse InfiniBand fabric diagnostic archives, store their topology and serve it over HTTP."""

__version__ = "0.1.0"