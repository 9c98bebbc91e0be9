"""Random quote homepage with Google login and a one-click-per-user counter."""

__version__ = "0.3.0"
