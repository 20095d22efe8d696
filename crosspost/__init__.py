"""Multi-platform post publishing pipeline."""

__version__ = "0.1.0"
