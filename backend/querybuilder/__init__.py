"""Query-builder timeseries engine and its HTTP service."""

__version__ = "1.0.0"
