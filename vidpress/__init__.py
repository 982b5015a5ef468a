"""vidpress - video download and compression job server."""

__version__ = "0.1.0"
