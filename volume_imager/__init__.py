"""Build bootable loopback filesystem images from a live directory tree."""

from .__version__ import __version__


__all__ = ["__version__"]
