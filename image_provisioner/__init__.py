"""Provision embedded Linux device images (.wic, .wic.gz, .wic.xz, ...)."""

from .__version__ import __version__

__all__ = ["__version__"]
