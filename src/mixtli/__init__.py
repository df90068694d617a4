"""Mixtli Transfer: presigned uploads, multipart sessions and streamed bundles."""

__version__ = "3.1.0"
