"""Coalesce file uploads into batched commits on a GitHub repository."""

__version__ = "0.1.0"
