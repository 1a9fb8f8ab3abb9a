"""Traceur: records system traces by driving the Perfetto daemon."""

__version__ = "0.1.0"
