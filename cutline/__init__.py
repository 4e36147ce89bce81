"""cutline: server-side rendering of non-destructive video edit plans."""

__version__ = "0.1.0"
