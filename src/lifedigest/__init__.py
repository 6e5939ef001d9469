"""lifedigest - digest pipeline and hybrid search for personal files."""

__version__ = "0.1.0"
