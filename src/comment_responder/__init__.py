"""Review-and-respond pipeline for reader comments."""

__version__ = "0.1.0"
