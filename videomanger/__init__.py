"""Local video library manager: index, tag, rate and play videos from a browser."""

__version__ = "0.1.0"
__all__ = ["__version__"]