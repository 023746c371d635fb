"""seat-adjuster vehicle app."""

__version__ = "0.1.0"
