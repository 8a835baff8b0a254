"""Image-based cancer prediction service."""

__version__ = '1.0.0'
