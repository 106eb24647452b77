"""Document + selfie identity verification service."""

__version__ = "1.0.0"
