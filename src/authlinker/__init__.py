"""AuthLinker: single-use authentication link issuance service."""

__version__ = "0.1.0"
