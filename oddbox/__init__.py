"""Reverse-proxy configuration: parsing, upgrading, validating and writing, plus TLS certificate resolution."""

__version__ = "0.1.0"