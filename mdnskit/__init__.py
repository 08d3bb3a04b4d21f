"""Multicast DNS service advertisement and discovery: records, zones, a responder and a client."""

__version__ = "0.1.0"
__all__ = ["records", "zone", "server", "client"]