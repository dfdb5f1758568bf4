"""
Error Types

Every failure the transfer engine can surface derives from LanXferError so
callers can catch the whole family at an operation boundary.
"""


class LanXferError(Exception):
    """Base class for all lanxfer errors."""


class TransportSetupError(LanXferError):
    """Key generation or certificate encoding failed. Not retryable."""


class TransportError(LanXferError):
    """Could not bind, listen, connect or complete the TLS handshake."""


class FramingError(LanXferError):
    """Short read/write or malformed field in the wire protocol."""


class DiscoveryError(LanXferError):
    """No file server could be located on the local network."""


class IntegrityError(LanXferError):
    """Received content does not match the advertised checksum."""


class InvalidNameError(LanXferError, ValueError):
    """A requested or uploaded file name has no usable base name."""
