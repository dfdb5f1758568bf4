"""
LanXfer - Encrypted LAN File Transfer

Find a file server on the local network with a UDP broadcast, then upload or
download a single file over TLS with SHA-256 verification.
"""

__version__ = '0.1.0'
