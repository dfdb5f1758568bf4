"""
Transfer Module - File Upload/Download

Wire protocol and the server/client session logic over TLS.
"""

from .protocol import (
    OpCode,
    TransferHeader,
    read_header,
    read_opcode,
    read_request,
    send_header,
    send_opcode,
    send_request,
)
from .server import Session, SessionOutcome, SessionState, TransferServer
from .client import (
    TransferClient,
    TransferConnection,
    TransferProgress,
    TransferResult,
    resolve_address,
)

__all__ = [
    'OpCode',
    'TransferHeader',
    'read_header',
    'read_opcode',
    'read_request',
    'send_header',
    'send_opcode',
    'send_request',
    'Session',
    'SessionOutcome',
    'SessionState',
    'TransferServer',
    'TransferClient',
    'TransferConnection',
    'TransferProgress',
    'TransferResult',
    'resolve_address',
]
