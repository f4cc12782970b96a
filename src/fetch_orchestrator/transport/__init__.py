"""
Transport implementations.
"""
from .httpx_transport import HttpxTransport, TransportHandle

__all__ = ["HttpxTransport", "TransportHandle"]
