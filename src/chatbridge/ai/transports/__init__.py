from chatbridge.ai.transports.base import DeliverCallback, StreamTransport, TransportRequest

__all__ = ["DeliverCallback", "StreamTransport", "TransportRequest"]
