from .forwarder import ProxyForwarder

__all__ = ["ProxyForwarder"]
