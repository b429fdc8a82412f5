from .httpx_transport import HttpxResponse, HttpxTransport, build_httpx_request

__all__ = ["HttpxTransport", "HttpxResponse", "build_httpx_request"]
