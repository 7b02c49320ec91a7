from .request_id import RequestIDMiddleware, get_client_ip, get_request_context, get_request_id
from .security_headers import SecurityHeadersMiddleware

__all__ = [
    "RequestIDMiddleware",
    "SecurityHeadersMiddleware",
    "get_request_context",
    "get_request_id",
    "get_client_ip",
]
