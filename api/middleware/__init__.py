from .request_id import RequestIDMiddleware, ip_matches
from .logging import LoggingMiddleware

__all__ = [
    "RequestIDMiddleware",
    "LoggingMiddleware",
    "ip_matches",
]
