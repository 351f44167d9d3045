"""
Middleware package for the proctor backend.
"""
from .request_logging import RequestLoggingMiddleware

__all__ = ["RequestLoggingMiddleware"]
