"""
Auth services package: issuance rate limiting and audit logging
"""
from .rate_limit import RateLimitService
from .audit import AuditService, RequestContext

__all__ = [
    "RateLimitService",
    "AuditService",
    "RequestContext",
]
