"""Rate limiting configuration using slowapi.

Provides a module-level Limiter instance that routers use for per-endpoint
limits, wired into the FastAPI app in main.py.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

# Default: 120 requests/minute per client IP for all endpoints.
# Bulk endpoints (broadcast) override with @limiter.limit("N/period").
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=["120/minute"],
)
