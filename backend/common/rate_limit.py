"""Rate limiting with slowapi.

Only the endpoints that call the disbursement provider are throttled; each
decorated route takes ``request: Request`` so slowapi can key on the client.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from backend.config import settings

# POST /benefits/submit
SUBMIT_LIMIT = settings.RATE_LIMIT_SUBMIT
# POST /benefits/batches/{reference}/refresh
PROVIDER_REFRESH_LIMIT = settings.RATE_LIMIT_PROVIDER_REFRESH

limiter = Limiter(
    key_func=get_remote_address,
    enabled=settings.RATE_LIMIT_ENABLED,
)
