"""
api/limiter.py -- Shared slowapi rate limiter instance.

Import this in api/main.py (to mount as middleware) and in
api/routes/v1/auth.py (to apply per-route limits with @limiter.limit()).

Retry limits on passwords and one-time codes live here, not in the auth core:
the challenge manager never locks a code after N failures, so these limits
are what bounds brute-force of a 6-digit code within its TTL.

A single shared instance keeps every route on the same in-memory counter
store. Separate instances per module would each count in isolation and the
limits would never trigger.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from core.config import get_settings

limiter = Limiter(key_func=get_remote_address, storage_uri="memory://")

# Applied to every endpoint that checks a password or a code.
CREDENTIAL_LIMIT = get_settings().login_rate_limit
