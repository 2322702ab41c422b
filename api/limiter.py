"""
api/limiter.py -- The one slowapi Limiter for the process.

api/main.py mounts it (app.state.limiter + SlowAPIMiddleware) and
api/routes/v1/auth.py decorates login, google, resend-verification and
forgot-password with it. Limits are keyed by client address.

Counters live in process memory. Behind several workers, each worker enforces
the limit on its own share of the traffic.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

limiter = Limiter(key_func=get_remote_address, storage_uri="memory://")
