"""
Global slowapi rate limiter.

Imported by certificates/router.py for the redemption limit. Mounted onto
app.state in main.py so slowapi middleware can find it.

The redemption limit comes from the Settings handed to create_app (see
configure_limits) and is read on every request. Counter storage is
process-wide and fixed when this module is imported: RATE_LIMIT_STORAGE_URI
from the environment, in-memory by default. Point it at Redis when more than
one worker process serves requests.
"""
import os

from slowapi import Limiter
from slowapi.util import get_remote_address

from issuance.config import Settings

limiter = Limiter(
    key_func=get_remote_address,
    storage_uri=os.getenv("RATE_LIMIT_STORAGE_URI", "memory://"),
)

_redeem_limit = Settings.model_fields["redeem_rate_limit"].default


def configure_limits(settings: Settings) -> None:
    global _redeem_limit
    _redeem_limit = settings.redeem_rate_limit


def redeem_limit() -> str:
    """Per-IP limit for certificate redemption, e.g. ``10/hour``."""
    return _redeem_limit
