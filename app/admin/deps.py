"""Admin auth: X-Admin-Secret header, constant-time compare."""
import hmac

from fastapi import Header, HTTPException

from app.core.config import settings


def _admin_secret_constant_time_compare(provided: str | None, expected: str | None) -> bool:
    """Timing-safe compare; leaks nothing about the expected value."""
    p = (provided or "").encode("utf-8")
    e = (expected or "").encode("utf-8")
    if len(p) != len(e):
        # Same-length dummy compare so a length mismatch costs the same
        hmac.compare_digest(e, e)
        return False
    return hmac.compare_digest(p, e)


def require_admin(
    x_admin_secret: str | None = Header(None, alias="X-Admin-Secret"),
) -> None:
    expected = (settings.admin_secret or "").strip()
    if not expected:
        raise HTTPException(status_code=503, detail="Admin panel is not configured (ADMIN_SECRET missing).")
    if not _admin_secret_constant_time_compare(x_admin_secret, expected):
        raise HTTPException(status_code=403, detail="Forbidden.")
