from __future__ import annotations

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from core.i18n import set_locale


SUPPORTED_LOCALES = {"en", "fr", "es"}


def _pick_from_accept_language(al: str) -> str:
    """Parse Accept-Language with q weights, return the best tag.

    Examples:
      'fr-CA,fr;q=0.9,en-US;q=0.8' -> 'fr-CA'
    """
    items = []
    for part in al.split(","):
        p = part.strip()
        if not p:
            continue
        seg = p.split(";", 1)
        lang = seg[0].strip()
        q = 1.0
        if len(seg) == 2 and seg[1].strip().startswith("q="):
            try:
                q = float(seg[1].strip()[2:])
            except ValueError:
                q = 1.0
        items.append((lang, q))
    if not items:
        return "en"
    # stable sort keeps header order for ties
    items.sort(key=lambda x: x[1], reverse=True)
    return items[0][0]


def _normalize(lang: str) -> str:
    """Reduce a browser tag to a supported catalog name."""
    base = (lang or "en").replace("_", "-").split("-", 1)[0].lower()
    return base if base in SUPPORTED_LOCALES else "en"


class LocaleMiddleware(BaseHTTPMiddleware):
    """Parse locale from query/header and set into context.

    Priority: ?lang=xx > X-Lang > Accept-Language > default 'en'.
    """

    async def dispatch(self, request: Request, call_next):
        lang = request.query_params.get("lang") or request.headers.get("X-Lang")
        if not lang:
            al = request.headers.get("Accept-Language", "")
            lang = _pick_from_accept_language(al) if al else "en"
        locale = _normalize(lang)
        set_locale(locale)
        request.state.locale = locale
        return await call_next(request)
