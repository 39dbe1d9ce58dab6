from __future__ import annotations

from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

_SYNC_SCHEMES = frozenset({"postgres", "postgresql", "postgresql+psycopg", "postgresql+psycopg2"})
_SSL_OFF = frozenset({"disable", "allow"})


def normalize_database_url(url: str) -> str:
    """Rewrite a Postgres URL for asyncpg.

    ``sslmode`` (libpq) becomes ``ssl``; asyncpg rejects the former.
    """
    url = (url or "").strip()
    if not url:
        return url

    parts = urlsplit(url)
    scheme = "postgresql+asyncpg" if parts.scheme in _SYNC_SCHEMES else parts.scheme
    params = dict(parse_qsl(parts.query, keep_blank_values=True))
    for key in [k for k in params if k.lower() == "sslmode"]:
        mode = params.pop(key).strip().lower()
        params.setdefault("ssl", "disable" if mode in _SSL_OFF else "require")
    return urlunsplit((scheme, parts.netloc, parts.path, urlencode(params), parts.fragment))
