"""
Helpers de caché HTTP: ETags débiles y comparación con If-None-Match
"""

from typing import Optional

WEAK_PREFIX = "W/"


def build_weak_etag(resource_key: str, version: int) -> str:
    """ETag débil a partir de la key del recurso y su versión en cache"""
    normalized = resource_key.strip().replace('"', "")
    return f'{WEAK_PREFIX}"{normalized}:{version}"'


def _canonical(token: str) -> str:
    token = token.strip()
    if token.startswith(WEAK_PREFIX):
        token = token[len(WEAK_PREFIX):]
    return token.strip('"')


def matches_if_none_match(header: Optional[str], etag: str) -> bool:
    """
    True si algún valor del header coincide con el ETag

    Compara ignorando el prefijo W/ y las comillas; acepta el wildcard "*".
    """
    if not header:
        return False

    expected = _canonical(etag)
    for candidate in header.split(","):
        candidate = candidate.strip()
        if not candidate:
            continue
        if candidate == "*":
            return True
        if _canonical(candidate) == expected:
            return True
    return False


def cache_control(visibility: str, max_age: int, stale_while_revalidate: int) -> str:
    return f"{visibility}, max-age={max_age}, stale-while-revalidate={stale_while_revalidate}"
