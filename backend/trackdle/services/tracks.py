"""Track collaborators for game launch: candidate pool and preview lookup."""

import threading
import time
from typing import Any, Dict, List, Optional, Tuple

import requests
from flask import current_app
from sqlalchemy import func

from trackdle.models import SongPool
from trackdle.services.multiplayer.errors import ExternalUnavailable

_session = requests.Session()
_adapter = requests.adapters.HTTPAdapter(pool_connections=10, pool_maxsize=10, max_retries=0)
_session.mount("https://", _adapter)
_session.mount("http://", _adapter)

_cache_lock = threading.Lock()
_preview_cache: Dict[str, Tuple[float, Optional[str]]] = {}


def draw_candidate_tracks(limit: Optional[int] = None) -> List[Dict[str, Any]]:
    """Random sample of the song pool as `{name, artist, album_cover}` dicts."""
    if limit is None:
        limit = int(current_app.config.get('CANDIDATE_POOL_SIZE', 50))
    rows = SongPool.query.order_by(func.random()).limit(max(1, limit)).all()
    return [r.to_candidate() for r in rows]


def _cache_key(title: str, artist: str) -> str:
    return f"{(title or '').strip().lower()}|{(artist or '').strip().lower()}"


def _cache_get(key: str):
    with _cache_lock:
        hit = _preview_cache.get(key)
        if hit is None:
            return False, None
        expires, value = hit
        if expires < time.time():
            _preview_cache.pop(key, None)
            return False, None
        return True, value


def _cache_put(key: str, value: Optional[str]) -> None:
    ttl = int(current_app.config.get('PREVIEW_CACHE_TTL_SEC', 3600))
    with _cache_lock:
        _preview_cache[key] = (time.time() + ttl, value)


def clear_preview_cache() -> None:
    with _cache_lock:
        _preview_cache.clear()


def get_preview(title: str, artist: str) -> Optional[str]:
    """Look up a preview URL on Deezer.

    Returns None when the search has no hit. Transport failures and
    malformed bodies raise ExternalUnavailable and are not cached, so a
    later launch can retry.
    """
    key = _cache_key(title, artist)
    found, cached = _cache_get(key)
    if found:
        return cached

    query = f"{title} {artist}".strip()
    cfg = current_app.config
    try:
        response = _session.get(
            cfg.get('DEEZER_SEARCH_URL', 'https://api.deezer.com/search'),
            params={'q': query},
            timeout=float(cfg.get('PREVIEW_TIMEOUT_SEC', 1.0)),
        )
        response.raise_for_status()
        data = response.json()
    except (requests.RequestException, ValueError) as exc:
        current_app.logger.warning(f"[preview] lookup failed for \"{title}\" by \"{artist}\": {exc}")
        raise ExternalUnavailable(f'Preview lookup failed: {exc}')

    if not isinstance(data, dict):
        current_app.logger.warning(f"[preview] unexpected response for \"{title}\" by \"{artist}\": {type(data).__name__}")
        raise ExternalUnavailable('Preview lookup returned an unexpected response')

    preview = None
    hits = data.get('data')
    for item in hits if isinstance(hits, list) else []:
        if isinstance(item, dict):
            preview = item.get('preview') or None
            break
    _cache_put(key, preview)
    return preview
