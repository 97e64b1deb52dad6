"""Lobby lifecycle: create, join, ready toggle, leave, disconnect cleanup.

All mutations run under the per-lobby lock and lock the lobby row, and
every precondition is checked before anything is written.
"""

import re
from typing import List, Optional

from flask import current_app

from trackdle import db
from trackdle.models import Lobby, LobbyPlayer, User
from .errors import Full, InvalidState, NotFound
from .locks import entity_locks

_CODE_RE = re.compile(r'^[0-9a-fA-F]{6}$')


def _positive_int(value, default: int) -> int:
    try:
        parsed = int(value)
    except (TypeError, ValueError):
        return default
    return parsed if parsed >= 1 else default


def _locked_lobby(lobby_id) -> Optional[Lobby]:
    # Drop anything this session read before the lock was taken
    db.session.expire_all()
    return Lobby.query.filter_by(id=str(lobby_id)).with_for_update().first()


def _require_user(user_id) -> User:
    user = db.session.get(User, user_id)
    if not user:
        raise NotFound('User not found')
    return user


def resolve_lobby_id(lobby_id_or_code) -> Optional[str]:
    """Map a lobby id or a 6-char join code to a lobby id."""
    key = str(lobby_id_or_code or '').strip()
    if not key:
        return None
    if db.session.get(Lobby, key):
        return key
    if _CODE_RE.match(key):
        # Codes are the id suffix; collisions are possible but unlikely, newest wins
        lobby = (
            Lobby.query.filter(Lobby.id.like(f"%{key.lower()}"))
            .order_by(Lobby.created_at.desc())
            .first()
        )
        if lobby:
            return lobby.id
    return None


def get_lobby(lobby_id) -> Lobby:
    lobby = db.session.get(Lobby, str(lobby_id)) if lobby_id else None
    if not lobby:
        raise NotFound('Lobby not found')
    return lobby


def create_lobby(owner_id, settings: Optional[dict] = None) -> Lobby:
    settings = settings or {}
    cfg = current_app.config
    owner = _require_user(owner_id)
    lobby = Lobby(
        owner_id=owner.id,
        status='waiting',
        max_players=_positive_int(settings.get('maxPlayers'), int(cfg.get('DEFAULT_MAX_PLAYERS', 4))),
        song_count=_positive_int(settings.get('songCount'), int(cfg.get('DEFAULT_SONG_COUNT', 5))),
        max_attempts=_positive_int(settings.get('maxAttempts'), int(cfg.get('DEFAULT_MAX_ATTEMPTS', 5))),
    )
    lobby.players.append(LobbyPlayer(user_id=owner.id, email=owner.email, ready=False, score=0))
    db.session.add(lobby)
    db.session.commit()
    current_app.logger.info(f"[lobby-create] lobby={lobby.id} code={lobby.code} owner={owner.id}")
    return lobby


def join_lobby(lobby_id_or_code, user_id) -> Lobby:
    user = _require_user(user_id)
    lobby_id = resolve_lobby_id(lobby_id_or_code)
    if not lobby_id:
        raise NotFound('Lobby not found')
    with entity_locks.hold('lobby', lobby_id):
        lobby = _locked_lobby(lobby_id)
        if not lobby:
            raise NotFound('Lobby not found')
        if lobby.status != 'waiting':
            db.session.rollback()
            raise InvalidState('Lobby is not accepting players')
        if lobby.find_player(user.id):
            # Already a member: unchanged
            db.session.commit()
            return lobby
        if len(lobby.players) >= lobby.max_players:
            db.session.rollback()
            raise Full('Lobby is full')
        lobby.players.append(LobbyPlayer(user_id=user.id, email=user.email, ready=False, score=0))
        db.session.commit()
        current_app.logger.info(f"[lobby-join] lobby={lobby.id} user={user.id} players={len(lobby.players)}")
        return lobby


def toggle_ready(lobby_id, user_id) -> Lobby:
    with entity_locks.hold('lobby', lobby_id):
        lobby = _locked_lobby(lobby_id)
        if not lobby:
            raise NotFound('Lobby not found')
        player = lobby.find_player(user_id)
        if not player:
            db.session.rollback()
            raise NotFound('Player not found in lobby')
        player.ready = not player.ready
        db.session.commit()
        current_app.logger.info(f"[lobby-ready] lobby={lobby.id} user={user_id} ready={player.ready}")
        return lobby


def leave_lobby(lobby_id, user_id) -> Optional[Lobby]:
    """Remove a player; returns the surviving lobby or None once deleted.

    Leaving a lobby one is not in (or one that is already gone) is a no-op.
    """
    with entity_locks.hold('lobby', lobby_id):
        lobby = _locked_lobby(lobby_id)
        if not lobby:
            current_app.logger.info(f"[lobby-leave] lobby={lobby_id} user={user_id} lobby already gone")
            return None
        player = lobby.find_player(user_id)
        if not player:
            db.session.commit()
            current_app.logger.info(f"[lobby-leave] lobby={lobby_id} user={user_id} not a member")
            return lobby

        lobby.players.remove(player)
        if not lobby.players:
            db.session.delete(lobby)
            db.session.commit()
            entity_locks.discard('lobby', lobby_id)
            current_app.logger.info(f"[lobby-delete] lobby={lobby_id} deleted as all players left")
            return None

        if lobby.owner_id == user_id:
            lobby.owner_id = lobby.players[0].user_id
            current_app.logger.info(f"[lobby-owner] lobby={lobby_id} ownership transferred to {lobby.owner_id}")
        db.session.commit()
        current_app.logger.info(f"[lobby-leave] lobby={lobby_id} user={user_id} players={len(lobby.players)}")
        return lobby


def lobby_ids_for_user(user_id) -> List[str]:
    rows = db.session.query(LobbyPlayer.lobby_id).filter_by(user_id=user_id).all()
    return [r[0] for r in rows]


def handle_disconnect(user_id) -> List[str]:
    """Best-effort removal of a user from every lobby they are in.

    Failures are logged per lobby and never abort the loop. Returns the ids
    of lobbies that still exist after the user left them.
    """
    try:
        lobby_ids = lobby_ids_for_user(user_id)
    except Exception as exc:
        db.session.rollback()
        current_app.logger.error(f"[disconnect] user={user_id} lobby lookup failed: {exc}")
        return []
    current_app.logger.info(f"[disconnect] user={user_id} found {len(lobby_ids)} lobbies")

    surviving = []
    for lobby_id in lobby_ids:
        try:
            if leave_lobby(lobby_id, user_id) is not None:
                surviving.append(lobby_id)
        except Exception as exc:
            db.session.rollback()
            current_app.logger.error(f"[disconnect] user={user_id} lobby={lobby_id} cleanup failed: {exc}")
    return surviving
