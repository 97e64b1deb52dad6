from flask import current_app, request
from flask_socketio import ConnectionRefusedError, emit
from trackdle import socketio, db
from trackdle.auth import user_from_token
from trackdle.models import Lobby
from trackdle.services.multiplayer import lobbies
from trackdle.services.multiplayer.broadcast import NAMESPACE, broadcast, rooms
from trackdle.services.multiplayer.errors import AuthError, MultiplayerError, NotFound
from typing import Any, Dict, Optional
import threading
import time


# ---- Connection registry ----
# Each live connection is bound to the user it authenticated as; handlers
# trust this binding rather than anything in the message payload.

_sid_to_ctx: Dict[str, Dict[str, Any]] = {}
_ctx_lock = threading.Lock()


def _get_sid() -> str:
    # type: ignore: request.sid exists in Socket.IO context
    return request.sid  # type: ignore


def bind_connection(sid: str, user) -> None:
    with _ctx_lock:
        _sid_to_ctx[sid] = {'user_id': user.id, 'email': user.email}


def unbind_connection(sid: str) -> Optional[Dict[str, Any]]:
    with _ctx_lock:
        return _sid_to_ctx.pop(sid, None)


def bound_user(sid: str) -> Optional[Dict[str, Any]]:
    with _ctx_lock:
        ctx = _sid_to_ctx.get(sid)
        return dict(ctx) if ctx else None


def _emit_lobby_update(lobby: Lobby) -> None:
    broadcast(lobby.id, 'lobby-update', lobby.to_update_payload())


def _require_ctx() -> Dict[str, Any]:
    ctx = bound_user(_get_sid())
    if not ctx:
        raise AuthError('Connection is not authenticated')
    return ctx


# ---- Handlers ----

def handle_connect(auth=None):
    sid = _get_sid()
    token = auth.get('token') if isinstance(auth, dict) else None
    try:
        user = user_from_token(token)
    except AuthError as exc:
        current_app.logger.warning(f"[ws-auth] rejected sid={sid}: {exc.message}")
        raise ConnectionRefusedError(exc.message)
    bind_connection(sid, user)
    current_app.logger.info(f"[ws-connect] sid={sid} user={user.id} email={user.email}")
    emit('connected', {'message': f'Connected to {NAMESPACE}', 'userId': user.id})


def handle_disconnect(reason=None):
    sid = _get_sid()
    rooms.leave_all(sid)
    ctx = unbind_connection(sid)
    if not ctx:
        return
    user_id = ctx['user_id']
    current_app.logger.info(f"[ws-disconnect] sid={sid} user={user_id} reason={reason}")
    surviving = lobbies.handle_disconnect(user_id)
    for lobby_id in surviving:
        try:
            lobby = db.session.get(Lobby, lobby_id)
            if lobby:
                _emit_lobby_update(lobby)
        except Exception as exc:
            db.session.rollback()
            current_app.logger.error(f"[ws-disconnect] lobby-update for lobby={lobby_id} failed: {exc}")


def _join(lobby_key, leave_other_rooms: bool):
    sid = _get_sid()
    try:
        ctx = _require_ctx()
        if not lobby_key:
            raise NotFound('Lobby not found')
        if leave_other_rooms:
            for room in rooms.leave_all(sid):
                current_app.logger.info(f"[ws-join] sid={sid} leaving room {room}")
        lobby = lobbies.join_lobby(lobby_key, ctx['user_id'])
    except MultiplayerError as exc:
        current_app.logger.error(f"[ws-join] sid={sid} key={lobby_key} failed: {exc.message}")
        return {'success': False, 'message': exc.message}

    rooms.join(lobby.id, sid)
    current_app.logger.info(f"[ws-join] sid={sid} room={lobby.id} members={len(rooms.members(lobby.id))}")
    _emit_lobby_update(lobby)
    return None, {'success': True, 'lobbyId': lobby.id, 'lobbyCode': lobby.code}


def handle_join_by_code(lobby_code=None):
    return _join(lobby_code, leave_other_rooms=True)


def handle_join_lobby(lobby_id=None):
    return _join(lobby_id, leave_other_rooms=True)


def handle_leave_lobby(lobby_id=None):
    sid = _get_sid()
    try:
        ctx = _require_ctx()
        lobby = lobbies.leave_lobby(lobby_id, ctx['user_id'])
    except MultiplayerError as exc:
        emit('error', {'message': exc.message})
        return
    rooms.leave(str(lobby_id), sid)
    if lobby:
        _emit_lobby_update(lobby)
    emit('left-lobby', {'message': 'Left lobby successfully', 'lobbyId': lobby_id})


def handle_toggle_ready(lobby_id=None):
    try:
        ctx = _require_ctx()
        lobby = lobbies.toggle_ready(lobby_id, ctx['user_id'])
    except MultiplayerError as exc:
        current_app.logger.error(f"[ws-ready] lobby={lobby_id} failed: {exc.message}")
        emit('error', {'message': exc.message})
        return {'success': False, 'message': exc.message}
    _emit_lobby_update(lobby)
    all_ready = lobby.all_ready()
    broadcast(lobby.id, 'players-ready-status', {'allReady': all_ready})
    return None, {'success': True, 'allReady': all_ready}


def handle_ping(data=None):
    return {'status': 'ok', 'timestamp': int(time.time() * 1000)}


def register_socketio_handlers() -> None:
    """Register Socket.IO event handlers on namespace '/ws'."""
    socketio.on_event('connect', handle_connect, namespace=NAMESPACE)
    socketio.on_event('disconnect', handle_disconnect, namespace=NAMESPACE)
    socketio.on_event('join-by-code', handle_join_by_code, namespace=NAMESPACE)
    socketio.on_event('join-lobby', handle_join_lobby, namespace=NAMESPACE)
    socketio.on_event('leave-lobby', handle_leave_lobby, namespace=NAMESPACE)
    socketio.on_event('toggle-ready', handle_toggle_ready, namespace=NAMESPACE)
    socketio.on_event('ping', handle_ping, namespace=NAMESPACE)
