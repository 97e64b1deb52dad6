import os
import sys
import pytest

# Ensure the backend root (containing the `trackdle` package) is on sys.path
CURRENT_DIR = os.path.dirname(__file__)
BACKEND_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, '..'))
if BACKEND_ROOT not in sys.path:
    sys.path.insert(0, BACKEND_ROOT)

from trackdle import create_app, db, socketio


class TestConfig:
    TESTING = True
    SECRET_KEY = os.environ.get('SECRET_KEY', 'test-secret')
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {'connect_args': {'check_same_thread': False}}
    BCRYPT_LOG_ROUNDS = 4
    ALLOWED_ORIGINS = ['http://localhost:5173']
    AUTH_TOKEN_MAX_AGE_SEC = 3600
    DEFAULT_MAX_PLAYERS = 4
    DEFAULT_SONG_COUNT = 5
    DEFAULT_MAX_ATTEMPTS = 5
    CANDIDATE_POOL_SIZE = 50
    DEEZER_SEARCH_URL = 'https://api.deezer.test/search'
    PREVIEW_TIMEOUT_SEC = 0.1
    PREVIEW_CACHE_TTL_SEC = 60


SONGS = [
    {'name': 'Blinding Lights', 'artist': 'The Weeknd', 'album_cover': 'https://img.test/blinding.jpg'},
    {'name': 'Levitating', 'artist': 'Dua Lipa', 'album_cover': 'https://img.test/levitating.jpg'},
    {'name': 'Bad Guy', 'artist': 'Billie Eilish', 'album_cover': 'https://img.test/badguy.jpg'},
]


def fake_preview(title, artist):
    return f"https://cdns-preview.test/{title.lower().replace(' ', '-')}.mp3"


def _reset_runtime_state():
    from trackdle import socketio_events
    from trackdle.services import tracks
    from trackdle.services.multiplayer.broadcast import rooms
    rooms.clear()
    socketio_events._sid_to_ctx.clear()
    tracks.clear_preview_cache()


def _build_app(config_class):
    application = create_app(config_class)
    with application.app_context():
        # Ensure models are imported so tables are created
        import trackdle.models  # noqa: F401
        db.create_all()
        yield application
        db.session.remove()
        db.drop_all()
    _reset_runtime_state()


@pytest.fixture()
def flask_app():
    yield from _build_app(TestConfig)


@pytest.fixture()
def threaded_app(tmp_path):
    """App on a file database so worker threads get their own connections."""
    class FileConfig(TestConfig):
        SQLALCHEMY_DATABASE_URI = f"sqlite:///{tmp_path / 'trackdle.db'}"

    yield from _build_app(FileConfig)


@pytest.fixture()
def client(flask_app):
    return flask_app.test_client()


@pytest.fixture()
def make_user():
    """Factory creating a user in the active app; returns (user_id, token)."""
    from trackdle.auth import issue_token
    from trackdle.models import User

    def _make(email, password='password'):
        user = User(email=email)
        user.set_password(password)
        db.session.add(user)
        db.session.commit()
        return user.id, issue_token(user)

    return _make


@pytest.fixture()
def auth_headers():
    def _headers(token):
        return {'Authorization': f'Bearer {token}'}
    return _headers


@pytest.fixture()
def sio_factory(flask_app):
    """Opens authenticated Socket.IO test clients on /ws and closes them afterwards."""
    opened = []

    def _open(token=None, auth=None):
        if auth is None and token is not None:
            auth = {'token': token}
        test_client = socketio.test_client(
            flask_app,
            flask_test_client=flask_app.test_client(),
            namespace='/ws',
            auth=auth,
        )
        opened.append(test_client)
        return test_client

    yield _open
    for test_client in opened:
        try:
            if test_client.is_connected('/ws'):
                test_client.disconnect(namespace='/ws')
        except Exception:
            pass


@pytest.fixture()
def fake_tracks(monkeypatch):
    """Replace the song pool and Deezer lookup with deterministic fakes."""
    from trackdle.services import tracks
    monkeypatch.setattr(tracks, 'draw_candidate_tracks', lambda limit=None: [dict(s) for s in SONGS])
    monkeypatch.setattr(tracks, 'get_preview', fake_preview)
    return SONGS


@pytest.fixture()
def captured_broadcasts(monkeypatch):
    """Record (room, event, payload) for every broadcast made by the game services."""
    from trackdle.services.multiplayer import launcher, progression
    sent = []

    def _capture(room_id, event, payload):
        sent.append((room_id, event, payload))
        return 1

    monkeypatch.setattr(launcher, 'broadcast', _capture)
    monkeypatch.setattr(progression, 'broadcast', _capture)
    return sent


@pytest.fixture()
def ready_lobby(make_user):
    """Factory: a waiting lobby with `count` members, all ready."""
    from trackdle.services.multiplayer import lobbies

    def _make(count=2, max_players=4, song_count=3, max_attempts=5, prefix='player'):
        users = [make_user(f'{prefix}{i}@example.com')[0] for i in range(1, count + 1)]
        lobby = lobbies.create_lobby(users[0], {
            'maxPlayers': max_players,
            'songCount': song_count,
            'maxAttempts': max_attempts,
        })
        lobby_id = lobby.id
        for uid in users[1:]:
            lobbies.join_lobby(lobby_id, uid)
        for uid in users:
            lobbies.toggle_ready(lobby_id, uid)
        return lobby_id, users

    return _make


@pytest.fixture()
def started_game(ready_lobby, captured_broadcasts):
    """Factory: launch a game from a ready lobby using the fake song list."""
    from trackdle.services.multiplayer import launcher

    def _make(count=2, song_count=3, max_attempts=5, songs=None):
        lobby_id, users = ready_lobby(count=count, song_count=song_count, max_attempts=max_attempts)
        pool = songs if songs is not None else SONGS
        game = launcher.start_game(
            lobby_id,
            users[0],
            draw_candidates=lambda: [dict(s) for s in pool],
            lookup_preview=fake_preview,
        )
        return game.id, lobby_id, users

    return _make
