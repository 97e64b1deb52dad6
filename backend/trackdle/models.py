from trackdle import db, bcrypt
from flask_login import UserMixin
from datetime import datetime, timezone
import uuid


def generate_entity_id():
    """Generate a 32-char hex id; its last six characters double as a join code."""
    return uuid.uuid4().hex


def _utcnow():
    return datetime.now(timezone.utc)


def _iso(value):
    return value.isoformat() if value else None


class User(UserMixin, db.Model):
    __tablename__ = 'user'
    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(255), unique=True, nullable=False, index=True)
    password_hash = db.Column(db.String(256), nullable=False)

    def __init__(self, **kwargs):
        if kwargs.get('email'):
            kwargs['email'] = kwargs['email'].strip().lower()
        super(User, self).__init__(**kwargs)

    def set_password(self, password):
        self.password_hash = bcrypt.generate_password_hash(password).decode('utf-8')

    def check_password(self, password):
        return bcrypt.check_password_hash(self.password_hash, password)

    def to_dict(self):
        return {
            'id': self.id,
            'email': self.email,
        }


class SongPool(db.Model):
    __tablename__ = 'song_pool'
    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(255), nullable=False)
    artist = db.Column(db.String(255), nullable=False)
    album_cover = db.Column(db.String(512), nullable=True)

    def to_candidate(self):
        return {
            'name': self.title,
            'artist': self.artist,
            'album_cover': self.album_cover,
        }


class LobbyPlayer(db.Model):
    __tablename__ = 'lobby_player'
    # Autoincrement id doubles as the roster order
    id = db.Column(db.Integer, primary_key=True)
    lobby_id = db.Column(db.String(32), db.ForeignKey('lobby.id', ondelete='CASCADE'), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False, index=True)
    email = db.Column(db.String(255), nullable=False)
    ready = db.Column(db.Boolean, default=False, nullable=False)
    score = db.Column(db.Integer, default=0, nullable=False)
    lobby = db.relationship('Lobby', back_populates='players')

    __table_args__ = (db.UniqueConstraint('lobby_id', 'user_id', name='uq_lobby_player_user'),)

    def to_dict(self):
        return {
            'userId': self.user_id,
            'email': self.email,
            'ready': bool(self.ready),
            'score': self.score or 0,
        }


class Lobby(db.Model):
    __tablename__ = 'lobby'
    id = db.Column(db.String(32), primary_key=True, default=generate_entity_id)
    owner_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False)
    status = db.Column(db.String(16), default='waiting', nullable=False)  # waiting, in-game, completed
    max_players = db.Column(db.Integer, default=4, nullable=False)
    song_count = db.Column(db.Integer, default=5, nullable=False)
    max_attempts = db.Column(db.Integer, default=5, nullable=False)
    active_game_id = db.Column(db.String(32), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow, nullable=False)
    players = db.relationship(
        'LobbyPlayer',
        back_populates='lobby',
        order_by='LobbyPlayer.id',
        cascade='all, delete-orphan',
    )

    def __init__(self, **kwargs):
        super(Lobby, self).__init__(**kwargs)
        if not self.id:
            self.id = generate_entity_id()

    @property
    def code(self):
        return self.id[-6:].upper()

    @property
    def game_settings(self):
        return {'songCount': self.song_count, 'maxAttempts': self.max_attempts}

    def find_player(self, user_id):
        for p in self.players:
            if p.user_id == user_id:
                return p
        return None

    def all_ready(self):
        return all(p.ready for p in self.players)

    def to_update_payload(self):
        """Shape of the `lobby-update` event."""
        return {
            'lobbyId': self.id,
            'lobbyCode': self.code,
            'players': [p.to_dict() for p in self.players],
            'status': self.status,
            'ownerId': self.owner_id,
            'maxPlayers': self.max_players,
            'gameSettings': self.game_settings,
        }

    def to_dict(self):
        players = []
        for p in self.players:
            pd = p.to_dict()
            pd['isOwner'] = p.user_id == self.owner_id
            players.append(pd)
        return {
            'id': self.id,
            'lobbyCode': self.code,
            'status': self.status,
            'players': players,
            'maxPlayers': self.max_players,
            'ownerId': self.owner_id,
            'gameSettings': self.game_settings,
            'activeGameId': self.active_game_id,
            'createdAt': _iso(self.created_at),
        }


class TargetSong(db.Model):
    __tablename__ = 'target_song'
    id = db.Column(db.Integer, primary_key=True)
    game_id = db.Column(db.String(32), db.ForeignKey('game.id', ondelete='CASCADE'), nullable=False, index=True)
    position = db.Column(db.Integer, nullable=False)
    name = db.Column(db.String(255), nullable=False)
    artist = db.Column(db.String(255), nullable=False)
    album_cover = db.Column(db.String(512), nullable=True)
    preview_url = db.Column(db.String(512), nullable=False)

    def to_dict(self):
        return {
            'name': self.name,
            'artist': self.artist,
            'album_cover': self.album_cover,
            'preview_url': self.preview_url,
        }


class CompletedSong(db.Model):
    __tablename__ = 'completed_song'
    id = db.Column(db.Integer, primary_key=True)
    player_state_id = db.Column(db.Integer, db.ForeignKey('player_state.id', ondelete='CASCADE'), nullable=False, index=True)
    song_index = db.Column(db.Integer, nullable=False)
    correct = db.Column(db.Boolean, nullable=False)
    attempts = db.Column(db.Integer, nullable=False)

    def to_dict(self):
        return {
            'songIndex': self.song_index,
            'correct': bool(self.correct),
            'attempts': self.attempts,
        }


class PlayerState(db.Model):
    __tablename__ = 'player_state'
    id = db.Column(db.Integer, primary_key=True)
    game_id = db.Column(db.String(32), db.ForeignKey('game.id', ondelete='CASCADE'), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False)
    user_email = db.Column(db.String(255), nullable=False)
    current_song_index = db.Column(db.Integer, default=0, nullable=False)
    current_song_attempts = db.Column(db.Integer, default=0, nullable=False)
    score = db.Column(db.Integer, default=0, nullable=False)
    completed_songs = db.relationship(
        'CompletedSong',
        order_by='CompletedSong.song_index',
        cascade='all, delete-orphan',
    )

    def to_dict(self):
        return {
            'userId': self.user_id,
            'userEmail': self.user_email,
            'currentSongIndex': self.current_song_index,
            'currentSongAttempts': self.current_song_attempts,
            'score': self.score,
            'completedSongs': [c.to_dict() for c in self.completed_songs],
        }


class Game(db.Model):
    __tablename__ = 'game'
    id = db.Column(db.String(32), primary_key=True, default=generate_entity_id)
    # Back-reference only; the lobby may outlive or predate this row
    lobby_id = db.Column(db.String(32), nullable=False, index=True)
    status = db.Column(db.String(16), default='in-progress', nullable=False)  # in-progress, completed
    max_attempts = db.Column(db.Integer, default=5, nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow, nullable=False)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    target_songs = db.relationship(
        'TargetSong',
        order_by='TargetSong.position',
        cascade='all, delete-orphan',
    )
    player_states = db.relationship(
        'PlayerState',
        order_by='PlayerState.id',
        cascade='all, delete-orphan',
    )

    def __init__(self, **kwargs):
        super(Game, self).__init__(**kwargs)
        if not self.id:
            self.id = generate_entity_id()

    @property
    def total_songs(self):
        return len(self.target_songs)

    def find_player_state(self, user_id):
        for ps in self.player_states:
            if ps.user_id == user_id:
                return ps
        return None

    def leaderboard(self):
        # sorted() is stable, so equal scores keep player_states order
        ordered = sorted(self.player_states, key=lambda ps: ps.score, reverse=True)
        return [{'userId': ps.user_id, 'email': ps.user_email, 'score': ps.score} for ps in ordered]

    def all_players_finished(self):
        total = self.total_songs
        return all(ps.current_song_index >= total for ps in self.player_states)

    def to_dict(self):
        return {
            'id': self.id,
            'lobbyId': self.lobby_id,
            'status': self.status,
            'maxAttempts': self.max_attempts,
            'totalSongs': self.total_songs,
            'playerStates': [ps.to_dict() for ps in self.player_states],
            'leaderboard': self.leaderboard(),
            'createdAt': _iso(self.created_at),
            'completedAt': _iso(self.completed_at),
        }
