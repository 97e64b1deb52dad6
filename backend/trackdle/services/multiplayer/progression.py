"""Per-player progression through a shared multiplayer game.

Each player walks the same ordered list of target songs independently:

    Playing(i, a) -> Playing(i, a + 1)        wrong guess or skip, attempts left
    Playing(i, a) -> Playing(i + 1, 0)        correct, or attempts exhausted
    Playing(n, 0) == Finished                 n == number of target songs

A correct guess after `a` used attempts earns `max_attempts - a` points.
Whenever a player advances the leaderboard is broadcast to the lobby room;
the advance that finishes the last outstanding player completes the game
and emits `game-over` exactly once.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from flask import current_app
from sqlalchemy import update

from trackdle import db
from trackdle.models import CompletedSong, Game, Lobby, PlayerState
from .broadcast import broadcast
from .errors import Forbidden, MultiplayerError, NotFound
from .locks import entity_locks


def normalize_guess(text: Optional[str]) -> str:
    return (text or '').strip().casefold()


def is_correct_guess(guess: Optional[str], song_name: str) -> bool:
    """Exact match after trimming and case folding."""
    if guess is None:
        return False
    return normalize_guess(guess) == normalize_guess(song_name)


def points_for(max_attempts: int, attempts_used: int) -> int:
    return max_attempts - attempts_used


def _locked_game(game_id) -> Optional[Game]:
    db.session.expire_all()
    return Game.query.filter_by(id=str(game_id)).with_for_update().first()


def _require_game(game_id) -> Game:
    game = db.session.get(Game, str(game_id)) if game_id else None
    if not game:
        raise NotFound('Game not found')
    return game


def _require_state(game: Game, user_id) -> PlayerState:
    state = game.find_player_state(user_id)
    if not state:
        raise NotFound('Player not found in this game')
    return state


def _player_progress(game: Game) -> List[Dict[str, Any]]:
    return [
        {'userId': ps.user_id, 'currentSongIndex': ps.current_song_index}
        for ps in game.player_states
    ]


def _complete_game(game: Game) -> bool:
    """Flip the game to completed; True only for the caller that flipped it.

    The conditional UPDATE is the single check-and-transition, so two
    finishing players can never both complete the game.
    """
    now = datetime.now(timezone.utc)
    result = db.session.execute(
        update(Game)
        .where(Game.id == game.id, Game.status == 'in-progress')
        .values(status='completed', completed_at=now)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        return False

    final_scores = {ps.user_id: ps.score for ps in game.player_states}
    lobby_completed = False
    with entity_locks.hold('lobby', game.lobby_id):
        lobby = Lobby.query.filter_by(id=game.lobby_id).with_for_update().first()
        if lobby and lobby.active_game_id == game.id:
            lobby.status = 'completed'
            for player in lobby.players:
                if player.user_id in final_scores:
                    player.score = final_scores[player.user_id]
            lobby_completed = True
        db.session.commit()
    # Both entities are terminal now; later calls recreate a lock on demand
    entity_locks.discard('game', game.id)
    if lobby_completed:
        entity_locks.discard('lobby', game.lobby_id)
    current_app.logger.info(f"[game-over] game={game.id} lobby={game.lobby_id}")
    return True


def process_action(game_id, user_id, guess: Optional[str] = None, skip: bool = False) -> Dict[str, Any]:
    """Apply one guess or skip for `user_id` and return the caller's result."""
    if not skip and guess is None:
        raise MultiplayerError('Missing guess or skip flag')

    events: List[Tuple[str, Dict[str, Any]]] = []
    with entity_locks.hold('game', game_id):
        game = _locked_game(game_id)
        if not game:
            raise NotFound('Game not found')
        try:
            state = _require_state(game, user_id)
        except NotFound:
            db.session.rollback()
            raise

        total = game.total_songs
        if state.current_song_index >= total:
            leaderboard = game.leaderboard()
            db.session.commit()
            return {
                'success': True,
                'completed': True,
                'playerCompleted': True,
                'message': 'You have already completed all songs in this game',
                'gameCompleted': game.status == 'completed',
                'leaderboard': leaderboard,
            }

        song_index = state.current_song_index
        song = game.target_songs[song_index]
        max_attempts = game.max_attempts
        attempts_used = state.current_song_attempts
        correct = (not skip) and is_correct_guess(guess, song.name)

        points = 0
        revealed = None
        if correct:
            points = points_for(max_attempts, attempts_used)
            state.completed_songs.append(
                CompletedSong(song_index=song_index, correct=True, attempts=attempts_used + 1)
            )
            state.score += points
            state.current_song_index = song_index + 1
            state.current_song_attempts = 0
            revealed = song.to_dict()
        elif attempts_used + 1 < max_attempts:
            state.current_song_attempts = attempts_used + 1
        else:
            state.completed_songs.append(
                CompletedSong(song_index=song_index, correct=False, attempts=max_attempts)
            )
            state.current_song_index = song_index + 1
            state.current_song_attempts = 0
            revealed = song.to_dict()
        advanced = revealed is not None

        db.session.commit()
        current_app.logger.info(
            f"[guess] game={game.id} user={user_id} song={song_index} skip={bool(skip)} "
            f"correct={correct} points={points} advanced={advanced}"
        )

        new_index = state.current_song_index
        leaderboard = game.leaderboard()
        game_completed = game.status == 'completed'
        if advanced:
            events.append(('leaderboard-update', {
                'gameId': game.id,
                'leaderboard': leaderboard,
                'playerProgress': _player_progress(game),
                'totalSongs': total,
            }))
            if game.all_players_finished() and _complete_game(game):
                game_completed = True
                events.append(('game-over', {
                    'gameId': game.id,
                    'lobbyId': game.lobby_id,
                    'leaderboard': game.leaderboard(),
                    'completedAt': game.completed_at.isoformat() if game.completed_at else None,
                }))
            else:
                db.session.commit()

        next_song = game.target_songs[new_index] if new_index < total else None
        response = {
            'success': True,
            'correct': correct,
            'skipped': bool(skip),
            'song': revealed,
            'pointsEarned': points,
            'score': state.score,
            'attempts': state.current_song_attempts,
            'attemptsRemaining': max_attempts - state.current_song_attempts,
            'currentSongIndex': new_index,
            'totalSongs': total,
            'nextPreviewUrl': next_song.preview_url if (advanced and next_song) else None,
            'playerCompleted': new_index >= total,
            'gameCompleted': game_completed,
            'leaderboard': leaderboard,
        }
        room = game.lobby_id

    for event, payload in events:
        broadcast(room, event, payload)
    return response


def get_next_song(game_id, user_id) -> Dict[str, Any]:
    """Read-only view of the caller's current song."""
    game = _require_game(game_id)
    state = _require_state(game, user_id)
    total = game.total_songs
    leaderboard = game.leaderboard()
    if state.current_song_index >= total:
        return {
            'success': True,
            'completed': True,
            'gameCompleted': game.status == 'completed',
            'leaderboard': leaderboard,
        }
    song = game.target_songs[state.current_song_index]
    return {
        'success': True,
        'completed': False,
        'song': song.to_dict(),
        'index': state.current_song_index,
        'total': total,
        'attempts': state.current_song_attempts,
        'maxAttempts': game.max_attempts,
        'leaderboard': leaderboard,
    }


def get_game_state(game_id, user_id) -> Dict[str, Any]:
    game = _require_game(game_id)
    if not game.find_player_state(user_id):
        raise Forbidden('You are not a player in this game')
    return game.to_dict()
