from typing import Callable, Dict, List, Optional

from flask import current_app

from trackdle import db
from trackdle.models import Game, Lobby, PlayerState, TargetSong
from trackdle.services import tracks
from .broadcast import broadcast
from .errors import ExternalUnavailable, Forbidden, InvalidState, NotFound, Precondition
from .locks import entity_locks


def select_target_songs(candidates, song_count: int, lookup_preview: Callable) -> List[Dict]:
    """Walk the candidates in order, keeping those with a preview.

    Stops at `song_count` accepted tracks or when the pool runs out.
    A failed lookup only skips that candidate.
    """
    accepted = []
    for candidate in candidates:
        if len(accepted) >= song_count:
            break
        try:
            preview = lookup_preview(candidate.get('name'), candidate.get('artist'))
        except ExternalUnavailable as exc:
            current_app.logger.warning(f"[launch] skipping candidate \"{candidate.get('name')}\": {exc}")
            continue
        if not preview:
            continue
        accepted.append({
            'name': candidate.get('name'),
            'artist': candidate.get('artist'),
            'album_cover': candidate.get('album_cover'),
            'preview_url': preview,
        })
    return accepted


def _check_launchable(lobby: Optional[Lobby], requesting_user_id) -> Lobby:
    if not lobby:
        raise NotFound('Lobby not found')
    if lobby.owner_id != requesting_user_id:
        raise Forbidden('Only the lobby owner can start the game')
    if lobby.status != 'waiting':
        raise InvalidState('Lobby is not waiting for a game')
    if not lobby.all_ready():
        raise Precondition('All players must be ready before starting')
    return lobby


def game_started_payload(game: Game) -> Dict:
    songs = [s.to_dict() for s in game.target_songs]
    return {
        'gameId': game.id,
        'lobbyId': game.lobby_id,
        'targetSongs': songs,
        'totalSongs': len(songs),
        'currentPreviewUrl': songs[0]['preview_url'] if songs else None,
        'maxAttempts': game.max_attempts,
        'leaderboard': game.leaderboard(),
    }


def start_game(
    lobby_id,
    requesting_user_id,
    draw_candidates: Optional[Callable] = None,
    lookup_preview: Optional[Callable] = None,
) -> Game:
    """Launch a game from a waiting lobby whose players are all ready.

    Track selection happens before any write; the game rows and the lobby
    transition are committed together. `game-started` goes out afterwards.
    """
    draw_candidates = draw_candidates or tracks.draw_candidate_tracks
    lookup_preview = lookup_preview or tracks.get_preview

    # Cheap precheck so a forbidden or premature start never hits the track source
    _check_launchable(db.session.get(Lobby, str(lobby_id)), requesting_user_id)
    lobby = db.session.get(Lobby, str(lobby_id))
    song_count = lobby.song_count
    candidates = list(draw_candidates() or [])
    selected = select_target_songs(candidates, song_count, lookup_preview)
    if not selected:
        raise ExternalUnavailable('No tracks with a preview are available right now')

    with entity_locks.hold('lobby', lobby_id):
        db.session.expire_all()
        try:
            lobby = _check_launchable(
                Lobby.query.filter_by(id=str(lobby_id)).with_for_update().first(),
                requesting_user_id,
            )
        except (NotFound, Forbidden, InvalidState, Precondition):
            db.session.rollback()
            raise
        game = Game(lobby_id=lobby.id, status='in-progress', max_attempts=lobby.max_attempts)
        for position, song in enumerate(selected):
            game.target_songs.append(TargetSong(position=position, **song))
        for player in lobby.players:
            game.player_states.append(PlayerState(
                user_id=player.user_id,
                user_email=player.email,
                current_song_index=0,
                current_song_attempts=0,
                score=0,
            ))
        db.session.add(game)
        lobby.status = 'in-game'
        lobby.active_game_id = game.id
        db.session.commit()
        current_app.logger.info(
            f"[launch] lobby={lobby.id} game={game.id} songs={len(selected)}/{song_count} players={len(game.player_states)}"
        )
        payload = game_started_payload(game)

    broadcast(game.lobby_id, 'game-started', payload)
    return game
