from flask import Blueprint, jsonify, request, current_app
from flask_login import login_required, current_user

from trackdle.services.multiplayer import launcher, lobbies, progression
from trackdle.services.multiplayer.errors import MultiplayerError


multiplayer = Blueprint('multiplayer', __name__)


@multiplayer.errorhandler(MultiplayerError)
def handle_multiplayer_error(exc):
    current_app.logger.info(f"[multiplayer] {request.method} {request.path} -> {exc.status_code}: {exc.message}")
    return jsonify(exc.to_dict()), exc.status_code


@multiplayer.route('/lobby', methods=['POST'])
@login_required
def create_lobby():
    """
    Creates a new lobby with the current user as owner and only player.
    """
    data = request.get_json(silent=True) or {}
    lobby = lobbies.create_lobby(current_user.id, {
        'maxPlayers': data.get('maxPlayers'),
        'songCount': data.get('songCount'),
        'maxAttempts': data.get('maxAttempts'),
    })
    return jsonify({
        'success': True,
        'lobbyId': lobby.id,
        'lobbyCode': lobby.code,
        'ownerId': lobby.owner_id,
        'players': [p.to_dict() for p in lobby.players],
        'maxPlayers': lobby.max_players,
        'gameSettings': lobby.game_settings,
    }), 201


@multiplayer.route('/lobby/<string:lobby_id>', methods=['GET'])
@login_required
def get_lobby(lobby_id):
    lobby = lobbies.get_lobby(lobby_id)
    return jsonify({'success': True, 'lobby': lobby.to_dict()})


@multiplayer.route('/game/<string:lobby_id>', methods=['POST'])
@login_required
def start_game(lobby_id):
    """
    Starts a game for the lobby. Owner only; every player must be ready.
    """
    game = launcher.start_game(lobby_id, current_user.id)
    return jsonify({
        'success': True,
        'gameId': game.id,
        'lobbyId': game.lobby_id,
        'totalSongs': game.total_songs,
        'targetSongs': [s.to_dict() for s in game.target_songs],
    }), 201


@multiplayer.route('/game/<string:game_id>/guess', methods=['POST'])
@login_required
def post_guess(game_id):
    """
    Submits a guess, or a skip with `{"skip": true}`, for the current song.
    """
    data = request.get_json(silent=True) or {}
    skip = data.get('skip') is True
    guess = data.get('guess')
    if guess is not None and not isinstance(guess, str):
        guess = str(guess)
    if not skip and guess is None:
        return jsonify({'success': False, 'error': 'Missing guess or skip flag'}), 400
    result = progression.process_action(game_id, current_user.id, guess=guess, skip=skip)
    return jsonify(result)


@multiplayer.route('/game/<string:game_id>/next', methods=['GET'])
@login_required
def get_next_song(game_id):
    return jsonify(progression.get_next_song(game_id, current_user.id))


@multiplayer.route('/game/<string:game_id>', methods=['GET'])
@login_required
def get_game_state(game_id):
    """
    Returns a snapshot of the game for players reconciling after a reconnect.
    """
    return jsonify({'success': True, 'game': progression.get_game_state(game_id, current_user.id)})
