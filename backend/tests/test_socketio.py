from trackdle import db
from trackdle.models import Lobby, User
from trackdle.services.multiplayer import lobbies


def _names(events):
    return [e['name'] for e in events]


def _payloads(events, name):
    return [e['args'][0] for e in events if e['name'] == name]


def test_handshake_without_token_is_rejected(flask_app, sio_factory):
    client = sio_factory(auth=None)
    assert not client.is_connected('/ws')


def test_handshake_with_bad_token_is_rejected(flask_app, sio_factory):
    client = sio_factory(token='forged.token.value')
    assert not client.is_connected('/ws')


def test_handshake_for_deleted_user_is_rejected(flask_app, sio_factory, make_user):
    user_id, token = make_user('ghost@example.com')
    db.session.delete(db.session.get(User, user_id))
    db.session.commit()
    client = sio_factory(token=token)
    assert not client.is_connected('/ws')


def test_socket_connect_and_ping(flask_app, sio_factory, make_user):
    _, token = make_user('alice@example.com')
    client = sio_factory(token=token)
    assert client.is_connected('/ws')

    ack = client.emit('ping', namespace='/ws', callback=True)
    assert ack['status'] == 'ok'


def test_join_by_code_acks_and_broadcasts(flask_app, sio_factory, make_user):
    owner_id, owner_token = make_user('owner@example.com')
    guest_id, guest_token = make_user('guest@example.com')
    lobby = lobbies.create_lobby(owner_id)
    lobby_id, code = lobby.id, lobby.code

    owner = sio_factory(token=owner_token)
    guest = sio_factory(token=guest_token)
    _, joined = owner.emit('join-lobby', lobby_id, namespace='/ws', callback=True)
    assert joined == {'success': True, 'lobbyId': lobby_id, 'lobbyCode': code}
    owner.get_received('/ws')

    _, ack = guest.emit('join-by-code', code.lower(), namespace='/ws', callback=True)
    assert ack['lobbyId'] == lobby_id

    updates = _payloads(owner.get_received('/ws'), 'lobby-update')
    assert len(updates) == 1
    assert [p['userId'] for p in updates[0]['players']] == [owner_id, guest_id]
    assert updates[0]['ownerId'] == owner_id
    assert updates[0]['lobbyCode'] == code
    assert _payloads(guest.get_received('/ws'), 'lobby-update')


def test_join_by_unknown_code_fails_cleanly(flask_app, sio_factory, make_user):
    _, token = make_user('guest@example.com')
    client = sio_factory(token=token)
    ack = client.emit('join-by-code', 'QQQQQQ', namespace='/ws', callback=True)
    assert ack == {'success': False, 'message': 'Lobby not found'}


def test_join_full_lobby_reports_error(flask_app, sio_factory, make_user):
    owner_id, _ = make_user('owner@example.com')
    _, guest_token = make_user('guest@example.com')
    lobby = lobbies.create_lobby(owner_id, {'maxPlayers': 1})
    client = sio_factory(token=guest_token)
    ack = client.emit('join-by-code', lobby.code, namespace='/ws', callback=True)
    assert ack == {'success': False, 'message': 'Lobby is full'}


def test_toggle_ready_broadcasts_ready_status(flask_app, sio_factory, make_user):
    owner_id, owner_token = make_user('owner@example.com')
    guest_id, guest_token = make_user('guest@example.com')
    lobby_id = lobbies.create_lobby(owner_id).id
    owner = sio_factory(token=owner_token)
    guest = sio_factory(token=guest_token)
    owner.emit('join-lobby', lobby_id, namespace='/ws', callback=True)
    guest.emit('join-lobby', lobby_id, namespace='/ws', callback=True)
    owner.get_received('/ws')
    guest.get_received('/ws')

    owner.emit('toggle-ready', lobby_id, namespace='/ws', callback=True)
    events = guest.get_received('/ws')
    assert _payloads(events, 'players-ready-status') == [{'allReady': False}]
    assert [p['ready'] for p in _payloads(events, 'lobby-update')[0]['players']] == [True, False]

    _, ack = guest.emit('toggle-ready', lobby_id, namespace='/ws', callback=True)
    assert ack == {'success': True, 'allReady': True}
    assert _payloads(owner.get_received('/ws'), 'players-ready-status') == [{'allReady': True}]


def test_toggle_ready_outside_lobby_emits_error(flask_app, sio_factory, make_user):
    owner_id, _ = make_user('owner@example.com')
    _, stranger_token = make_user('stranger@example.com')
    lobby_id = lobbies.create_lobby(owner_id).id
    stranger = sio_factory(token=stranger_token)
    stranger.get_received('/ws')

    stranger.emit('toggle-ready', lobby_id, namespace='/ws')
    assert _payloads(stranger.get_received('/ws'), 'error') == [{'message': 'Player not found in lobby'}]


def test_leave_lobby_notifies_caller_and_room(flask_app, sio_factory, make_user):
    owner_id, owner_token = make_user('owner@example.com')
    guest_id, guest_token = make_user('guest@example.com')
    lobby_id = lobbies.create_lobby(owner_id).id
    owner = sio_factory(token=owner_token)
    guest = sio_factory(token=guest_token)
    owner.emit('join-lobby', lobby_id, namespace='/ws', callback=True)
    guest.emit('join-lobby', lobby_id, namespace='/ws', callback=True)
    owner.get_received('/ws')
    guest.get_received('/ws')

    guest.emit('leave-lobby', lobby_id, namespace='/ws')

    assert 'left-lobby' in _names(guest.get_received('/ws'))
    updates = _payloads(owner.get_received('/ws'), 'lobby-update')
    assert [p['userId'] for p in updates[-1]['players']] == [owner_id]

    # The departed connection no longer receives room events
    owner.emit('toggle-ready', lobby_id, namespace='/ws', callback=True)
    assert 'lobby-update' not in _names(guest.get_received('/ws'))


def test_disconnect_transfers_ownership_and_updates_room(flask_app, sio_factory, make_user):
    owner_id, owner_token = make_user('owner@example.com')
    guest_id, guest_token = make_user('guest@example.com')
    lobby_id = lobbies.create_lobby(owner_id).id
    owner = sio_factory(token=owner_token)
    guest = sio_factory(token=guest_token)
    owner.emit('join-lobby', lobby_id, namespace='/ws', callback=True)
    guest.emit('join-lobby', lobby_id, namespace='/ws', callback=True)
    guest.get_received('/ws')

    owner.disconnect(namespace='/ws')

    updates = _payloads(guest.get_received('/ws'), 'lobby-update')
    assert updates and updates[-1]['ownerId'] == guest_id
    db.session.expire_all()
    lobby = db.session.get(Lobby, lobby_id)
    assert lobby.owner_id == guest_id
    assert [p.user_id for p in lobby.players] == [guest_id]

    guest.disconnect(namespace='/ws')
    db.session.expire_all()
    assert db.session.get(Lobby, lobby_id) is None


def test_two_player_match_end_to_end(flask_app, client, sio_factory, make_user, auth_headers, fake_tracks):
    owner_id, owner_token = make_user('owner@example.com')
    guest_id, guest_token = make_user('guest@example.com')
    owner_headers, guest_headers = auth_headers(owner_token), auth_headers(guest_token)

    created = client.post('/multiplayer/lobby', json={'songCount': 3, 'maxAttempts': 5}, headers=owner_headers).get_json()
    lobby_id, code = created['lobbyId'], created['lobbyCode']
    assert len(created['players']) == 1

    owner = sio_factory(token=owner_token)
    guest = sio_factory(token=guest_token)
    owner.emit('join-lobby', lobby_id, namespace='/ws', callback=True)
    _, ack = guest.emit('join-by-code', code, namespace='/ws', callback=True)
    assert ack['success'] is True
    assert len(_payloads(owner.get_received('/ws'), 'lobby-update')[-1]['players']) == 2

    owner.emit('toggle-ready', lobby_id, namespace='/ws', callback=True)
    guest.emit('toggle-ready', lobby_id, namespace='/ws', callback=True)
    assert _payloads(owner.get_received('/ws'), 'players-ready-status')[-1] == {'allReady': True}
    guest.get_received('/ws')

    res = client.post(f'/multiplayer/game/{lobby_id}', headers=owner_headers)
    assert res.status_code == 201
    game_id = res.get_json()['gameId']

    owner_events, guest_events = owner.get_received('/ws'), guest.get_received('/ws')
    started = _payloads(owner_events, 'game-started')
    assert len(started) == 1 and len(_payloads(guest_events, 'game-started')) == 1
    total = started[0]['totalSongs']
    assert total <= 3
    assert [e['score'] for e in started[0]['leaderboard']] == [0, 0]
    state = client.get(f'/multiplayer/game/{game_id}', headers=owner_headers).get_json()['game']
    assert [ps['currentSongIndex'] for ps in state['playerStates']] == [0, 0]

    names = [s['name'] for s in started[0]['targetSongs']]
    res = client.post(f'/multiplayer/game/{game_id}/guess', json={'guess': names[0]}, headers=owner_headers).get_json()
    assert (res['score'], res['currentSongIndex']) == (5, 1)

    for _ in range(5):
        res = client.post(f'/multiplayer/game/{game_id}/guess', json={'skip': True}, headers=guest_headers).get_json()
    assert res['currentSongIndex'] == 1
    assert res['score'] == 0
    assert res['song']['name'] == names[0]
    state = client.get(f'/multiplayer/game/{game_id}', headers=guest_headers).get_json()['game']
    assert state['playerStates'][1]['completedSongs'] == [{'songIndex': 0, 'correct': False, 'attempts': 5}]

    for name in names[1:]:
        client.post(f'/multiplayer/game/{game_id}/guess', json={'guess': name}, headers=owner_headers)
    for name in names[1:]:
        res = client.post(f'/multiplayer/game/{game_id}/guess', json={'guess': name}, headers=guest_headers).get_json()
    assert res['gameCompleted'] is True

    owner_events = owner.get_received('/ws')
    guest_events = guest.get_received('/ws')
    assert len(_payloads(owner_events, 'leaderboard-update')) == 2 * total
    overs = _payloads(owner_events, 'game-over')
    assert len(overs) == 1 and len(_payloads(guest_events, 'game-over')) == 1
    final = overs[0]['leaderboard']
    assert [e['userId'] for e in final] == [owner_id, guest_id]
    assert final[0]['score'] == 5 * total
    assert final[1]['score'] == 5 * (total - 1)

    state = client.get(f'/multiplayer/game/{game_id}', headers=owner_headers).get_json()['game']
    assert state['status'] == 'completed'
    assert state['completedAt'] is not None
