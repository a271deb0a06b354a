from fastapi.testclient import TestClient
from pymongo.errors import PyMongoError

from solhub.config_manager import DEFAULT_CHANNELS
from solhub.main import create_app


def add_messages(store, channel, count, is_broadcast=False):
    user = store.get_system_user()
    for i in range(count):
        message = store.insert_message(user, f'{channel} message {i}', channel, is_broadcast)
        store.record_channel_message(channel, message['timestamp'])


def channel_id(client, name):
    return next(c['id'] for c in client.get('/api/channels').json() if c['name'] == name)


def test_health(client):
    response = client.get('/api/health')

    assert response.status_code == 200
    body = response.json()
    assert body['status'] == 'OK'
    assert body['connectedUsers'] == 0
    assert body['totalConnections'] == 0
    assert body['onlineUsers'] == 0
    assert body['totalUsers'] == 1  # the seeded system user
    assert body['totalMessages'] == 0
    assert body['channels'] == DEFAULT_CHANNELS
    assert body['timestamp']


def test_seeded_channels_and_voice_channels(client):
    channels = client.get('/api/channels').json()
    assert sorted(c['name'] for c in channels) == sorted(DEFAULT_CHANNELS)
    assert all(c['createdBy']['username'] == 'system' for c in channels)

    voice = client.get('/api/voice-channels').json()
    assert len(voice) == 3
    assert all(v['participantCount'] == 0 for v in voice)


def test_message_history_is_oldest_first_with_paging(client, store):
    add_messages(store, 'general', 5)
    add_messages(store, 'trading', 2)

    body = client.get('/api/messages', params={'channel': 'general', 'limit': 3}).json()
    assert [m['text'] for m in body] == ['general message 2', 'general message 3', 'general message 4']
    assert set(body[0]) == {'id', 'username', 'text', 'timestamp', 'avatar', 'channel', 'isBroadcast'}

    body = client.get('/api/messages', params={'channel': 'general', 'limit': 3, 'skip': 3}).json()
    assert [m['text'] for m in body] == ['general message 0', 'general message 1']


def test_unusable_paging_falls_back_to_defaults(client, store):
    add_messages(store, 'general', 60)

    for params in ({'limit': 0}, {'limit': 'abc'}, {'limit': -5}, {'skip': -3}, {'skip': 'x'}):
        response = client.get('/api/messages', params={'channel': 'general', **params})
        assert response.status_code == 200
        body = response.json()
        assert len(body) == 50
        assert body[-1]['text'] == 'general message 59'

    response = client.get(f'/api/channels/{channel_id(client, "general")}/messages', params={'limit': '0'})
    assert len(response.json()) == 50


def test_configured_history_limit(store, config):
    config.update_config('chat', 'history_limit', 2)
    add_messages(store, 'nft', 5)

    with TestClient(create_app(store=store, config=config)) as client:
        body = client.get('/api/messages', params={'channel': 'nft'}).json()
        assert [m['text'] for m in body] == ['nft message 3', 'nft message 4']
        assert len(client.get('/api/messages/all').json()['nft']) == 2
        assert len(client.get('/api/messages', params={'channel': 'nft', 'limit': 4}).json()) == 4


def test_restart_clears_stale_presence(store, config):
    store.create_user('alice', '0xAAA', socket_id='dead-socket')
    assert store.count_users(online_only=True) == 1

    with TestClient(create_app(store=store, config=config)) as client:
        health = client.get('/api/health').json()
        assert health['onlineUsers'] == 0
        assert health['connectedUsers'] == 0
        assert client.get('/api/users', params={'online': 'true'}).json() == []

    alice = store.users.find_one({'username': 'alice'})
    assert alice['isOnline'] is False
    assert alice['socketId'] is None


def test_all_messages_grouped_by_channel(client, store):
    add_messages(store, 'nft', 3)

    body = client.get('/api/messages/all', params={'limit': 2}).json()

    assert set(body) == set(DEFAULT_CHANNELS)
    assert [m['text'] for m in body['nft']] == ['nft message 1', 'nft message 2']
    assert body['general'] == []


def test_users_listing(client, store):
    store.create_user('alice', '0xAAA', socket_id='conn-a')
    store.create_user('bob', '0xBBB', is_online=False)

    everyone = client.get('/api/users').json()
    assert [u['username'] for u in everyone][0] == 'alice'
    assert {u['username'] for u in everyone} == {'alice', 'bob', 'system'}
    assert 'walletAddress' not in everyone[0]

    online = client.get('/api/users', params={'online': 'true'}).json()
    assert [u['username'] for u in online] == ['alice']


def test_channels_sorted_by_last_message(client, store):
    add_messages(store, 'defi', 1)

    channels = client.get('/api/channels').json()

    assert channels[0]['name'] == 'defi'
    assert channels[0]['messageCount'] == 1


def test_create_channel(client):
    response = client.post('/api/channels', json={'name': '  Memes ', 'description': 'fun'})

    assert response.status_code == 201
    assert response.json()['name'] == 'memes'
    assert 'memes' in [c['name'] for c in client.get('/api/channels').json()]


def test_create_channel_validation(client):
    assert client.post('/api/channels', json={'description': 'no name'}).status_code == 400
    assert client.post('/api/channels', json={'name': 'General'}).json() == {'error': 'Channel already exists'}
    assert client.post('/api/channels', json={'name': 'x', 'description': 'd' * 201}).status_code == 400


def test_delete_channel_cascades_messages(client, store):
    add_messages(store, 'nft', 3)
    add_messages(store, 'general', 2)

    response = client.delete(f"/api/channels/{channel_id(client, 'nft')}")

    assert response.status_code == 200
    assert response.json()['deletedMessages'] == 3
    assert store.count_messages({'channel': 'nft'}) == 0
    assert store.count_messages({'channel': 'general'}) == 2
    assert store.get_channel_by_name('nft') is None


def test_channel_not_found(client):
    assert client.delete('/api/channels/not-an-id').status_code == 404
    assert client.delete('/api/channels/5f0000000000000000000000').json() == {'error': 'Channel not found'}
    assert client.get('/api/channels/5f0000000000000000000000/messages').status_code == 404
    assert client.delete('/api/channels/5f0000000000000000000000/messages').status_code == 404


def test_channel_messages_and_clear(client, store):
    add_messages(store, 'trading', 4)
    trading = channel_id(client, 'trading')

    assert len(client.get(f'/api/channels/{trading}/messages').json()) == 4

    response = client.delete(f'/api/channels/{trading}/messages')
    assert response.json()['deletedMessages'] == 4
    channel = store.get_channel_by_name('trading')
    assert channel['messageCount'] == 0
    assert channel['lastMessageAt'] is None
    assert client.get(f'/api/channels/{trading}/messages').json() == []


def test_delete_message_decrements_counter(client, store):
    add_messages(store, 'general', 2)
    message = store.messages.find_one({'channel': 'general'})

    response = client.delete(f"/api/messages/{message['_id']}")

    assert response.status_code == 200
    assert store.count_messages() == 1
    assert store.get_channel_by_name('general')['messageCount'] == 1
    assert client.delete(f"/api/messages/{message['_id']}").status_code == 404


def test_voice_channel_crud(client):
    response = client.post('/api/voice-channels', json={
        'name': 'Late Night', 'description': 'quiet', 'maxParticipants': 4, 'isPrivate': True
    })
    assert response.status_code == 201
    created = response.json()
    assert created['maxParticipants'] == 4
    assert created['isPrivate'] is True
    assert created['participantCount'] == 0

    assert client.post('/api/voice-channels', json={'name': 'Late Night'}).status_code == 400
    assert client.post('/api/voice-channels', json={'name': 'x', 'maxParticipants': 0}).status_code == 400
    assert client.post('/api/voice-channels', json={}).status_code == 400

    assert client.delete(f"/api/voice-channels/{created['id']}").status_code == 200
    assert client.delete(f"/api/voice-channels/{created['id']}").status_code == 404


def test_roles_and_assignment(client, store):
    response = client.post('/api/roles', json={'name': 'Moderator', 'description': 'keeps order'})
    assert response.status_code == 201
    role = response.json()
    assert role['name'] == 'moderator'

    assert client.post('/api/roles', json={'name': 'moderator'}).status_code == 400
    assert client.post('/api/roles', json={}).status_code == 400
    assert [r['name'] for r in client.get('/api/roles').json()] == ['moderator']

    user = store.create_user('alice', '0xAAA')
    response = client.put(f"/api/users/{user['_id']}/role", json={'roleId': role['id']})
    assert response.status_code == 200
    assert response.json()['role'] == 'moderator'
    assert store.get_user(user['_id'])['role'] == 'moderator'


def test_role_assignment_errors(client, store):
    user = store.create_user('alice', '0xAAA')

    assert client.put(f"/api/users/{user['_id']}/role", json={}).status_code == 400
    assert client.put(f"/api/users/{user['_id']}/role",
                      json={'roleId': '5f0000000000000000000000'}).json() == {'error': 'Role not found'}
    assert client.put('/api/users/5f0000000000000000000000/role',
                      json={'roleId': '5f0000000000000000000000'}).json() == {'error': 'User not found'}


def test_statistics(client, store):
    add_messages(store, 'general', 2)
    add_messages(store, 'defi', 1, is_broadcast=True)

    body = client.get('/api/statistics').json()

    assert body['totalMessages'] == 3
    assert body['broadcastMessages'] == 1
    assert body['totalChannels'] == len(DEFAULT_CHANNELS)
    assert body['totalVoiceChannels'] == 3
    assert body['totalRoles'] == 0
    assert body['messagesByChannel']['general'] == 2
    assert body['messagesByChannel']['defi'] == 1
    assert body['connectedUsers'] == 0


def test_store_failure_returns_generic_error(client, store, monkeypatch):
    def broken(*args, **kwargs):
        raise PyMongoError('connection refused')

    monkeypatch.setattr(store, 'count_users', broken)

    response = client.get('/api/health')

    assert response.status_code == 500
    assert response.json() == {'error': 'Database error'}
