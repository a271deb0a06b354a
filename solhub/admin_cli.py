"""Command line client for the SolHub HTTP admin API."""

import argparse
import json
import logging
import sys

import requests

from .config_manager import get_config

logger = logging.getLogger(__name__)

TIMEOUT = 10


class AdminClient:
    def __init__(self, base_url: str):
        self.base_url = base_url.rstrip('/')

    def _request(self, method, path, **kwargs):
        response = requests.request(method, f"{self.base_url}/api{path}", timeout=TIMEOUT, **kwargs)
        try:
            body = response.json()
        except ValueError:
            body = {'error': response.text}
        if response.status_code >= 400:
            raise AdminError(response.status_code, body.get('error', 'Request failed'))
        return body

    def health(self):
        return self._request('GET', '/health')

    def statistics(self):
        return self._request('GET', '/statistics')

    def list_channels(self):
        return self._request('GET', '/channels')

    def create_channel(self, name, description=''):
        return self._request('POST', '/channels', json={'name': name, 'description': description})

    def delete_channel(self, channel_id):
        return self._request('DELETE', f'/channels/{channel_id}')

    def clear_channel(self, channel_id):
        return self._request('DELETE', f'/channels/{channel_id}/messages')

    def list_voice_channels(self):
        return self._request('GET', '/voice-channels')

    def create_voice_channel(self, name, description='', max_participants=10, is_private=False):
        return self._request('POST', '/voice-channels', json={
            'name': name,
            'description': description,
            'maxParticipants': max_participants,
            'isPrivate': is_private
        })

    def delete_voice_channel(self, channel_id):
        return self._request('DELETE', f'/voice-channels/{channel_id}')

    def list_roles(self):
        return self._request('GET', '/roles')

    def create_role(self, name, description=''):
        return self._request('POST', '/roles', json={'name': name, 'description': description})

    def assign_role(self, user_id, role_id):
        return self._request('PUT', f'/users/{user_id}/role', json={'roleId': role_id})

    def list_users(self, online_only=False):
        params = {'online': 'true'} if online_only else None
        return self._request('GET', '/users', params=params)

    def delete_message(self, message_id):
        return self._request('DELETE', f'/messages/{message_id}')


class AdminError(Exception):
    def __init__(self, status_code, message):
        super().__init__(f"{status_code}: {message}")
        self.status_code = status_code
        self.message = message


def build_parser():
    port = get_config().get_server_config().get('port')
    parser = argparse.ArgumentParser(description="SolHub admin client")
    parser.add_argument('--url', type=str, default=f"http://localhost:{port}", help='Server base URL')
    sub = parser.add_subparsers(dest='command', required=True)

    sub.add_parser('health')
    sub.add_parser('stats')
    sub.add_parser('channels')
    sub.add_parser('voice-channels')
    sub.add_parser('roles')
    users = sub.add_parser('users')
    users.add_argument('--online', action='store_true')

    create_channel = sub.add_parser('create-channel')
    create_channel.add_argument('name')
    create_channel.add_argument('--description', default='')

    delete_channel = sub.add_parser('delete-channel')
    delete_channel.add_argument('channel_id')

    clear_channel = sub.add_parser('clear-channel')
    clear_channel.add_argument('channel_id')

    create_voice = sub.add_parser('create-voice-channel')
    create_voice.add_argument('name')
    create_voice.add_argument('--description', default='')
    create_voice.add_argument('--max-participants', type=int, default=10)
    create_voice.add_argument('--private', action='store_true')

    delete_voice = sub.add_parser('delete-voice-channel')
    delete_voice.add_argument('channel_id')

    create_role = sub.add_parser('create-role')
    create_role.add_argument('name')
    create_role.add_argument('--description', default='')

    assign_role = sub.add_parser('assign-role')
    assign_role.add_argument('user_id')
    assign_role.add_argument('role_id')

    delete_message = sub.add_parser('delete-message')
    delete_message.add_argument('message_id')
    return parser


def run_command(client: AdminClient, args):
    command = args.command
    if command == 'health':
        return client.health()
    if command == 'stats':
        return client.statistics()
    if command == 'channels':
        return client.list_channels()
    if command == 'voice-channels':
        return client.list_voice_channels()
    if command == 'roles':
        return client.list_roles()
    if command == 'users':
        return client.list_users(online_only=args.online)
    if command == 'create-channel':
        return client.create_channel(args.name, args.description)
    if command == 'delete-channel':
        return client.delete_channel(args.channel_id)
    if command == 'clear-channel':
        return client.clear_channel(args.channel_id)
    if command == 'create-voice-channel':
        return client.create_voice_channel(args.name, args.description, args.max_participants, args.private)
    if command == 'delete-voice-channel':
        return client.delete_voice_channel(args.channel_id)
    if command == 'create-role':
        return client.create_role(args.name, args.description)
    if command == 'assign-role':
        return client.assign_role(args.user_id, args.role_id)
    if command == 'delete-message':
        return client.delete_message(args.message_id)
    raise ValueError(f"Unknown command: {command}")


def main(argv=None):
    args = build_parser().parse_args(argv)
    client = AdminClient(args.url)
    try:
        result = run_command(client, args)
    except AdminError as e:
        print(f"Error: {e.message}", file=sys.stderr)
        return 1
    except requests.RequestException as e:
        logger.error(f"Cannot reach {args.url}: {e}")
        print(f"Error: cannot reach {args.url}", file=sys.stderr)
        return 1
    print(json.dumps(result, indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(main())
