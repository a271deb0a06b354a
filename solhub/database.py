import logging
from typing import Any, Dict, List, Optional

from bson import ObjectId
from pymongo import ASCENDING, DESCENDING, MongoClient, ReturnDocument
from pymongo.database import Database

from .models import utcnow

logger = logging.getLogger(__name__)

SYSTEM_USERNAME = 'system'
SYSTEM_WALLET = '0x' + '0' * 40


def get_db(config) -> Database:
    """Open the MongoDB database named by the configured URI."""
    client = MongoClient(config.get_database_config().get('uri'))
    return client[config.get_database_name()]


def to_object_id(value) -> Optional[ObjectId]:
    if isinstance(value, ObjectId):
        return value
    if isinstance(value, str) and ObjectId.is_valid(value):
        return ObjectId(value)
    return None


class ChatStore:
    """Durable users, channels, voice channels, roles and messages.

    Every method is a blocking pymongo call; store errors propagate to the caller.
    """

    def __init__(self, db: Database):
        self.db = db
        self.users = db.users
        self.channels = db.channels
        self.voice_channels = db.voice_channels
        self.roles = db.roles
        self.messages = db.messages

    def init_db(self, channel_names: List[str], voice_channels: List[Dict[str, Any]]):
        """Create indexes, reset stale presence and seed the system user and default channels."""
        # The registry starts empty, so nobody can still be bound from a previous process.
        stale = self.users.update_many({'isOnline': True}, {'$set': {'isOnline': False, 'socketId': None}})
        if stale.modified_count:
            logger.info(f"Marked {stale.modified_count} users offline after restart")

        self.users.create_index('username', unique=True)
        self.users.create_index('walletAddress', unique=True)
        self.users.create_index('isOnline')
        self.channels.create_index('name', unique=True)
        self.channels.create_index('isActive')
        self.channels.create_index([('lastMessageAt', DESCENDING)])
        self.voice_channels.create_index('name', unique=True)
        self.voice_channels.create_index('isActive')
        self.roles.create_index('name', unique=True)
        self.messages.create_index([('channel', ASCENDING), ('timestamp', DESCENDING)])
        self.messages.create_index('userId')
        self.messages.create_index([('timestamp', DESCENDING)])

        system_user = self.get_system_user()
        for name in channel_names:
            if self.get_channel_by_name(name) is None:
                self.create_channel(name, f'Default {name} channel', system_user['_id'])
                logger.info(f"Initialized channel: {name}")
        for seed in voice_channels:
            if self.voice_channels.find_one({'name': seed['name']}) is None:
                self.create_voice_channel(seed['name'], seed.get('description', ''),
                                          system_user['_id'])
                logger.info(f"Initialized voice channel: {seed['name']}")

    # User operations
    def get_system_user(self) -> Dict[str, Any]:
        user = self.users.find_one({'username': SYSTEM_USERNAME})
        if user is None:
            user = self.create_user(SYSTEM_USERNAME, SYSTEM_WALLET, is_online=False)
        return user

    def get_user(self, user_id) -> Optional[Dict[str, Any]]:
        oid = to_object_id(user_id)
        return self.users.find_one({'_id': oid}) if oid else None

    def find_user_by_identity(self, username: str, wallet_address: str) -> Optional[Dict[str, Any]]:
        """First user whose username or wallet address matches."""
        return self.users.find_one({
            '$or': [
                {'username': username},
                {'walletAddress': wallet_address}
            ]
        })

    def create_user(self, username: str, wallet_address: str, avatar: Optional[str] = None,
                    role: Optional[str] = None, socket_id: Optional[str] = None,
                    is_online: bool = True) -> Dict[str, Any]:
        now = utcnow()
        user = {
            'username': username,
            'walletAddress': wallet_address,
            'avatar': avatar,
            'role': role,
            'isOnline': is_online,
            'socketId': socket_id,
            'lastSeen': now,
            'joinedAt': now,
            'createdAt': now,
            'updatedAt': now,
        }
        user['_id'] = self.users.insert_one(user).inserted_id
        return user

    def mark_online(self, user_id, socket_id: str, avatar: Optional[str] = None,
                    role: Optional[str] = None) -> Optional[Dict[str, Any]]:
        now = utcnow()
        changes = {'isOnline': True, 'socketId': socket_id, 'lastSeen': now, 'updatedAt': now}
        if avatar:
            changes['avatar'] = avatar
        if role:
            changes['role'] = role
        return self.users.find_one_and_update(
            {'_id': user_id}, {'$set': changes}, return_document=ReturnDocument.AFTER
        )

    def mark_offline(self, user_id, socket_id: Optional[str] = None) -> Optional[Dict[str, Any]]:
        """Take a user offline, only if still bound to `socket_id` when one is given."""
        query = {'_id': user_id}
        if socket_id is not None:
            query['socketId'] = socket_id
        return self.users.find_one_and_update(
            query,
            {'$set': {'isOnline': False, 'socketId': None, 'updatedAt': utcnow()}},
            return_document=ReturnDocument.AFTER
        )

    def list_users(self, online_only: bool = False) -> List[Dict[str, Any]]:
        query = {'isOnline': True} if online_only else {}
        return list(self.users.find(query).sort([('isOnline', DESCENDING), ('lastSeen', DESCENDING)]))

    def count_users(self, online_only: bool = False) -> int:
        return self.users.count_documents({'isOnline': True} if online_only else {})

    def set_user_role(self, user_id, role_name: str) -> Optional[Dict[str, Any]]:
        oid = to_object_id(user_id)
        if oid is None:
            return None
        return self.users.find_one_and_update(
            {'_id': oid},
            {'$set': {'role': role_name, 'updatedAt': utcnow()}},
            return_document=ReturnDocument.AFTER
        )

    # Channel operations
    def get_channel(self, channel_id) -> Optional[Dict[str, Any]]:
        oid = to_object_id(channel_id)
        return self.channels.find_one({'_id': oid}) if oid else None

    def get_channel_by_name(self, name: str) -> Optional[Dict[str, Any]]:
        return self.channels.find_one({'name': name.strip().lower()})

    def list_channels(self) -> List[Dict[str, Any]]:
        """Active channels, most recently used first, each with its creator document."""
        channels = list(self.channels.find({'isActive': True}))
        # Channels that never saw a message sort last.
        channels.sort(key=lambda c: (c.get('lastMessageAt') is not None, c.get('lastMessageAt') or 0),
                      reverse=True)
        creator_ids = list({c['createdBy'] for c in channels if c.get('createdBy')})
        creators = {u['_id']: u for u in self.users.find({'_id': {'$in': creator_ids}})}
        for channel in channels:
            channel['creator'] = creators.get(channel.get('createdBy'))
        return channels

    def create_channel(self, name: str, description: str, created_by) -> Dict[str, Any]:
        now = utcnow()
        channel = {
            'name': name.strip().lower(),
            'description': description,
            'isActive': True,
            'messageCount': 0,
            'lastMessageAt': None,
            'createdBy': created_by,
            'createdAt': now,
            'updatedAt': now,
        }
        channel['_id'] = self.channels.insert_one(channel).inserted_id
        return channel

    def delete_channel(self, channel: Dict[str, Any]) -> int:
        """Delete a channel and every message labelled with its name."""
        deleted = self.messages.delete_many({'channel': channel['name']}).deleted_count
        self.channels.delete_one({'_id': channel['_id']})
        return deleted

    def record_channel_message(self, name: str, timestamp):
        self.channels.update_one(
            {'name': name},
            {'$set': {'lastMessageAt': timestamp}, '$inc': {'messageCount': 1}}
        )

    def clear_channel_messages(self, channel: Dict[str, Any]) -> int:
        deleted = self.messages.delete_many({'channel': channel['name']}).deleted_count
        self.channels.update_one(
            {'_id': channel['_id']},
            {'$set': {'messageCount': 0, 'lastMessageAt': None, 'updatedAt': utcnow()}}
        )
        return deleted

    # Message operations
    def insert_message(self, user: Dict[str, Any], text: str, channel: str,
                       is_broadcast: bool = False) -> Dict[str, Any]:
        """Store a message carrying a snapshot of the author's name and avatar."""
        now = utcnow()
        message = {
            'username': user['username'],
            'text': text,
            'channel': channel,
            'avatar': user.get('avatar'),
            'isBroadcast': is_broadcast,
            'userId': user['_id'],
            'timestamp': now,
            'createdAt': now,
            'updatedAt': now,
        }
        message['_id'] = self.messages.insert_one(message).inserted_id
        return message

    def get_message(self, message_id) -> Optional[Dict[str, Any]]:
        oid = to_object_id(message_id)
        return self.messages.find_one({'_id': oid}) if oid else None

    def delete_message(self, message: Dict[str, Any]):
        self.messages.delete_one({'_id': message['_id']})
        self.channels.update_one({'name': message['channel'], 'messageCount': {'$gt': 0}},
                                 {'$inc': {'messageCount': -1}})

    def list_messages(self, channel: str, limit: int = 50, skip: int = 0) -> List[Dict[str, Any]]:
        """Newest `limit` messages of a channel after `skip`, returned oldest first."""
        cursor = (self.messages.find({'channel': channel})
                  .sort([('timestamp', DESCENDING), ('_id', DESCENDING)])
                  .skip(skip)
                  .limit(limit))
        messages = list(cursor)
        messages.reverse()
        return messages

    def count_messages(self, query: Optional[Dict[str, Any]] = None) -> int:
        return self.messages.count_documents(query or {})

    # Voice channel operations
    def get_voice_channel(self, channel_id) -> Optional[Dict[str, Any]]:
        oid = to_object_id(channel_id)
        return self.voice_channels.find_one({'_id': oid}) if oid else None

    def get_voice_channel_by_name(self, name: str) -> Optional[Dict[str, Any]]:
        return self.voice_channels.find_one({'name': name.strip()})

    def list_voice_channels(self) -> List[Dict[str, Any]]:
        return list(self.voice_channels.find({'isActive': True}).sort('name', ASCENDING))

    def create_voice_channel(self, name: str, description: str, created_by,
                             max_participants: int = 10, is_private: bool = False) -> Dict[str, Any]:
        now = utcnow()
        channel = {
            'name': name.strip(),
            'description': description,
            'isActive': True,
            'participants': [],
            'maxParticipants': max_participants,
            'isPrivate': is_private,
            'createdBy': created_by,
            'createdAt': now,
            'updatedAt': now,
        }
        channel['_id'] = self.voice_channels.insert_one(channel).inserted_id
        return channel

    def delete_voice_channel(self, channel: Dict[str, Any]):
        self.voice_channels.delete_one({'_id': channel['_id']})

    def count_voice_channels(self) -> int:
        return self.voice_channels.count_documents({})

    # Role operations
    def get_role(self, role_id) -> Optional[Dict[str, Any]]:
        oid = to_object_id(role_id)
        return self.roles.find_one({'_id': oid}) if oid else None

    def get_role_by_name(self, name: str) -> Optional[Dict[str, Any]]:
        return self.roles.find_one({'name': name.strip().lower()})

    def list_roles(self) -> List[Dict[str, Any]]:
        return list(self.roles.find({'isActive': True}).sort('name', ASCENDING))

    def create_role(self, name: str, description: str = '') -> Dict[str, Any]:
        now = utcnow()
        role = {
            'name': name.strip().lower(),
            'description': description,
            'isActive': True,
            'createdAt': now,
            'updatedAt': now,
        }
        role['_id'] = self.roles.insert_one(role).inserted_id
        return role

    def count_roles(self) -> int:
        return self.roles.count_documents({})

    def count_channels(self) -> int:
        return self.channels.count_documents({})
