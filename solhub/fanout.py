import logging
from typing import Any, Dict, List, Optional

from pydantic import ValidationError
from pymongo.errors import PyMongoError
from starlette.concurrency import run_in_threadpool

from .database import ChatStore
from .models import BroadcastPayload, SendMessagePayload, TypingPayload, serialize_message
from .registry import ConnectionRegistry

logger = logging.getLogger(__name__)

NOT_REGISTERED = 'User not found. Please reconnect.'
INVALID_TEXT = 'Message text must be between 1 and 1000 characters.'
UNKNOWN_CHANNEL = 'Channel not found.'
SEND_FAILED = 'Server error processing message'
BROADCAST_FAILED = 'Server error processing broadcast message'


class MessageFanout:
    """Persists chat messages and re-emits them to every live connection.

    Channels are labels only: every connection receives every message and
    filters on the client side.
    """

    def __init__(self, store: ChatStore, registry: ConnectionRegistry, emitter,
                 channels: List[str], default_channel: str = 'general'):
        self.store = store
        self.registry = registry
        self.emitter = emitter
        self.channels = list(channels)
        self.default_channel = default_channel

    async def _sender(self, connection_id: str) -> Optional[Dict[str, Any]]:
        """The online user bound to this connection, or None after telling the sender."""
        user_id = self.registry.resolve(connection_id)
        if user_id is None:
            self.emitter.emit(connection_id, 'messageError', {'error': NOT_REGISTERED})
            return None
        user = await run_in_threadpool(self.store.get_user, user_id)
        if user is None or not user.get('isOnline'):
            self.emitter.emit(connection_id, 'messageError', {'error': NOT_REGISTERED})
            return None
        return user

    async def send_message(self, connection_id: str, data: Any):
        try:
            await self._send_message(connection_id, data)
        except PyMongoError:
            logger.exception("Error handling sendMessage")
            self.emitter.emit(connection_id, 'messageError', {'error': SEND_FAILED})

    async def _send_message(self, connection_id: str, data: Any):
        user = await self._sender(connection_id)
        if user is None:
            return None

        try:
            payload = SendMessagePayload.model_validate(data or {})
        except ValidationError:
            self.emitter.emit(connection_id, 'messageError', {'error': INVALID_TEXT})
            return None

        channel_name = (payload.channel or self.default_channel).lower()
        channel = await run_in_threadpool(self.store.get_channel_by_name, channel_name)
        if channel is None:
            self.emitter.emit(connection_id, 'messageError', {'error': UNKNOWN_CHANNEL})
            return None

        message = await run_in_threadpool(self.store.insert_message, user, payload.text, channel['name'])
        await run_in_threadpool(self.store.record_channel_message, channel['name'], message['timestamp'])

        event = serialize_message(message)
        self.emitter.broadcast('newMessage', event)
        return event

    async def broadcast_message(self, connection_id: str, data: Any):
        try:
            await self._broadcast_message(connection_id, data)
        except PyMongoError:
            logger.exception("Error handling broadcastMessage")
            self.emitter.emit(connection_id, 'messageError', {'error': BROADCAST_FAILED})

    async def _broadcast_message(self, connection_id: str, data: Any):
        user = await self._sender(connection_id)
        if user is None:
            return []

        try:
            payload = BroadcastPayload.model_validate(data or {})
        except ValidationError:
            self.emitter.emit(connection_id, 'messageError', {'error': INVALID_TEXT})
            return []

        # One independent write pair per channel; a failed channel is skipped, not rolled back.
        events = []
        for channel_name in self.channels:
            try:
                if await run_in_threadpool(self.store.get_channel_by_name, channel_name) is None:
                    logger.warning(f"Broadcast skipped deleted channel {channel_name}")
                    continue
                message = await run_in_threadpool(self.store.insert_message, user, payload.text,
                                                  channel_name, True)
            except PyMongoError:
                logger.exception(f"Broadcast to channel {channel_name} failed")
                continue
            # Stored messages are always emitted, even if the counter bump fails.
            events.append(serialize_message(message))
            try:
                await run_in_threadpool(self.store.record_channel_message, channel_name,
                                        message['timestamp'])
            except PyMongoError:
                logger.exception(f"Counter update for channel {channel_name} failed")

        for event in events:
            self.emitter.broadcast('newMessage', event)
        logger.info(f"Broadcast from {user['username']} reached {len(events)}/{len(self.channels)} channels")
        return events

    def typing(self, connection_id: str, data: Any):
        user_id = self.registry.resolve(connection_id)
        if user_id is None:
            return
        try:
            payload = TypingPayload.model_validate(data or {})
        except ValidationError:
            return
        self.emitter.broadcast('userTyping', {
            'userId': str(user_id),
            'isTyping': payload.is_typing
        }, exclude=connection_id)
