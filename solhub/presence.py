import logging
from typing import Any, Optional

from pydantic import ValidationError
from pymongo.errors import PyMongoError
from starlette.concurrency import run_in_threadpool

from .database import ChatStore
from .models import JoinPayload
from .registry import ConnectionRegistry

logger = logging.getLogger(__name__)

JOIN_FAILED = 'Failed to join. Please try again.'
JOIN_INVALID = 'Username and wallet address are required.'


class PresenceCoordinator:
    """Binds live connections to users and announces online/offline changes.

    A user is ONLINE while some connection is bound to it in the registry and
    OFFLINE otherwise; the store's isOnline flag mirrors that.
    """

    def __init__(self, store: ChatStore, registry: ConnectionRegistry, emitter):
        self.store = store
        self.registry = registry
        self.emitter = emitter

    async def handle_join(self, connection_id: str, data: Optional[Any]):
        """`join` event: a null payload is an explicit leave."""
        if data is None:
            try:
                await self.leave(connection_id)
            except PyMongoError:
                logger.exception("Error handling leave")
                self.emitter.emit(connection_id, 'joinError', {'error': JOIN_FAILED})
            return

        try:
            payload = JoinPayload.model_validate(data)
        except ValidationError:
            self.emitter.emit(connection_id, 'joinError', {'error': JOIN_INVALID})
            return

        try:
            await self.join(connection_id, payload)
        except PyMongoError:
            logger.exception("Error handling join")
            self.emitter.emit(connection_id, 'joinError', {'error': JOIN_FAILED})

    async def join(self, connection_id: str, payload: JoinPayload):
        user = await run_in_threadpool(self.store.find_user_by_identity,
                                       payload.username, payload.wallet_address)

        # Same socket switching identity: the old identity goes offline first.
        bound_id = self.registry.resolve(connection_id)
        if bound_id is not None and (user is None or bound_id != user['_id']):
            await self._go_offline(connection_id)

        if user is None:
            user = await run_in_threadpool(
                self.store.create_user,
                payload.username,
                payload.wallet_address,
                payload.avatar or None,
                payload.role or None,
                connection_id,
            )
        else:
            previous_socket = user.get('socketId')
            user = await run_in_threadpool(self.store.mark_online, user['_id'], connection_id,
                                           payload.avatar, payload.role)
            # Reconnect from a new socket: the stale one no longer speaks for this user.
            if (previous_socket and previous_socket != connection_id
                    and self.registry.resolve(previous_socket) == user['_id']):
                self.registry.unbind(previous_socket)

        self.registry.bind(connection_id, user['_id'])
        self.emitter.broadcast('userJoined', {
            'username': user['username'],
            'avatar': user.get('avatar'),
            'isOnline': True
        }, exclude=connection_id)

        logger.info(f"User joined: {user['username']}")
        logger.info(f"Total connected users: {self.registry.size()}")
        return user

    async def leave(self, connection_id: str):
        user = await self._go_offline(connection_id)
        if user is not None:
            logger.info(f"User left: {user['username']}")
        return user

    async def disconnect(self, connection_id: str):
        """Transport dropped. Errors are only logged; nobody is left to tell."""
        try:
            user = await self._go_offline(connection_id)
            if user is not None:
                logger.info(f"User disconnected: {user['username']}")
        except PyMongoError:
            logger.exception("Error handling disconnect")
        finally:
            self.registry.unbind(connection_id)
        logger.info(f"Total connected users: {self.registry.size()}")

    async def _go_offline(self, connection_id: str):
        user_id = self.registry.resolve(connection_id)
        if user_id is None:
            logger.info(f"Connection {connection_id} left without user data")
            return None

        user = await run_in_threadpool(self.store.mark_offline, user_id, connection_id)
        if user is not None:
            self.emitter.broadcast('userLeft', {
                'username': user['username'],
                'avatar': user.get('avatar')
            }, exclude=connection_id)
        self.registry.unbind(connection_id)
        return user
