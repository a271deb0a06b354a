import logging
from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from pymongo.errors import DuplicateKeyError

from .database import ChatStore
from .models import (ChannelCreate, RoleAssign, RoleCreate, VoiceChannelCreate, isoformat,
                     serialize_channel, serialize_message, serialize_role, serialize_user,
                     serialize_voice_channel, utcnow)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api")


def get_store(request: Request) -> ChatStore:
    return request.app.state.store


def get_channels(request: Request) -> List[str]:
    return request.app.state.channels


MAX_HISTORY_LIMIT = 500


def parse_count(value: Optional[str], default: int) -> int:
    """Positive integer from a query string; anything else falls back to `default`."""
    try:
        count = int(value)
    except (TypeError, ValueError):
        return default
    return count if count > 0 else default


def history_limit(request: Request, limit: Optional[str] = None) -> int:
    return min(parse_count(limit, request.app.state.history_limit), MAX_HISTORY_LIMIT)


def history_skip(skip: Optional[str] = None) -> int:
    return parse_count(skip, 0)


@router.get("/health")
def health(request: Request, store: ChatStore = Depends(get_store)):
    return {
        "status": "OK",
        "connectedUsers": request.app.state.registry.size(),
        "onlineUsers": store.count_users(online_only=True),
        "totalUsers": store.count_users(),
        "totalMessages": store.count_messages(),
        "totalConnections": request.app.state.connections.count(),
        "channels": request.app.state.channels,
        "timestamp": isoformat(utcnow()),
    }


# Messages

@router.get("/messages")
def get_messages(channel: str = "general", limit: int = Depends(history_limit),
                 skip: int = Depends(history_skip), store: ChatStore = Depends(get_store)):
    return [serialize_message(m) for m in store.list_messages(channel.lower(), limit, skip)]


@router.get("/messages/all")
def get_all_messages(limit: int = Depends(history_limit), store: ChatStore = Depends(get_store),
                     channels: List[str] = Depends(get_channels)) -> Dict[str, list]:
    return {
        channel: [serialize_message(m) for m in store.list_messages(channel, limit)]
        for channel in channels
    }


@router.delete("/messages/{message_id}")
def delete_message(message_id: str, store: ChatStore = Depends(get_store)):
    message = store.get_message(message_id)
    if message is None:
        raise HTTPException(status_code=404, detail="Message not found")
    store.delete_message(message)
    logger.info(f"Deleted message {message_id} from #{message['channel']}")
    return {"message": "Message deleted", "id": message_id}


# Users

@router.get("/users")
def get_users(online: bool = False, store: ChatStore = Depends(get_store)):
    return [serialize_user(u) for u in store.list_users(online_only=online)]


@router.put("/users/{user_id}/role")
def assign_role(user_id: str, body: RoleAssign, store: ChatStore = Depends(get_store)):
    if not body.role_id:
        raise HTTPException(status_code=400, detail="roleId is required")
    if store.get_user(user_id) is None:
        raise HTTPException(status_code=404, detail="User not found")
    role = store.get_role(body.role_id)
    if role is None:
        raise HTTPException(status_code=404, detail="Role not found")
    user = store.set_user_role(user_id, role["name"])
    logger.info(f"Assigned role {role['name']} to {user['username']}")
    return serialize_user(user)


# Channels

@router.get("/channels")
def list_channels(store: ChatStore = Depends(get_store)):
    return [serialize_channel(c, c.get("creator")) for c in store.list_channels()]


@router.post("/channels", status_code=201)
def create_channel(body: ChannelCreate, store: ChatStore = Depends(get_store)):
    if not body.name:
        raise HTTPException(status_code=400, detail="Channel name is required")
    if store.get_channel_by_name(body.name) is not None:
        raise HTTPException(status_code=400, detail="Channel already exists")
    system_user = store.get_system_user()
    try:
        channel = store.create_channel(body.name, body.description, system_user["_id"])
    except DuplicateKeyError:
        raise HTTPException(status_code=400, detail="Channel already exists")
    logger.info(f"Created channel: {channel['name']}")
    return serialize_channel(channel, system_user)


@router.delete("/channels/{channel_id}")
def delete_channel(channel_id: str, store: ChatStore = Depends(get_store)):
    channel = store.get_channel(channel_id)
    if channel is None:
        raise HTTPException(status_code=404, detail="Channel not found")
    deleted = store.delete_channel(channel)
    logger.info(f"Deleted channel {channel['name']} and {deleted} messages")
    return {"message": "Channel deleted", "deletedMessages": deleted}


@router.get("/channels/{channel_id}/messages")
def get_channel_messages(channel_id: str, limit: int = Depends(history_limit),
                         skip: int = Depends(history_skip), store: ChatStore = Depends(get_store)):
    channel = store.get_channel(channel_id)
    if channel is None:
        raise HTTPException(status_code=404, detail="Channel not found")
    return [serialize_message(m) for m in store.list_messages(channel["name"], limit, skip)]


@router.delete("/channels/{channel_id}/messages")
def clear_channel_messages(channel_id: str, store: ChatStore = Depends(get_store)):
    channel = store.get_channel(channel_id)
    if channel is None:
        raise HTTPException(status_code=404, detail="Channel not found")
    deleted = store.clear_channel_messages(channel)
    logger.info(f"Cleared {deleted} messages from #{channel['name']}")
    return {"message": "Channel messages cleared", "deletedMessages": deleted}


# Voice channels

@router.get("/voice-channels")
def list_voice_channels(store: ChatStore = Depends(get_store)):
    return [serialize_voice_channel(c) for c in store.list_voice_channels()]


@router.post("/voice-channels", status_code=201)
def create_voice_channel(body: VoiceChannelCreate, store: ChatStore = Depends(get_store)):
    if not body.name:
        raise HTTPException(status_code=400, detail="Voice channel name is required")
    if store.get_voice_channel_by_name(body.name) is not None:
        raise HTTPException(status_code=400, detail="Voice channel already exists")
    system_user = store.get_system_user()
    try:
        channel = store.create_voice_channel(body.name, body.description, system_user["_id"],
                                             body.max_participants, body.is_private)
    except DuplicateKeyError:
        raise HTTPException(status_code=400, detail="Voice channel already exists")
    logger.info(f"Created voice channel: {channel['name']}")
    return serialize_voice_channel(channel)


@router.delete("/voice-channels/{channel_id}")
def delete_voice_channel(channel_id: str, store: ChatStore = Depends(get_store)):
    channel = store.get_voice_channel(channel_id)
    if channel is None:
        raise HTTPException(status_code=404, detail="Voice channel not found")
    store.delete_voice_channel(channel)
    logger.info(f"Deleted voice channel: {channel['name']}")
    return {"message": "Voice channel deleted"}


# Roles

@router.get("/roles")
def list_roles(store: ChatStore = Depends(get_store)):
    return [serialize_role(r) for r in store.list_roles()]


@router.post("/roles", status_code=201)
def create_role(body: RoleCreate, store: ChatStore = Depends(get_store)):
    if not body.name:
        raise HTTPException(status_code=400, detail="Role name is required")
    if store.get_role_by_name(body.name) is not None:
        raise HTTPException(status_code=400, detail="Role already exists")
    try:
        role = store.create_role(body.name, body.description)
    except DuplicateKeyError:
        raise HTTPException(status_code=400, detail="Role already exists")
    logger.info(f"Created role: {role['name']}")
    return serialize_role(role)


@router.get("/statistics")
def statistics(request: Request, store: ChatStore = Depends(get_store),
               channels: List[str] = Depends(get_channels)):
    return {
        "totalUsers": store.count_users(),
        "onlineUsers": store.count_users(online_only=True),
        "connectedUsers": request.app.state.registry.size(),
        "totalMessages": store.count_messages(),
        "broadcastMessages": store.count_messages({"isBroadcast": True}),
        "totalChannels": store.count_channels(),
        "totalVoiceChannels": store.count_voice_channels(),
        "totalRoles": store.count_roles(),
        "messagesByChannel": {c: store.count_messages({"channel": c}) for c in channels},
        "timestamp": isoformat(utcnow()),
    }
