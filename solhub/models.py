from datetime import datetime, timezone
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field

MAX_MESSAGE_LENGTH = 1000
MAX_DESCRIPTION_LENGTH = 200


class Payload(BaseModel):
    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True)


# Socket payloads

class JoinPayload(Payload):
    username: str = Field(min_length=1)
    wallet_address: str = Field(alias='walletAddress', min_length=1)
    avatar: Optional[str] = None
    role: Optional[str] = None


class SendMessagePayload(Payload):
    text: str = Field(min_length=1, max_length=MAX_MESSAGE_LENGTH)
    channel: Optional[str] = None


class BroadcastPayload(Payload):
    text: str = Field(min_length=1, max_length=MAX_MESSAGE_LENGTH)


class TypingPayload(Payload):
    is_typing: bool = Field(alias='isTyping', default=False)


# HTTP bodies

class ChannelCreate(Payload):
    name: Optional[str] = None
    description: str = Field(default='', max_length=MAX_DESCRIPTION_LENGTH)


class VoiceChannelCreate(Payload):
    name: Optional[str] = None
    description: str = Field(default='', max_length=MAX_DESCRIPTION_LENGTH)
    max_participants: int = Field(alias='maxParticipants', default=10, ge=1)
    is_private: bool = Field(alias='isPrivate', default=False)


class RoleCreate(Payload):
    name: Optional[str] = None
    description: str = ''


class RoleAssign(Payload):
    role_id: Optional[str] = Field(alias='roleId', default=None)


# Document serializers

def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def isoformat(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.isoformat()


def serialize_user(user: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "id": str(user["_id"]),
        "username": user["username"],
        "avatar": user.get("avatar"),
        "role": user.get("role"),
        "isOnline": user.get("isOnline", False),
        "lastSeen": isoformat(user.get("lastSeen")),
        "joinedAt": isoformat(user.get("joinedAt")),
    }


def serialize_message(message: Dict[str, Any]) -> Dict[str, Any]:
    """Wire shape of a message, shared by newMessage events and the history API."""
    return {
        "id": str(message["_id"]),
        "username": message["username"],
        "text": message["text"],
        "timestamp": isoformat(message.get("timestamp")),
        "avatar": message.get("avatar"),
        "channel": message["channel"],
        "isBroadcast": message.get("isBroadcast", False),
    }


def serialize_channel(channel: Dict[str, Any], creator: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    created_by = str(channel["createdBy"]) if channel.get("createdBy") else None
    if creator is not None:
        created_by = {"id": str(creator["_id"]), "username": creator["username"]}
    return {
        "id": str(channel["_id"]),
        "name": channel["name"],
        "description": channel.get("description", ""),
        "isActive": channel.get("isActive", True),
        "messageCount": channel.get("messageCount", 0),
        "lastMessageAt": isoformat(channel.get("lastMessageAt")),
        "createdBy": created_by,
        "createdAt": isoformat(channel.get("createdAt")),
        "updatedAt": isoformat(channel.get("updatedAt")),
    }


def serialize_voice_channel(channel: Dict[str, Any]) -> Dict[str, Any]:
    participants = [str(p) for p in channel.get("participants", [])]
    return {
        "id": str(channel["_id"]),
        "name": channel["name"],
        "description": channel.get("description", ""),
        "isActive": channel.get("isActive", True),
        "participants": participants,
        "participantCount": len(participants),
        "maxParticipants": channel.get("maxParticipants", 10),
        "isPrivate": channel.get("isPrivate", False),
        "createdBy": str(channel["createdBy"]) if channel.get("createdBy") else None,
        "createdAt": isoformat(channel.get("createdAt")),
        "updatedAt": isoformat(channel.get("updatedAt")),
    }


def serialize_role(role: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "id": str(role["_id"]),
        "name": role["name"],
        "description": role.get("description", ""),
        "isActive": role.get("isActive", True),
        "createdAt": isoformat(role.get("createdAt")),
        "updatedAt": isoformat(role.get("updatedAt")),
    }
