import threading
from typing import Dict, Optional

from bson import ObjectId


class ConnectionRegistry:
    """Live connection id -> user id, for this process only.

    Nothing here is persisted: after a restart every user stays offline until
    they join again.
    """

    def __init__(self):
        self._connections: Dict[str, ObjectId] = {}
        self._lock = threading.Lock()

    def bind(self, connection_id: str, user_id: ObjectId):
        with self._lock:
            self._connections[connection_id] = user_id

    def resolve(self, connection_id: str) -> Optional[ObjectId]:
        with self._lock:
            return self._connections.get(connection_id)

    def unbind(self, connection_id: str) -> Optional[ObjectId]:
        with self._lock:
            return self._connections.pop(connection_id, None)

    def size(self) -> int:
        with self._lock:
            return len(self._connections)

    def __len__(self):
        return self.size()
