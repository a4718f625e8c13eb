"""
WebSocket Real-time Service
Subscriber registry and best-effort event fan-out for order, table and payment updates
"""
import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Set
from uuid import uuid4

from fastapi import WebSocket, status
from fastapi.encoders import jsonable_encoder

from pos_core.core.config import settings
from pos_core.core.metrics import metrics

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    """WebSocket event names"""
    # Connection events
    CONNECTION_SUCCESS = "connection-success"
    IDENTIFIED = "identified"
    PONG = "pong"

    # Order events
    ORDER_CREATED = "order-created"
    ORDER_UPDATED = "order-updated"
    ORDER_STATUS_UPDATED = "order-status-updated"
    ORDER_DELETED = "order-deleted"

    # Floor and payment events
    TABLE_STATUS_CHANGED = "table-status-changed"
    PAYMENT_RECEIVED = "payment-received"


def utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


def build_event(event: str, data: Dict[str, Any]) -> Dict[str, Any]:
    """Envelope a payload as ``{...data, timestamp, event}``."""
    name = event.value if isinstance(event, Enum) else event
    return {**jsonable_encoder(data), "timestamp": utc_timestamp(), "event": name}


@dataclass
class ClientConnection:
    """One connected subscriber"""
    socket_id: str
    websocket: WebSocket
    ip: Optional[str] = None
    user_agent: Optional[str] = None
    user_id: Optional[int] = None
    username: Optional[str] = None
    rooms: Set[str] = field(default_factory=set)
    connected_at: str = field(default_factory=utc_timestamp)

    def info(self) -> Dict[str, Any]:
        return {
            "socketId": self.socket_id,
            "connectedAt": self.connected_at,
            "ip": self.ip,
            "userAgent": self.user_agent,
            "userId": self.user_id,
            "username": self.username,
            "rooms": sorted(self.rooms),
        }


class ConnectionManager:
    """
    Process-wide registry of connected subscribers.

    Business code never touches the registry directly; it goes through
    EventBroadcaster, which only uses the emit_* methods.
    """

    def __init__(
        self,
        max_connections: int = settings.ws_max_connections,
        send_timeout: float = settings.ws_send_timeout_seconds,
    ):
        self.max_connections = max_connections
        self.send_timeout = send_timeout
        self.connections: Dict[str, ClientConnection] = {}
        self.accepting = True

        # Statistics
        self.stats = {
            "total_connections": 0,
            "messages_sent": 0,
            "messages_broadcast": 0,
            "send_failures": 0,
        }

    @property
    def has_subscribers(self) -> bool:
        return bool(self.connections)

    async def connect(
        self,
        websocket: WebSocket,
        ip: Optional[str] = None,
        user_agent: Optional[str] = None,
        user_id: Optional[int] = None,
        username: Optional[str] = None,
    ) -> Optional[ClientConnection]:
        """Accept a new WebSocket connection.

        Returns None when the connection was refused (shutting down or at capacity).
        """
        if not self.accepting:
            logger.info("WebSocket connection refused: server is shutting down")
            await websocket.close(code=status.WS_1001_GOING_AWAY)
            return None

        if len(self.connections) >= self.max_connections:
            logger.warning(f"WebSocket connection rejected: at capacity ({self.max_connections})")
            await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
            return None

        await websocket.accept()

        client = ClientConnection(
            socket_id=uuid4().hex,
            websocket=websocket,
            ip=ip,
            user_agent=user_agent,
            user_id=user_id,
            username=username,
        )
        self.connections[client.socket_id] = client
        self.stats["total_connections"] += 1
        metrics.ws_active_connections = len(self.connections)

        logger.info(f"WebSocket connected: socket={client.socket_id}, ip={ip}, user_id={user_id}")

        await self.emit_to_socket(client.socket_id, EventType.CONNECTION_SUCCESS, {
            "socketId": client.socket_id,
            "serverTime": utc_timestamp(),
            "message": "Connected to real-time updates",
        })
        return client

    def disconnect(self, socket_id: str) -> None:
        """Remove a connection. Unknown ids are ignored."""
        client = self.connections.pop(socket_id, None)
        metrics.ws_active_connections = len(self.connections)
        if client is not None:
            logger.info(f"WebSocket disconnected: socket={socket_id}, user_id={client.user_id}")

    def identify(self, socket_id: str, user_id: Any = None, username: Optional[str] = None) -> bool:
        """Record the label a client sends about itself. Not authenticated."""
        client = self.connections.get(socket_id)
        if client is None:
            return False
        client.user_id = user_id
        client.username = username
        logger.info(f"Client identified: socket={socket_id}, user={username} ({user_id})")
        return True

    def join(self, socket_id: str, room: str) -> bool:
        client = self.connections.get(socket_id)
        if client is None:
            return False
        client.rooms.add(room)
        return True

    def leave(self, socket_id: str, room: str) -> bool:
        client = self.connections.get(socket_id)
        if client is None:
            return False
        client.rooms.discard(room)
        return True

    async def emit_to_all(self, event: str, data: Dict[str, Any]) -> int:
        """Send an event to every subscriber. Returns the number delivered."""
        targets = list(self.connections.values())
        if not targets:
            return 0
        delivered = await self._send_many(targets, build_event(event, data))
        self.stats["messages_broadcast"] += 1
        return delivered

    async def emit_to_room(self, room: str, event: str, data: Dict[str, Any]) -> int:
        """Send an event to subscribers that joined ``room``."""
        targets = [c for c in self.connections.values() if room in c.rooms]
        if not targets:
            return 0
        return await self._send_many(targets, build_event(event, data))

    async def emit_to_socket(self, socket_id: str, event: str, data: Dict[str, Any]) -> bool:
        """Send an event to one subscriber."""
        client = self.connections.get(socket_id)
        if client is None:
            return False
        return await self._send(client, build_event(event, data))

    async def _send_many(self, targets: Iterable[ClientConnection], message: Dict[str, Any]) -> int:
        results = await asyncio.gather(*(self._send(client, message) for client in targets))
        return sum(1 for ok in results if ok)

    async def _send(self, client: ClientConnection, message: Dict[str, Any]) -> bool:
        # A slow or dead client is dropped instead of holding up the others.
        try:
            await asyncio.wait_for(client.websocket.send_json(message), timeout=self.send_timeout)
        except Exception as e:
            self.stats["send_failures"] += 1
            logger.debug(f"WebSocket send to {client.socket_id} failed: {e!r}")
            self.disconnect(client.socket_id)
            return False
        self.stats["messages_sent"] += 1
        return True

    def stop_accepting(self) -> None:
        self.accepting = False

    async def close_all(self, code: int = status.WS_1001_GOING_AWAY) -> None:
        """Close every open connection."""
        clients = list(self.connections.values())
        for client in clients:
            try:
                await client.websocket.close(code=code)
            except Exception as e:
                logger.debug(f"Closing socket {client.socket_id} failed: {e!r}")
            self.disconnect(client.socket_id)

    def list_clients(self) -> List[Dict[str, Any]]:
        return [c.info() for c in self.connections.values()]

    def get_stats(self) -> Dict[str, Any]:
        """Get connection statistics"""
        return {
            **self.stats,
            "active_connections": len(self.connections),
            "accepting": self.accepting,
        }


class EventBroadcaster:
    """
    Fire-and-forget notifications sent after a transaction commits.

    Each broadcast_* call schedules the fan-out on the running loop and
    returns immediately. Nothing here raises into the caller; failures are
    logged and counted.
    """

    def __init__(self, manager: ConnectionManager):
        self.manager = manager
        self._tasks: Set[asyncio.Task] = set()

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    def broadcast_order_created(self, order: Any, pending_order_count: int) -> None:
        order_data = jsonable_encoder(order)
        self._dispatch(EventType.ORDER_CREATED, {
            "order": order_data,
            "pendingOrderCount": pending_order_count,
            "action": "CREATE",
            "message": f"New order {order_data.get('order_number')} created",
        })

    def broadcast_order_updated(self, order: Any, pending_order_count: int) -> None:
        order_data = jsonable_encoder(order)
        self._dispatch(EventType.ORDER_UPDATED, {
            "order": order_data,
            "pendingOrderCount": pending_order_count,
            "action": "UPDATE",
            "message": f"Order {order_data.get('order_number')} updated",
        })

    def broadcast_order_status_updated(
        self, order_id: int, status: str, order: Any, pending_order_count: int
    ) -> None:
        order_data = jsonable_encoder(order)
        self._dispatch(EventType.ORDER_STATUS_UPDATED, {
            "orderId": order_id,
            "status": status,
            "order": order_data,
            "pendingOrderCount": pending_order_count,
            "action": "UPDATE_STATUS",
            "message": f"Order {order_data.get('order_number')} is now {status}",
        })

    def broadcast_order_deleted(self, order_id: int, pending_order_count: int) -> None:
        self._dispatch(EventType.ORDER_DELETED, {
            "orderId": order_id,
            "pendingOrderCount": pending_order_count,
            "action": "DELETE",
            "message": f"Order {order_id} deleted",
        })

    def broadcast_table_status_changed(self, table_id: int, status: str) -> None:
        self._dispatch(EventType.TABLE_STATUS_CHANGED, {"tableId": table_id, "status": status})

    def broadcast_payment_received(self, payment: Any) -> None:
        self._dispatch(EventType.PAYMENT_RECEIVED, {"payment": jsonable_encoder(payment)})

    def _dispatch(self, event: EventType, data: Dict[str, Any]) -> None:
        try:
            if not self.manager.has_subscribers:
                logger.debug(f"No subscribers for {event.value}, skipping")
                return
            loop = asyncio.get_running_loop()
            task = loop.create_task(self._fan_out(event, data), name=f"broadcast:{event.value}")
            self._tasks.add(task)
            task.add_done_callback(self._on_done)
        except Exception as e:
            metrics.record_broadcast_failure()
            logger.warning(f"Could not schedule {event.value} broadcast: {e}")

    async def _fan_out(self, event: EventType, data: Dict[str, Any]) -> None:
        delivered = await self.manager.emit_to_all(event.value, data)
        metrics.record_broadcast(event.value)
        logger.debug(f"Broadcast {event.value} delivered to {delivered} subscriber(s)")

    def _on_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            metrics.record_broadcast_failure()
            logger.warning(f"{task.get_name()} failed: {exc!r}")

    async def drain(self, timeout: Optional[float] = None) -> None:
        """Wait for in-flight broadcasts; cancel whatever is left after ``timeout``."""
        if not self._tasks:
            return
        _, pending = await asyncio.wait(set(self._tasks), timeout=timeout)
        for task in pending:
            task.cancel()
        if pending:
            logger.warning(f"Cancelled {len(pending)} broadcast(s) still running at shutdown")


# Global connection manager and broadcaster instances
manager = ConnectionManager()
broadcaster = EventBroadcaster(manager)
