"""
WebSocket Connection Manager
"""

from fastapi import WebSocket
from typing import List
import structlog

logger = structlog.get_logger()


class ConnectionManager:
    """Tracks dashboard WebSocket clients watching the staging queue"""

    def __init__(self):
        self.active_connections: List[WebSocket] = []

    async def connect(self, websocket: WebSocket):
        """Accept and register a new WebSocket connection"""
        await websocket.accept()
        self.active_connections.append(websocket)
        logger.info("WebSocket connected", total_connections=len(self.active_connections))

    def disconnect(self, websocket: WebSocket):
        """Remove a WebSocket connection"""
        try:
            self.active_connections.remove(websocket)
        except ValueError:
            pass
        logger.info("WebSocket disconnected", total_connections=len(self.active_connections))

    async def broadcast(self, message: dict):
        """Send a message to every connected client"""
        disconnected = []
        for connection in list(self.active_connections):
            try:
                await connection.send_json(message)
            except Exception as e:
                logger.warning("Failed to send message", error=str(e))
                disconnected.append(connection)

        # Clean up disconnected
        for conn in disconnected:
            self.disconnect(conn)
