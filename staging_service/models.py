"""
Staged message data model

A staged message is an outbound patient message held in the queue for a
countdown period before it is sent automatically.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional
import random
import string
import time


class StagedMessageStatus(str, Enum):
    PENDING = "pending"      # waiting in queue with timer running
    PAUSED = "paused"        # timer paused (editing)
    SENDING = "sending"      # currently being sent
    SENT = "sent"            # successfully delivered
    CANCELLED = "cancelled"  # user cancelled
    ERROR = "error"          # send failed


TERMINAL_STATUSES = (StagedMessageStatus.SENT, StagedMessageStatus.CANCELLED)

# Statuses shown in the queue panel
ACTIVE_STATUSES = (
    StagedMessageStatus.PENDING,
    StagedMessageStatus.PAUSED,
    StagedMessageStatus.SENDING,
)

_ID_ALPHABET = string.ascii_lowercase + string.digits


def now_ms() -> int:
    return int(time.time() * 1000)


def generate_message_id() -> str:
    """Time-based id with a random suffix, e.g. staged_1718000000000_k3j9x0a1b"""
    suffix = "".join(random.choices(_ID_ALPHABET, k=9))
    return f"staged_{now_ms()}_{suffix}"


@dataclass
class SendResult:
    """Outcome of the external send operation"""
    success: bool
    message_id: Optional[str] = None
    error: Optional[str] = None


@dataclass
class StagedMessage:
    content: str
    patient_id: str
    patient_name: str
    conversation_id: str
    countdown: int
    status: StagedMessageStatus = StagedMessageStatus.PENDING
    ai_generated: bool = True
    id: str = field(default_factory=generate_message_id)
    created_at: int = field(default_factory=now_ms)
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Serialize with the camelCase keys used on the wire and on disk"""
        return {
            "id": self.id,
            "content": self.content,
            "patientId": self.patient_id,
            "patientName": self.patient_name,
            "conversationId": self.conversation_id,
            "createdAt": self.created_at,
            "countdown": self.countdown,
            "status": self.status.value,
            "aiGenerated": self.ai_generated,
            "error": self.error,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StagedMessage":
        """Build a message from a persisted dict.

        Raises KeyError, TypeError or ValueError on malformed input.
        """
        return cls(
            id=str(data["id"]),
            content=str(data["content"]),
            patient_id=str(data["patientId"]),
            patient_name=str(data.get("patientName", "")),
            conversation_id=str(data.get("conversationId", "")),
            created_at=int(data["createdAt"]),
            countdown=int(data["countdown"]),
            status=StagedMessageStatus(data["status"]),
            ai_generated=bool(data.get("aiGenerated", True)),
            error=data.get("error"),
        )
