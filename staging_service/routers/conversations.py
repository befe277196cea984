"""
Conversation status router
"""

from datetime import datetime
from fastapi import APIRouter
from pydantic import BaseModel
from typing import List, Optional
import structlog

from staging_service.services.conversation_status import (
    ConversationMessage,
    classify_conversation,
)

router = APIRouter()
logger = structlog.get_logger()


class ConversationMessageIn(BaseModel):
    content: str
    timestamp: datetime
    isFromPatient: bool
    senderId: Optional[str] = None


class ConversationStatusRequest(BaseModel):
    patientId: Optional[str] = None
    messages: List[ConversationMessageIn]


class ConversationStatusResponse(BaseModel):
    status: str
    statusDetail: str


@router.post("/status", response_model=ConversationStatusResponse)
async def conversation_status(request: ConversationStatusRequest):
    """Classify where a doctor/patient conversation stands"""
    result = classify_conversation(
        [
            ConversationMessage(
                content=m.content,
                timestamp=m.timestamp,
                is_from_patient=m.isFromPatient,
                sender_id=m.senderId,
            )
            for m in request.messages
        ],
        patient_id=request.patientId,
    )
    logger.info("Conversation classified", status=result.status.value, messages=len(request.messages))
    return ConversationStatusResponse(status=result.status.value, statusDetail=result.detail)
