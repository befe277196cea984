"""
Staging queue router

Presentation intents (stage, cancel, edit, send now) for the doctor
dashboard, plus a WebSocket feed of queue snapshots and notifications.
"""

from fastapi import APIRouter, Depends, HTTPException, Query, Request, WebSocket, WebSocketDisconnect
from functools import lru_cache
from pydantic import BaseModel, Field
from typing import List, Optional
import structlog

from staging_service.services.reply_draft_service import ReplyDraftService
from staging_service.services.staging_queue import (
    InvalidTransitionError,
    MessageNotFoundError,
    StagingQueueManager,
)

router = APIRouter()
logger = structlog.get_logger()


def get_queue(request: Request) -> StagingQueueManager:
    return request.app.state.staging_queue


@lru_cache()
def get_draft_service() -> ReplyDraftService:
    return ReplyDraftService()


class StageMessageRequest(BaseModel):
    content: str = Field(..., min_length=1)
    patientId: str
    patientName: str
    conversationId: str
    aiGenerated: bool = True


class EditMessageRequest(BaseModel):
    content: str


class StagedMessageResponse(BaseModel):
    id: str
    content: str
    patientId: str
    patientName: str
    conversationId: str
    createdAt: int
    countdown: int
    status: str
    aiGenerated: bool
    error: Optional[str] = None


class ConversationEntry(BaseModel):
    content: str
    isFromPatient: bool = False


class DraftReplyRequest(BaseModel):
    patientId: str
    patientName: str
    conversationId: str
    messages: List[ConversationEntry] = []
    instructions: Optional[str] = None


def _raise_http(e: Exception):
    if isinstance(e, MessageNotFoundError):
        raise HTTPException(status_code=404, detail=str(e))
    if isinstance(e, InvalidTransitionError):
        raise HTTPException(status_code=409, detail=str(e))
    logger.error("Staging queue request failed", error=str(e))
    raise HTTPException(status_code=500, detail=str(e))


@router.post("/messages", status_code=201)
async def stage_message(request: StageMessageRequest, queue: StagingQueueManager = Depends(get_queue)):
    """Stage a message for auto-send"""
    message_id = queue.enqueue(
        content=request.content,
        patient_id=request.patientId,
        patient_name=request.patientName,
        conversation_id=request.conversationId,
        ai_generated=request.aiGenerated,
    )
    return {"id": message_id, "countdown": queue.initial_countdown}


@router.get("/messages", response_model=List[StagedMessageResponse])
async def list_messages(
    include_all: bool = Query(False, alias="all"),
    queue: StagingQueueManager = Depends(get_queue),
):
    """Messages in the queue panel (pending, paused, sending); ?all=true for every entry"""
    messages = queue.messages() if include_all else queue.active()
    return [m.to_dict() for m in messages]


@router.get("/messages/{message_id}", response_model=StagedMessageResponse)
async def get_message(message_id: str, queue: StagingQueueManager = Depends(get_queue)):
    try:
        return queue.get(message_id).to_dict()
    except Exception as e:
        _raise_http(e)


@router.patch("/messages/{message_id}", response_model=StagedMessageResponse)
async def edit_message(
    message_id: str,
    request: EditMessageRequest,
    queue: StagingQueueManager = Depends(get_queue),
):
    """Edit content; too-short content is rejected and the old text kept"""
    try:
        if not queue.edit(message_id, request.content):
            raise HTTPException(
                status_code=422,
                detail=f"Message must be at least {queue.min_content_length} characters",
            )
        return queue.get(message_id).to_dict()
    except HTTPException:
        raise
    except Exception as e:
        _raise_http(e)


@router.post("/messages/{message_id}/cancel", response_model=StagedMessageResponse)
async def cancel_message(message_id: str, queue: StagingQueueManager = Depends(get_queue)):
    try:
        queue.cancel(message_id)
        return queue.get(message_id).to_dict()
    except Exception as e:
        _raise_http(e)


@router.post("/messages/{message_id}/pause", response_model=StagedMessageResponse)
async def pause_message(message_id: str, queue: StagingQueueManager = Depends(get_queue)):
    try:
        queue.pause(message_id)
        return queue.get(message_id).to_dict()
    except Exception as e:
        _raise_http(e)


@router.post("/messages/{message_id}/resume", response_model=StagedMessageResponse)
async def resume_message(message_id: str, queue: StagingQueueManager = Depends(get_queue)):
    try:
        queue.resume(message_id)
        return queue.get(message_id).to_dict()
    except Exception as e:
        _raise_http(e)


@router.post("/messages/{message_id}/send-now", response_model=StagedMessageResponse)
async def send_message_now(message_id: str, queue: StagingQueueManager = Depends(get_queue)):
    """Skip the countdown and send immediately"""
    try:
        queue.send_now(message_id)
        return queue.get(message_id).to_dict()
    except Exception as e:
        _raise_http(e)


@router.post("/messages/{message_id}/retry", response_model=StagedMessageResponse)
async def retry_message(message_id: str, queue: StagingQueueManager = Depends(get_queue)):
    """Manually retry a message whose send failed"""
    try:
        queue.retry(message_id)
        return queue.get(message_id).to_dict()
    except Exception as e:
        _raise_http(e)


@router.get("/stats")
async def queue_stats(queue: StagingQueueManager = Depends(get_queue)):
    return queue.stats()


@router.post("/draft", status_code=201)
async def draft_and_stage(
    request: DraftReplyRequest,
    queue: StagingQueueManager = Depends(get_queue),
    draft_service: ReplyDraftService = Depends(get_draft_service),
):
    """Draft a reply with AI and stage it for review"""
    try:
        logger.info("Drafting reply", patient_id=request.patientId)
        draft = await draft_service.draft_reply(
            patient_name=request.patientName,
            messages=[m.model_dump() for m in request.messages],
            instructions=request.instructions,
        )
    except Exception as e:
        logger.error("Failed to draft reply", error=str(e))
        raise HTTPException(status_code=500, detail=str(e))

    if len(draft.strip()) < queue.min_content_length:
        raise HTTPException(status_code=502, detail="AI returned an empty draft")

    message_id = queue.enqueue(
        content=draft,
        patient_id=request.patientId,
        patient_name=request.patientName,
        conversation_id=request.conversationId,
        ai_generated=True,
    )
    return {"id": message_id, "content": draft, "countdown": queue.initial_countdown}


@router.websocket("/ws")
async def queue_feed(websocket: WebSocket):
    """Push queue snapshots and notifications to the dashboard"""
    connections = websocket.app.state.connections
    queue: StagingQueueManager = websocket.app.state.staging_queue

    await connections.connect(websocket)
    try:
        await websocket.send_json({"type": "queue", "messages": queue.snapshot()})
        while True:
            # Clients only listen; drain anything they send
            await websocket.receive_text()
    except WebSocketDisconnect:
        logger.info("Dashboard disconnected")
    finally:
        connections.disconnect(websocket)
