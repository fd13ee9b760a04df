from functools import lru_cache

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from api.schemas import (
    AIHealthOut,
    ChatHistoryResponse,
    ChatStats,
    Detail,
    MessageEdit,
    SendMessageRequest,
    SendMessageResponse,
    TitleUpdate,
)
from api.security import LoginSession, current_session
from db.session import get_db
from services.ai_responder import AIResponder
from services.chat_service import ChatService

router = APIRouter(prefix="/chat", tags=["chat"])


@lru_cache(maxsize=1)
def get_responder() -> AIResponder:
    return AIResponder()


def get_chat_service(
    db: Session = Depends(get_db),
    session: LoginSession = Depends(current_session),
    responder: AIResponder = Depends(get_responder),
) -> ChatService:
    return ChatService(db, responder, session.history_cache)


@router.post("/message", response_model=SendMessageResponse)
def send_message(
    body: SendMessageRequest,
    session: LoginSession = Depends(current_session),
    service: ChatService = Depends(get_chat_service),
):
    try:
        return service.send_message(session.user_id, body.content, role=body.role, metadata=body.metadata)
    except ValueError as e:
        raise HTTPException(400, str(e))


@router.get("/history", response_model=ChatHistoryResponse)
def get_history(
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    session: LoginSession = Depends(current_session),
    service: ChatService = Depends(get_chat_service),
):
    return service.get_history(session.user_id, limit=limit, offset=offset)


@router.delete("/clear", response_model=Detail)
def clear_history(session: LoginSession = Depends(current_session), service: ChatService = Depends(get_chat_service)):
    service.clear(session.user_id)
    return {"message": "Chat history cleared successfully"}


@router.get("/stats", response_model=ChatStats)
def get_stats(session: LoginSession = Depends(current_session), service: ChatService = Depends(get_chat_service)):
    return service.stats(session.user_id)


@router.get("/health", response_model=AIHealthOut)
def check_ai_health(service: ChatService = Depends(get_chat_service)):
    return service.ai_health()


@router.patch("/title", response_model=Detail)
def rename_chat(body: TitleUpdate, session: LoginSession = Depends(current_session), service: ChatService = Depends(get_chat_service)):
    if not service.rename(session.user_id, body.title):
        raise HTTPException(404, "Chat not found")
    return {"message": "Chat title updated"}


@router.patch("/messages/{message_id}", response_model=Detail)
def edit_message(
    message_id: int,
    body: MessageEdit,
    session: LoginSession = Depends(current_session),
    service: ChatService = Depends(get_chat_service),
):
    try:
        applied = service.edit_message(session.user_id, message_id, body.content)
    except ValueError as e:
        raise HTTPException(400, str(e))
    if not applied:
        raise HTTPException(404, "Message not found")
    return {"message": "Message updated"}


@router.delete("/messages/{message_id}", response_model=Detail)
def delete_message(message_id: int, session: LoginSession = Depends(current_session), service: ChatService = Depends(get_chat_service)):
    if not service.delete_message(session.user_id, message_id):
        raise HTTPException(404, "Message not found")
    return {"message": "Message deleted"}
