from fastapi import APIRouter, HTTPException
from models.chat import ChatRequest, ChatResponse, ChatSession
from services.chat_responder import chat_responder

router = APIRouter()


@router.post("", response_model=ChatResponse)
async def send_message(request: ChatRequest):
    """
    Rule-based chat for the BMW workshop widget.
    1. Registration number in the message -> vehicle lookup reply.
    2. Otherwise booking / pricing / BMW keywords, then the default greeting.
    Body validation (1-1000 characters) is handled by the request model.
    """
    return await chat_responder.respond(request.message, request.session_id)


@router.get("/{session_id}", response_model=ChatSession)
async def get_session(session_id: str):
    session = await chat_responder.get_session(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail="Session not found")
    return session
