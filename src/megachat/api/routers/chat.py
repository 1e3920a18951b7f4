from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import JSONResponse, StreamingResponse

from ...domain.chat_models import ChatReply, ChatRequest
from ...services.chat_service import ChatTurnService, DeliveryMode, get_chat_service


router = APIRouter(prefix="/chat", tags=["chat"])

SSE_HEADERS = {
    "Cache-Control": "no-cache, no-transform",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


@router.post("", response_model=ChatReply)
async def chat(
    req: ChatRequest,
    request: Request,
    service: ChatTurnService = Depends(get_chat_service),
):
    if not req.user_id or not req.messages:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing parameters")

    mode = DeliveryMode.STREAM if req.stream else DeliveryMode.REPLY
    if mode is DeliveryMode.REPLY:
        result = await service.reply_turn(req.user_id, req.messages)
        if not result.ok:
            return JSONResponse(
                status_code=status.HTTP_502_BAD_GATEWAY,
                content=ChatReply(reply=result.text).model_dump(),
            )
        return ChatReply(reply=result.text)

    async def event_stream():
        async for chunk in service.stream_turn(req.user_id, req.messages, is_closed=request.is_disconnected):
            yield chunk.to_sse()

    return StreamingResponse(event_stream(), media_type="text/event-stream", headers=SSE_HEADERS)
