"""HTTP 路由：聊天（阻塞/流式）、会话、图像生成、文件上传。"""

from typing import AsyncIterator, Optional

from fastapi import APIRouter, Depends, File, Form, Query, Request, UploadFile
from fastapi.responses import StreamingResponse
from starlette.concurrency import iterate_in_threadpool, run_in_threadpool

from zeno_core.api.schemas import ChatBody, ImageBody
from zeno_core.api.service import ChatService, StreamTurn
from zeno_core.domain.exceptions import UploadError, ValidationError


router = APIRouter(prefix="/api")

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
}


def get_service(request: Request) -> ChatService:
    return request.app.state.chat_service


def _require(value: Optional[str], name: str) -> str:
    if not value:
        raise ValidationError(code="MISSING_PARAM", message=f"{name} is required")
    return value


async def _sse(turn: StreamTurn) -> AsyncIterator[str]:
    # 客户端断开时任务被取消，finally 中中止 relay，之后不再产出也不再持久化
    try:
        async for event in iterate_in_threadpool(turn.events()):
            yield event.to_sse()
    finally:
        turn.abort()


@router.post("/chat")
def send_message(body: ChatBody, service: ChatService = Depends(get_service)):
    return service.send(body.message, body.session_id, body.is_voice)


@router.get("/chat")
def get_chat(sessionId: Optional[str] = Query(None), service: ChatService = Depends(get_service)):
    return service.get_conversation(_require(sessionId, "Session ID"))


@router.post("/chat/stream")
def stream_message(body: ChatBody, service: ChatService = Depends(get_service)):
    turn = service.stream(body.message, body.session_id, body.is_voice)
    return StreamingResponse(_sse(turn), media_type="text/event-stream", headers=SSE_HEADERS)


@router.get("/conversations")
def list_conversations(service: ChatService = Depends(get_service)):
    return {"success": True, "conversations": service.list_conversations()}


@router.delete("/conversations")
def delete_conversation(sessionId: Optional[str] = Query(None), service: ChatService = Depends(get_service)):
    service.delete_conversation(_require(sessionId, "Session ID"))
    return {"success": True, "message": "Conversation deleted"}


@router.post("/image")
def generate_image(body: ImageBody, service: ChatService = Depends(get_service)):
    return service.generate_image(body.message, body.session_id, body.style)


@router.post("/upload")
async def upload_file(
    file: Optional[UploadFile] = File(None),
    sessionId: Optional[str] = Form(None),
    service: ChatService = Depends(get_service),
):
    if file is None:
        raise UploadError(code="NO_FILE", message="No file provided. Please select a file to upload.")
    data = await file.read()
    result = await run_in_threadpool(
        service.upload_file,
        data,
        file.filename or "upload",
        file.content_type or "",
        sessionId,
    )
    return {"success": True, "file": result}


@router.get("/upload")
def list_files(sessionId: Optional[str] = Query(None), service: ChatService = Depends(get_service)):
    return {"success": True, "files": service.list_files(_require(sessionId, "sessionId"))}


@router.delete("/upload")
def delete_file(fileId: Optional[str] = Query(None), service: ChatService = Depends(get_service)):
    service.delete_file(_require(fileId, "fileId"))
    return {"success": True, "message": "File deleted"}
