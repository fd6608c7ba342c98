from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request

from chatsync.core.config import Settings
from chatsync.core.errors import ApiError, SessionClosedError
from chatsync.repositories.message_api import HttpMessageApi
from chatsync.schemas.message import ComposePayload, FilterPayload, Message, SendPayload
from chatsync.schemas.session import MountPayload, ReadModel
from chatsync.services.sync_service import SessionContext, SyncSessionController


router = APIRouter(prefix="/sync", tags=["sync"])


def get_api(request: Request) -> HttpMessageApi:
    return request.app.state.message_api


def get_controller(request: Request) -> SyncSessionController:
    controller: Optional[SyncSessionController] = getattr(request.app.state, "controller", None)
    if controller is None or not controller.mounted:
        raise HTTPException(status_code=409, detail="Messaging view is not mounted")
    return controller


@router.post("/session", response_model=ReadModel)
async def mount_session(request: Request, payload: MountPayload | None = None, api: HttpMessageApi = Depends(get_api)):
    payload = payload or MountPayload()
    # serialized: a second mount request returns the first controller's state
    async with request.app.state.mount_lock:
        current: Optional[SyncSessionController] = getattr(request.app.state, "controller", None)
        if current is not None and current.mounted:
            return current.read_model()
        try:
            user_id = payload.user_id or await api.current_user_id()
        except ApiError as exc:
            raise HTTPException(status_code=502, detail=f"Could not resolve current user: {exc.detail}")
        api.user_id = user_id
        settings: Settings = request.app.state.settings
        controller = SyncSessionController(SessionContext(user_id=user_id, api=api, settings=settings))
        request.app.state.controller = controller
        return await controller.mount(payload.conversation_id)


@router.delete("/session")
async def unmount_session(request: Request):
    controller: Optional[SyncSessionController] = getattr(request.app.state, "controller", None)
    if controller is not None:
        await controller.unmount()
        request.app.state.controller = None
    return {"mounted": False}


@router.get("/state", response_model=ReadModel)
async def get_state(controller: SyncSessionController = Depends(get_controller)):
    return controller.read_model()


@router.post("/conversations/{conversation_id}/open", response_model=ReadModel)
async def open_conversation(conversation_id: str, controller: SyncSessionController = Depends(get_controller)):
    if controller.store.loaded and controller.store.find(conversation_id) is None:
        raise HTTPException(status_code=404, detail="Conversation not found")
    try:
        return await controller.open_conversation(conversation_id)
    except SessionClosedError as exc:
        raise HTTPException(status_code=409, detail=str(exc))


@router.post("/messages", response_model=Optional[Message])
async def send_message(payload: SendPayload, controller: SyncSessionController = Depends(get_controller)):
    try:
        return await controller.send_message(payload.text)
    except SessionClosedError as exc:
        raise HTTPException(status_code=409, detail=str(exc))


@router.put("/compose", response_model=ReadModel)
async def set_compose(payload: ComposePayload, controller: SyncSessionController = Depends(get_controller)):
    controller.set_compose(payload.text)
    return controller.read_model()


@router.put("/filter", response_model=ReadModel)
async def select_filter(payload: FilterPayload, controller: SyncSessionController = Depends(get_controller)):
    controller.select_filter(payload.query)
    return controller.read_model()
