from fastapi import APIRouter, Body, Depends, HTTPException, Request
from typing import Any, Dict

from ..errors import SpawnError
from ..manager import ShellSessionManager

router = APIRouter()


async def get_manager_dep(request: Request) -> ShellSessionManager:
    # The app owns the manager; see app.create_app.
    return request.app.state.manager


@router.get("/api/shells")
async def list_shells(
    mgr: ShellSessionManager = Depends(get_manager_dep)
):
    return {"ok": True, "data": mgr.list_sessions()}


@router.get("/api/shells/{session_id}")
async def get_shell(
    session_id: str,
    mgr: ShellSessionManager = Depends(get_manager_dep)
):
    info = await mgr.describe(session_id)
    if info is None:
        raise HTTPException(404, "Session not found")
    return {"ok": True, "data": info}


@router.post("/api/shells/{session_id}/start")
async def start_shell(
    session_id: str,
    mgr: ShellSessionManager = Depends(get_manager_dep)
):
    """Idempotent: a second start for a live id returns the existing session."""
    try:
        session = await mgr.start(session_id)
    except SpawnError as exc:
        raise HTTPException(500, str(exc))
    return {"ok": True, "data": session.to_payload()}


@router.post("/api/shells/{session_id}/input")
async def send_input(
    session_id: str,
    payload: Dict[str, Any] = Body(...),
    mgr: ShellSessionManager = Depends(get_manager_dep)
):
    text = payload.get("input")
    if not isinstance(text, str):
        raise HTTPException(400, "input must be a string")
    delivered = await mgr.send(session_id, text)
    return {"ok": True, "data": {"delivered": delivered}}


@router.post("/api/shells/{session_id}/close")
async def close_shell(
    session_id: str,
    mgr: ShellSessionManager = Depends(get_manager_dep)
):
    closed = await mgr.close(session_id)
    return {"ok": True, "data": {"closed": closed}}
