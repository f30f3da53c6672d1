from fastapi import APIRouter, Depends
from app.core.dependencies import get_session_bridge
from app.modules.session_bridge.schemas import (
    SessionTokens, SessionWriteResponse, SessionClearResponse
)
from app.modules.session_bridge.service import SessionBridge
from typing import Optional

router = APIRouter(prefix="/auth/session", tags=["session"])


@router.get("", response_model=Optional[SessionTokens])
async def read_session(bridge: SessionBridge = Depends(get_session_bridge)):
    """Token pair shared by the root domain and its subdomains, or null"""
    return bridge.read()


@router.put("", response_model=SessionWriteResponse)
async def write_session(
    tokens: SessionTokens,
    bridge: SessionBridge = Depends(get_session_bridge)
):
    """Mirror a refreshed token pair into the shared cookie"""
    return SessionWriteResponse(written=bridge.write(tokens))


@router.delete("", response_model=SessionClearResponse)
async def clear_session(bridge: SessionBridge = Depends(get_session_bridge)):
    return SessionClearResponse(cleared=bridge.clear())
