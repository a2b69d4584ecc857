"""
Command Webhook

Entry point for the messaging transport / conversational front end. Every
command passes the idempotency guard before it reaches the engine; a repeat
inside the dedup window gets a neutral "duplicate" response.
"""
import logging
from typing import Any, Dict

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from ..auth import require_api_key
from ..dependencies import get_engine, get_idempotency_guard
from ..services.commands import command_from_payload, dispatch
from ..services.engine import CrowdsourceEngine
from ..services.errors import CrowdsourceError
from ..services.idempotency.guard import IdempotencyGuard
from .errors import http_error


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhook", tags=["webhook"])


class CommandRequest(BaseModel):
    """Tagged command: report, upvote, verify, offer_help, submit_proof."""
    type: str = Field(..., description="Command tag")
    payload: Dict[str, Any] = Field(default_factory=dict)


@router.post("/commands", response_model=dict)
def handle_command(
    request: CommandRequest,
    engine: CrowdsourceEngine = Depends(get_engine),
    guard: IdempotencyGuard = Depends(get_idempotency_guard),
    _: bool = Depends(require_api_key),
):
    try:
        command = command_from_payload(request.type, request.payload)
    except CrowdsourceError as e:
        raise http_error(e)

    identity, content = command.dedup_key()
    if not guard.should_process(identity, content):
        return {"status": "duplicate", "type": request.type}

    try:
        result = dispatch(engine, command)
    except CrowdsourceError as e:
        logger.info(f"Command {request.type} from {identity} refused: {e}")
        raise http_error(e)

    return {"status": "ok", "type": request.type, "result": result}
