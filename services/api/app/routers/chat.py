from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from packages.shared.schemas.chat_v1 import ChatReplyV1
from services.api.app.config import get_settings
from services.api.app.db.deps import get_db
from services.api.app.llm.factory import get_language_model
from services.api.app.models.chat import ChatTurnRequest
from services.api.app.routers.errors import raise_http_error
from services.api.app.services.catalog_factory import get_catalog_client
from services.api.app.services.notifications import get_notification_dispatcher, get_notifier
from services.api.app.services.orchestrator import ConversationOrchestrator
from sqlalchemy.orm import Session

router = APIRouter()


def get_orchestrator(db: Session = Depends(get_db)) -> ConversationOrchestrator:
    try:
        language_model = get_language_model()
        catalog = get_catalog_client()
        notifier = get_notifier()
    except ValueError as e:
        raise HTTPException(status_code=500, detail=str(e)) from e

    return ConversationOrchestrator(
        db=db,
        language_model=language_model,
        catalog=catalog,
        notifier=notifier,
        dispatcher=get_notification_dispatcher(),
        settings=get_settings(),
    )


@router.post("/v1/chat", response_model=ChatReplyV1)
def post_chat(
    payload: ChatTurnRequest,
    orchestrator: ConversationOrchestrator = Depends(get_orchestrator),
) -> ChatReplyV1:
    try:
        result = orchestrator.handle_turn(payload.user_id, payload.message, email=payload.email)
    except Exception as e:
        raise_http_error(e)

    return ChatReplyV1(reply=result.reply, outcome=result.outcome, order_id=result.order_id)
