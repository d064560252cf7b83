"""
Rotas de supervisão (somente leitura) do motor do inbox.

- GET /health - Estado do stream de eventos
- GET /inbox/conversations - Conversas por recência, com não lidas
- GET /inbox/conversations/{contact_id} - Mensagens e metadados da conversa
- GET /inbox/presence - Operadores vendo/digitando, por conversa
- GET /inbox/presence/{contact_id} - Presença em uma conversa
- GET /inbox/notifications - Avisos recentes
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Query, Request

from ..container import EngineContainer, get_engine_container
from ..session import InboxSession

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Inbox"])


def get_session(request: Request) -> InboxSession:
    container = getattr(request.app.state, "engine", None) or get_engine_container()
    return container.session


@router.get("/health")
async def health(session: InboxSession = Depends(get_session)):
    handle = session.subscription
    return {
        "status": "ok",
        "connected": session.connected,
        "orgId": session.org_id,
        "connects": handle.connects if handle else 0,
        "framesReceived": handle.frames_received if handle else 0,
        "framesDropped": handle.frames_dropped if handle else 0,
    }


@router.get("/inbox/conversations")
async def list_conversations(
    status: Optional[str] = Query(default=None),
    session: InboxSession = Depends(get_session),
):
    items = []
    for view in session.store.conversations():
        if status and view.status != status:
            continue
        items.append(
            {
                "contactId": view.contact_id,
                "name": view.contact.name if view.contact else None,
                "status": view.status,
                "assigneeId": view.assignee_id,
                "unreadCount": view.unread_count,
                "tags": sorted(view.tags),
                "lastMessage": view.messages[-1].text if view.messages else None,
            }
        )
    return {"items": items, "activeContactId": session.store.active_contact_id}


@router.get("/inbox/conversations/{contact_id}")
async def get_conversation(contact_id: str, session: InboxSession = Depends(get_session)):
    view = session.store.get(contact_id)
    if view is None:
        raise HTTPException(status_code=404, detail="Conversa não encontrada")
    return view.as_dict()


@router.get("/inbox/presence")
async def list_presence(session: InboxSession = Depends(get_session)):
    return {
        contact_id: [r.as_dict() for r in records]
        for contact_id, records in session.presence.all_records().items()
    }


@router.get("/inbox/presence/{contact_id}")
async def get_presence(contact_id: str, session: InboxSession = Depends(get_session)):
    return {"contactId": contact_id, "viewers": [r.as_dict() for r in session.presence.viewers(contact_id)]}


@router.get("/inbox/notifications")
async def list_notifications(
    limit: int = Query(default=50, ge=1, le=500),
    kind: Optional[str] = Query(default=None),
    session: InboxSession = Depends(get_session),
):
    return {"items": [n.as_dict() for n in session.notifier.recent(limit, kind=kind)]}


def create_app(container: Optional[EngineContainer] = None) -> FastAPI:
    app = FastAPI(title="Inbox Engine")
    app.state.engine = container
    app.include_router(router)
    logger.info("Inbox engine routes registered")
    return app
