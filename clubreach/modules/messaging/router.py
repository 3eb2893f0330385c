import uuid
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession
from clubreach.core.db import get_session
from clubreach.core.security import get_principal, require_scopes, Principal
from clubreach.modules.messaging.schemas import ChatPost, ChatPostOut, DeliveryRecordOut
from clubreach.modules.messaging.service import ChatService, MessageNotFound

router = APIRouter()

def svc(session: AsyncSession = Depends(get_session)) -> ChatService:
    return ChatService(session)

@router.post("/chat", response_model=ChatPostOut, status_code=status.HTTP_201_CREATED,
             dependencies=[Depends(require_scopes("messaging:write"))])
async def post_chat(
    payload: ChatPost,
    principal: Principal = Depends(get_principal),
    service: ChatService = Depends(svc),
):
    result = await service.post(principal, payload.text, event_id=payload.event_id,
                                recipient_ids=payload.recipient_ids, subject=payload.subject)
    return ChatPostOut(
        message_id=result.message.id,
        records=[DeliveryRecordOut.model_validate(r) for r in result.batch.records],
        skipped=result.skipped,
        failed=len(result.batch.failures),
    )

@router.get("/messages/{message_id}/deliveries", response_model=list[DeliveryRecordOut],
            dependencies=[Depends(require_scopes("messaging:read"))])
async def message_deliveries(
    message_id: uuid.UUID,
    principal: Principal = Depends(get_principal),
    service: ChatService = Depends(svc),
):
    try:
        return await service.deliveries(principal, message_id)
    except MessageNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
