import uuid

from fastapi import APIRouter

from ledgerjobs.schemas.recurring import EnqueuedTask
from ledgerjobs.services.inbox import process_inbox_document

router = APIRouter(prefix="/inbox", tags=["inbox"])


@router.post("/{inbox_id}/process", response_model=EnqueuedTask, status_code=202)
async def enqueue_inbox_document(inbox_id: uuid.UUID):
    task = process_inbox_document.delay({"inbox_id": str(inbox_id)})
    return EnqueuedTask(task_id=task.id)
