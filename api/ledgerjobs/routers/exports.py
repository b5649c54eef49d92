from celery.result import AsyncResult
from fastapi import APIRouter

from ledgerjobs.schemas.export import ExportPayload, ExportStatus
from ledgerjobs.schemas.recurring import EnqueuedTask
from ledgerjobs.services.export import process_export
from ledgerjobs.worker import celery_app

router = APIRouter(prefix="/exports", tags=["exports"])


@router.post("", response_model=EnqueuedTask, status_code=202)
async def enqueue_export(payload: ExportPayload):
    task = process_export.delay(payload.model_dump(mode="json"))
    return EnqueuedTask(task_id=task.id)


@router.get("/{task_id}", response_model=ExportStatus)
async def export_status(task_id: str):
    """Poll an export. ``result`` holds {rows, attachments} once it succeeded."""
    res = AsyncResult(task_id, app=celery_app)
    if res.successful():
        return ExportStatus(task_id=task_id, state=res.state, result=res.result)
    if res.failed():
        return ExportStatus(task_id=task_id, state=res.state, error=str(res.result))
    return ExportStatus(task_id=task_id, state=res.state)
