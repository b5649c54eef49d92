from typing import Any, TypeVar

from pydantic import BaseModel, ValidationError

from ledgerjobs.core.errors import PayloadValidationError

P = TypeVar("P", bound=BaseModel)


def parse_payload(model: type[P], data: Any, task_name: str) -> P:
    """Validate a task payload at the task boundary, before any work begins."""
    if isinstance(data, model):
        return data
    try:
        return model.model_validate(data)
    except ValidationError as exc:
        detail = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'payload'}: {err['msg']}"
            for err in exc.errors()
        )
        raise PayloadValidationError(task_name, detail) from exc
