"""v1 stored output endpoints."""

from typing import Any, Dict

from fastapi import APIRouter, Query

from aibase.core.exceptions import ValidationFailedError
from aibase.extensions.evaluation import to_jsonable
from aibase.extensions.peek import peek, peek_info

router = APIRouter(prefix="/outputs", tags=["v1-outputs"])


@router.get("/{output_id}")
async def get_output_info(output_id: str) -> Dict[str, Any]:
    """Size, type and row count of a stored script output."""
    return peek_info(output_id)


@router.get("/{output_id}/peek")
async def peek_output(
    output_id: str,
    offset: int = Query(default=0),
    limit: int = Query(default=100),
) -> Dict[str, Any]:
    """One page of a stored script output."""
    try:
        page = peek(output_id, offset=offset, limit=limit)
    except ValueError as exc:
        raise ValidationFailedError(str(exc)) from exc
    return to_jsonable(page)
