from typing import Any, Dict

from fastapi import APIRouter
from pydantic import BaseModel

from questionbank.services.filters import JOINTYPE_DEFAULT, JoinType, build_filter_query, condition_metadata

router = APIRouter()


class FilterPreview(BaseModel):
    filters: Dict[str, Any]
    jointype: JoinType = JoinType.ALL


@router.get("/conditions")
def conditions():
    """Everything a client needs to render the filter widgets."""
    return {"conditions": condition_metadata(), "jointype_default": int(JOINTYPE_DEFAULT)}


@router.post("/preview")
def preview(payload: FilterPreview):
    """The WHERE fragment and bound parameters a filter set produces."""
    where, params = build_filter_query(payload.filters, jointype=payload.jointype)
    return {"where": where, "params": params}
