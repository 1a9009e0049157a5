from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request

from ..auth.access import current_user
from ..repositories.base_repository import EntityStore
from ..repositories.entity_store import get_entity_store
from ..services.sample_data import delete_sample_data, generate_sample_data

router = APIRouter(tags=["sample-data"])


def _email(request: Request) -> str:
    user = current_user(request)
    if not user.email:
        raise HTTPException(status_code=400, detail="An email address is required for sample data")
    return user.email


@router.post("/generate")
def generate(request: Request, store: EntityStore = Depends(get_entity_store)):
    user = current_user(request)
    return generate_sample_data(store, user_email=_email(request), user_name=user.full_name)


@router.post("/delete")
def delete(request: Request, store: EntityStore = Depends(get_entity_store)):
    return delete_sample_data(store, user_email=_email(request))
