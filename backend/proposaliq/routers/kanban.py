from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request

from ..auth.access import current_user, ensure_org_access
from ..observability.logging import get_logger
from ..repositories.base_repository import EntityStore
from ..repositories.entity_store import get_entity_store
from ..services.kanban_templates import (
    KANBAN_ENTITY,
    DuplicateBoardName,
    UnknownBoardType,
    create_rfp_15_column_board,
    create_type_specific_board,
)

router = APIRouter(tags=["kanban"])
log = get_logger("kanban")


@router.get("/boards")
def list_boards(request: Request, organization_id: str | None = None, store: EntityStore = Depends(get_entity_store)):
    ensure_org_access(store, current_user(request), organization_id)
    boards = store.filter(KANBAN_ENTITY, {"organization_id": organization_id}, sort="created_date")
    return {"success": True, "boards": boards}


@router.post("/boards/rfp-15-column", status_code=201)
def create_rfp_board(request: Request, body: dict, store: EntityStore = Depends(get_entity_store)):
    user = current_user(request)
    organization_id = (body or {}).get("organization_id")
    ensure_org_access(store, user, organization_id)

    try:
        board = create_rfp_15_column_board(store, organization_id, extra={"created_by": user.email})
    except DuplicateBoardName as e:
        raise HTTPException(status_code=400, detail=str(e)) from e

    log.info("kanban_board_created", organization_id=organization_id, board_id=board["id"])
    return {
        "success": True,
        "message": "15-Column RFP Workflow board created successfully!",
        "board_id": board["id"],
        "board_name": board["board_name"],
    }


@router.post("/boards/type-specific")
def create_type_board(request: Request, body: dict, store: EntityStore = Depends(get_entity_store)):
    user = current_user(request)
    organization_id = (body or {}).get("organization_id")
    board_type = str((body or {}).get("board_type") or "").strip().lower()
    if not organization_id or not board_type:
        raise HTTPException(status_code=400, detail="organization_id and board_type are required")
    ensure_org_access(store, user, organization_id)

    try:
        board, created = create_type_specific_board(
            store,
            organization_id,
            board_type,
            board_name=(body or {}).get("board_name"),
            extra={"created_by": user.email},
        )
    except UnknownBoardType as e:
        raise HTTPException(status_code=400, detail=str(e)) from e

    if not created:
        return {"success": True, "message": "Board already exists", "config_id": board["id"], "was_created": False}

    log.info("kanban_board_created", organization_id=organization_id, board_id=board["id"], board_type=board_type)
    return {
        "success": True,
        "message": f"{board['board_name']} created successfully",
        "config_id": board["id"],
        "was_created": True,
        "board_type": board_type,
    }
