from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, status

from dupecache.api.schemas.trash import (
    EmptyTrashResponse,
    MoveToTrashRequest,
    MoveToTrashResponse,
    RestoreResponse,
    TrashEntryListResponse,
    TrashEntryResponse,
)
from dupecache.core.config import get_settings
from dupecache.db.session import get_session_factory
from dupecache.trash.service import (
    TrashEntryNotFoundError,
    TrashVault,
    TrashVaultError,
    trash_entry_snapshot_to_dict,
)
from dupecache.trash.types import RestoreOutcome

router = APIRouter(prefix="/trash", tags=["trash"])

_RESTORE_STATUS = {
    RestoreOutcome.CONFLICT_TARGET_EXISTS: status.HTTP_409_CONFLICT,
    RestoreOutcome.TRASHED_FILE_MISSING: status.HTTP_410_GONE,
    RestoreOutcome.MOVE_FAILED: status.HTTP_500_INTERNAL_SERVER_ERROR,
    RestoreOutcome.DB_UPDATE_FAILED: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


def get_trash_vault() -> TrashVault:
    return TrashVault(settings=get_settings(), session_factory=get_session_factory())


@router.get("", response_model=TrashEntryListResponse)
def list_trash_entries(
    limit: int | None = Query(default=None, ge=1),
    cursor: str | None = None,
    vault: TrashVault = Depends(get_trash_vault),
) -> TrashEntryListResponse:
    try:
        result = vault.list_entries(limit=limit, cursor=cursor)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)) from exc
    return TrashEntryListResponse(
        items=[TrashEntryResponse.model_validate(trash_entry_snapshot_to_dict(item)) for item in result.items],
        next_cursor=result.next_cursor,
        total=vault.count(),
    )


@router.post("", response_model=MoveToTrashResponse)
def move_to_trash(request: MoveToTrashRequest, vault: TrashVault = Depends(get_trash_vault)) -> MoveToTrashResponse:
    try:
        result = vault.move_to_trash(request.path)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)) from exc
    except TrashVaultError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc

    if not result.success:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"message": result.message, "rolled_back": result.rolled_back},
        )
    entry = TrashEntryResponse.model_validate(trash_entry_snapshot_to_dict(result.entry)) if result.entry else None
    return MoveToTrashResponse(success=True, entry=entry, message=result.message, rolled_back=result.rolled_back)


@router.post("/empty", response_model=EmptyTrashResponse)
def empty_trash(vault: TrashVault = Depends(get_trash_vault)) -> EmptyTrashResponse:
    return EmptyTrashResponse(deleted=vault.empty_trash())


@router.post("/{entry_id}/restore", response_model=RestoreResponse)
def restore_trash_entry(entry_id: str, vault: TrashVault = Depends(get_trash_vault)) -> RestoreResponse:
    try:
        entry = vault.get_entry(entry_id)
    except TrashEntryNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc

    result = vault.restore_from_trash(entry)
    if result.outcome in _RESTORE_STATUS:
        raise HTTPException(
            status_code=_RESTORE_STATUS[result.outcome],
            detail={"outcome": result.outcome.value, "message": result.message},
        )
    return RestoreResponse(outcome=result.outcome.value, message=result.message)


@router.delete("/{entry_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_trash_entry(entry_id: str, vault: TrashVault = Depends(get_trash_vault)) -> None:
    try:
        entry = vault.get_entry(entry_id)
    except TrashEntryNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    if not vault.delete_permanently(entry):
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to delete trashed file")
