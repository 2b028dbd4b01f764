from __future__ import annotations

from fastapi import APIRouter, Body, Depends, HTTPException, Query, status

from dupecache.api.schemas.duplicates import (
    DuplicateFileListResponse,
    DuplicateFileResponse,
    DuplicateGroupPageResponse,
    DuplicateGroupResponse,
    RebuildRequest,
    SnapshotResponse,
)
from dupecache.core.config import get_settings
from dupecache.db.session import get_session_factory
from dupecache.groups.pager import SnapshotPager
from dupecache.groups.service import DuplicateGroupIndex, GroupIndexError, duplicate_group_snapshot_to_dict
from dupecache.groups.types import GroupSortKey, SortDirection

router = APIRouter(prefix="/duplicates", tags=["duplicates"])


def get_group_index() -> DuplicateGroupIndex:
    return DuplicateGroupIndex(settings=get_settings(), session_factory=get_session_factory())


def get_snapshot_pager() -> SnapshotPager:
    return SnapshotPager(settings=get_settings(), session_factory=get_session_factory())


@router.post("/rebuild", response_model=SnapshotResponse)
def rebuild_duplicate_index(
    request: RebuildRequest | None = Body(default=None),
    index: DuplicateGroupIndex = Depends(get_group_index),
    pager: SnapshotPager = Depends(get_snapshot_pager),
) -> SnapshotResponse:
    try:
        index.rebuild_all(request.version if request is not None else None)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    snapshot = pager.begin()
    return SnapshotResponse(version=snapshot.version, total=snapshot.total)


@router.get("/snapshot", response_model=SnapshotResponse)
def get_duplicate_snapshot(pager: SnapshotPager = Depends(get_snapshot_pager)) -> SnapshotResponse:
    snapshot = pager.begin()
    return SnapshotResponse(version=snapshot.version, total=snapshot.total)


@router.get("/groups", response_model=DuplicateGroupPageResponse)
def list_duplicate_groups(
    version: int | None = Query(default=None, ge=1),
    offset: int = Query(default=0),
    limit: int | None = Query(default=None, ge=1),
    sort: GroupSortKey = GroupSortKey.COUNT,
    direction: SortDirection = SortDirection.DESC,
    pager: SnapshotPager = Depends(get_snapshot_pager),
) -> DuplicateGroupPageResponse:
    pinned = version if version is not None else pager.begin().version
    try:
        page = pager.page(pinned, offset=offset, limit=limit, sort_key=sort, direction=direction)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)) from exc
    except GroupIndexError as exc:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc)) from exc

    return DuplicateGroupPageResponse(
        items=[DuplicateGroupResponse.model_validate(duplicate_group_snapshot_to_dict(item)) for item in page.items],
        version=page.version,
        offset=page.offset,
        next_offset=page.next_offset,
        stale=page.stale,
    )


@router.get("/groups/{size_bytes}/{hash_hex}/files", response_model=DuplicateFileListResponse)
def list_duplicate_group_files(
    size_bytes: int,
    hash_hex: str,
    limit: int | None = Query(default=None, ge=1),
    cursor: str | None = None,
    pager: SnapshotPager = Depends(get_snapshot_pager),
) -> DuplicateFileListResponse:
    try:
        result = pager.list_members(size_bytes, hash_hex, limit=limit, cursor=cursor)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)) from exc

    return DuplicateFileListResponse(
        items=[
            DuplicateFileResponse(
                path=item.path,
                normalized_path=item.normalized_path,
                size_bytes=item.size_bytes,
                mtime_ms=item.mtime_ms,
                hash_hex=item.hash_hex,
            )
            for item in result.items
        ],
        next_cursor=result.next_cursor,
    )
