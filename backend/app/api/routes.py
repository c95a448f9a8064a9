from __future__ import annotations

from typing import Annotated, Any, NoReturn, TypeVar

from fastapi import APIRouter, Body, Depends, HTTPException, Query, Response
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ValidationError
from structlog.contextvars import bind_contextvars, reset_contextvars

from backend.app.dependencies import get_link_service, get_metadata_service
from backend.app.models.link_contracts import (
    LinkCreateRequest,
    LinkMoveRequest,
    LinkMoveResponse,
    LinkRead,
    LinkReorderRequest,
    LinkReorderResponse,
    LinkUpdateRequest,
    MetadataPreview,
)
from backend.app.services.errors import (
    LinkNotFoundError,
    LinkServiceError,
    LinkValidationError,
)
from backend.app.services.link_service import LinkService
from backend.app.services.metadata_service import MetadataService
from backend.app.services.url_normalizer import normalize_url

router = APIRouter()

ModelT = TypeVar("ModelT", bound=BaseModel)

TIMEOUT_ERROR_MESSAGE = "Request timed out"


def _parse_payload(model: type[ModelT], payload: Any) -> ModelT:
    try:
        return model.model_validate(payload)
    except ValidationError as exc:
        problems = "; ".join(
            f"{'.'.join(str(part) for part in error['loc']) or 'body'}: {error['msg']}"
            for error in exc.errors()
        )
        raise HTTPException(status_code=400, detail=f"Invalid payload: {problems}") from exc


def _parse_list_id(raw: str | None) -> int:
    if raw is None or not raw.strip():
        raise HTTPException(status_code=400, detail="list_id is required")
    try:
        return int(raw.strip())
    except ValueError as exc:
        raise HTTPException(status_code=400, detail="Invalid list_id") from exc


def _raise_for_service_error(exc: LinkServiceError) -> NoReturn:
    if isinstance(exc, LinkNotFoundError):
        raise HTTPException(status_code=404, detail="Link not found") from exc
    if isinstance(exc, LinkValidationError):
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    raise HTTPException(status_code=500, detail=str(exc)) from exc


@router.get(
    "/metadata",
    response_model=MetadataPreview,
    tags=["metadata"],
    operation_id="metadata_preview",
    responses={504: {"model": MetadataPreview}, 500: {"model": MetadataPreview}},
)
def metadata_preview(
    metadata_service: Annotated[MetadataService, Depends(get_metadata_service)],
    url: Annotated[str | None, Query()] = None,
) -> Response:
    if url is None or not url.strip():
        raise HTTPException(status_code=400, detail="URL parameter is required")

    acquisition = metadata_service.acquire(normalize_url(url))
    if acquisition.outcome == "timeout":
        body = MetadataPreview.from_metadata(acquisition.metadata, error=TIMEOUT_ERROR_MESSAGE)
        return JSONResponse(status_code=504, content=body.model_dump())
    if acquisition.outcome == "error":
        body = MetadataPreview.from_metadata(
            acquisition.metadata,
            error=acquisition.detail or "Metadata acquisition failed",
        )
        return JSONResponse(status_code=500, content=body.model_dump())
    body = MetadataPreview.from_metadata(acquisition.metadata)
    return JSONResponse(status_code=200, content=body.model_dump(exclude={"error"}))


@router.post(
    "/links",
    response_model=LinkRead,
    status_code=201,
    tags=["links"],
    operation_id="link_create",
)
def create_link(
    payload: Annotated[Any, Body()],
    link_service: Annotated[LinkService, Depends(get_link_service)],
) -> LinkRead:
    request = _parse_payload(LinkCreateRequest, payload)
    context_tokens = bind_contextvars(list_id=request.list_id)
    try:
        result = link_service.create_link(url=request.url, list_id=request.list_id)
    except LinkServiceError as exc:
        _raise_for_service_error(exc)
    finally:
        reset_contextvars(**context_tokens)
    return LinkRead.from_record(result.link)


@router.get(
    "/links",
    response_model=list[LinkRead],
    tags=["links"],
    operation_id="link_list",
)
def list_links(
    link_service: Annotated[LinkService, Depends(get_link_service)],
    list_id: Annotated[str | None, Query()] = None,
) -> list[LinkRead]:
    resolved_list_id = _parse_list_id(list_id)
    return [LinkRead.from_record(link) for link in link_service.list_links(resolved_list_id)]


@router.patch(
    "/links",
    response_model=LinkReorderResponse,
    tags=["links"],
    operation_id="link_reorder",
)
def reorder_links(
    payload: Annotated[Any, Body()],
    link_service: Annotated[LinkService, Depends(get_link_service)],
) -> LinkReorderResponse:
    request = _parse_payload(LinkReorderRequest, payload)
    context_tokens = bind_contextvars(list_id=request.list_id)
    try:
        ordered_ids = link_service.reorder_links(
            list_id=request.list_id,
            ordered_ids=request.ordered_ids,
        )
    except LinkServiceError as exc:
        _raise_for_service_error(exc)
    finally:
        reset_contextvars(**context_tokens)
    return LinkReorderResponse(success=True, ordered_ids=ordered_ids)


@router.post(
    "/links/move",
    response_model=LinkMoveResponse,
    tags=["links"],
    operation_id="link_move",
)
def move_link(
    payload: Annotated[Any, Body()],
    link_service: Annotated[LinkService, Depends(get_link_service)],
) -> LinkMoveResponse:
    request = _parse_payload(LinkMoveRequest, payload)
    context_tokens = bind_contextvars(list_id=request.list_id, link_id=request.link_id)
    try:
        result = link_service.move_link(
            list_id=request.list_id,
            link_id=request.link_id,
            from_index=request.from_index,
            to_index=request.to_index,
        )
    except LinkServiceError as exc:
        _raise_for_service_error(exc)
    finally:
        reset_contextvars(**context_tokens)
    return LinkMoveResponse(moved=result.moved, ordered_ids=result.ordered_ids)


@router.get(
    "/links/{link_id}",
    response_model=LinkRead,
    tags=["links"],
    operation_id="link_get",
)
def get_link(
    link_id: int,
    link_service: Annotated[LinkService, Depends(get_link_service)],
) -> LinkRead:
    try:
        return LinkRead.from_record(link_service.get_link(link_id))
    except LinkServiceError as exc:
        _raise_for_service_error(exc)


@router.patch(
    "/links/{link_id}",
    response_model=LinkRead,
    tags=["links"],
    operation_id="link_update",
)
def update_link(
    link_id: int,
    payload: Annotated[Any, Body()],
    link_service: Annotated[LinkService, Depends(get_link_service)],
) -> LinkRead:
    request = _parse_payload(LinkUpdateRequest, payload)
    try:
        updated = link_service.update_link(
            link_id,
            url=request.url,
            title=request.title,
            description=request.description,
        )
    except LinkServiceError as exc:
        _raise_for_service_error(exc)
    return LinkRead.from_record(updated)


@router.delete(
    "/links/{link_id}",
    status_code=204,
    tags=["links"],
    operation_id="link_delete",
)
def delete_link(
    link_id: int,
    link_service: Annotated[LinkService, Depends(get_link_service)],
) -> Response:
    try:
        link_service.delete_link(link_id)
    except LinkServiceError as exc:
        _raise_for_service_error(exc)
    return Response(status_code=204)
