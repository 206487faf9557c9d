"""
Credential API routes.

Provides REST endpoints for credential management:
- List and search credentials with pagination
- Aggregate stats
- Get, create, update and delete single credentials

Failures are returned as the repository's Failure dict with its status code
(400 validation, 404 not found, 409 conflict, 503 transient, 500 otherwise).
"""

from typing import Any, Optional

from fastapi import APIRouter, Body, Query
from fastapi.responses import JSONResponse

from ..dependencies import get_repository

router = APIRouter(prefix="/api", tags=["credentials"])


def _failure_response(result) -> JSONResponse:
    return JSONResponse(content=result.to_dict(), status_code=result.status_code)


@router.get("/credentials")
async def list_credentials(
    search: Optional[str] = Query(None, description="Substring of service or username"),
    page: Optional[str] = Query(None, description="1-based page number"),
    page_size: Optional[str] = Query(None, description="Records per page (max 100)"),
):
    """
    List credentials, most recently updated first.

    Query values are validated by the repository so that a malformed page
    number produces the same 400 body as any other validation failure.
    """
    repository = get_repository()

    result = await repository.list(search_term=search, page=page, page_size=page_size)
    if result.is_failure():
        return _failure_response(result)

    page_data = result.unwrap()
    return {"success": True, **page_data.to_public_dict()}


@router.get("/credentials/stats")
async def credential_stats(
    window_days: Optional[str] = Query(None, description="Window for the recent count"),
):
    repository = get_repository()

    result = await repository.stats(window_days=window_days)
    if result.is_failure():
        return _failure_response(result)

    return {"success": True, "stats": result.unwrap().to_public_dict()}


@router.get("/credentials/{credential_id}")
async def get_credential(credential_id: str):
    repository = get_repository()

    result = await repository.get_by_id(credential_id=credential_id)
    if result.is_failure():
        return _failure_response(result)

    return {"success": True, "credential": result.unwrap().to_public_dict()}


@router.post("/credentials")
async def create_credential(payload: Any = Body(None)):
    """
    Create a credential.

    Returns 201 with the stored record, 400 listing invalid fields, or 409
    when the service/username pair already exists.
    """
    repository = get_repository()

    result = await repository.create(data=payload)
    if result.is_failure():
        return _failure_response(result)

    return JSONResponse(
        content={"success": True, "credential": result.unwrap().to_public_dict()},
        status_code=201,
    )


@router.patch("/credentials/{credential_id}")
async def update_credential(credential_id: str, payload: Any = Body(None)):
    repository = get_repository()

    result = await repository.update(
        credential_id=credential_id, partial=payload if payload is not None else {}
    )
    if result.is_failure():
        return _failure_response(result)

    return {"success": True, "credential": result.unwrap().to_public_dict()}


@router.delete("/credentials/{credential_id}")
async def delete_credential(credential_id: str):
    repository = get_repository()

    result = await repository.delete(credential_id=credential_id)
    if result.is_failure():
        return _failure_response(result)

    return {"success": True, "deleted": credential_id}
