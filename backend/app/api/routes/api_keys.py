"""
API Key Management Routes
"""

from typing import List

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.errors import http_error
from app.schemas.enrichment import ApiKeyCreate, ApiKeyResponse, ApiKeyUpdate
from app.services import ApiKeyService
from app.utils import get_db
from app.utils.exceptions import EnrichmentError

router = APIRouter()


@router.get("", response_model=List[ApiKeyResponse])
async def list_api_keys(db: AsyncSession = Depends(get_db)):
    """Stored keys, masked"""
    return await ApiKeyService(db).get_all()


@router.post("", response_model=ApiKeyResponse, status_code=status.HTTP_201_CREATED)
async def create_api_key(
    request: ApiKeyCreate,
    db: AsyncSession = Depends(get_db),
):
    try:
        return await ApiKeyService(db).create(
            request.provider,
            request.api_key,
            model=request.model,
            enabled=request.enabled,
        )
    except EnrichmentError as e:
        raise http_error(e)


@router.get("/{key_id}", response_model=ApiKeyResponse)
async def get_api_key(key_id: str, db: AsyncSession = Depends(get_db)):
    try:
        key = await ApiKeyService(db).get_by_id(key_id)
    except EnrichmentError as e:
        raise http_error(e)
    if key is None:
        raise HTTPException(status_code=404, detail="API key not found")
    return key


@router.patch("/{key_id}", response_model=ApiKeyResponse)
async def update_api_key(
    key_id: str,
    request: ApiKeyUpdate,
    db: AsyncSession = Depends(get_db),
):
    try:
        return await ApiKeyService(db).update(
            key_id,
            api_key=request.api_key,
            model=request.model,
            enabled=request.enabled,
        )
    except EnrichmentError as e:
        raise http_error(e)


@router.delete("/{key_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_api_key(key_id: str, db: AsyncSession = Depends(get_db)):
    try:
        await ApiKeyService(db).delete(key_id)
    except EnrichmentError as e:
        raise http_error(e)
