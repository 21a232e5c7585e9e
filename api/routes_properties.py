"""
api/routes_properties.py: Property Registry Endpoints

Endpoints:
    POST /api/properties/register             → Register a property (PENDING)
    GET  /api/properties                      → Paginated listing
    GET  /api/properties/search               → Verified properties by coordinates / location
    GET  /api/properties/user/my-properties   → Caller's own properties
    GET  /api/properties/{property_id}        → Full record
    PUT  /api/properties/{property_id}        → Owner edit while PENDING
    GET  /api/properties/{property_id}/chain  → LandRegistry record for the deed token
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import Field, field_validator
from sqlalchemy.ext.asyncio import AsyncSession

from api.schemas import CamelModel
from config import settings
from core.auth import get_current_user
from core.constants import ALLOWED_FILE_TYPES, PropertyStatus
from db.models import User
from db.session import get_db
from modules.properties import (
    register_property, list_properties, search_properties, get_user_properties,
    get_property_detail, update_property, get_onchain_record,
)
from modules.serializers import ok

router = APIRouter()


class DocumentIn(CamelModel):
    name: str = Field(min_length=1, max_length=255)
    type: str
    size: int = Field(ge=0)
    cid: Optional[str] = None

    @field_validator("type")
    @classmethod
    def allowed_type(cls, v: str) -> str:
        if v not in ALLOWED_FILE_TYPES:
            raise ValueError("File type is not supported")
        return v

    @field_validator("size")
    @classmethod
    def within_limit(cls, v: int) -> int:
        if v > settings.MAX_FILE_SIZE:
            raise ValueError("File size exceeds maximum limit")
        return v


class PropertyRegisterRequest(CamelModel):
    title: str = Field(min_length=1, max_length=200)
    description: str = Field(min_length=1, max_length=1000)
    location: str = Field(min_length=1, max_length=200)
    coordinates: str = Field(min_length=1, max_length=100)
    size: float = Field(gt=0)
    documents: list[DocumentIn] = Field(min_length=1)


class PropertyUpdateRequest(CamelModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=200)
    description: Optional[str] = Field(default=None, min_length=1, max_length=1000)


@router.post("/register", status_code=201)
async def register(
    body: PropertyRegisterRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    prop = await register_property(
        db=db,
        owner=user,
        title=body.title,
        description=body.description,
        location=body.location,
        coordinates=body.coordinates,
        size=body.size,
        documents=[d.model_dump(by_alias=True, exclude_none=True) for d in body.documents],
    )
    return ok({"property": prop}, "Property registered successfully")


@router.get("")
async def listing(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    status: Optional[PropertyStatus] = None,
    search: Optional[str] = Query(None, max_length=200),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return ok(await list_properties(db, user, page, limit, status, search))


@router.get("/search")
async def search(
    coordinates: Optional[str] = Query(None, max_length=100),
    location: Optional[str] = Query(None, max_length=200),
    _: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return ok({"properties": await search_properties(db, coordinates, location)})


@router.get("/user/my-properties")
async def my_properties(user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)):
    return ok({"properties": await get_user_properties(db, user)})


@router.get("/{property_id}")
async def detail(property_id: str, user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)):
    return ok({"property": await get_property_detail(db, user, property_id)})


@router.put("/{property_id}")
async def edit(
    property_id: str,
    body: PropertyUpdateRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    prop = await update_property(db, user, property_id, title=body.title, description=body.description)
    return ok({"property": prop}, "Property updated successfully")


@router.get("/{property_id}/chain")
async def onchain(property_id: str, _: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)):
    return ok(await get_onchain_record(db, property_id))
