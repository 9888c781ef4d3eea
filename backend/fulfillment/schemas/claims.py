"""
Claim / label request and response schemas
"""
from datetime import datetime
from typing import Optional, List
from pydantic import BaseModel, Field, field_validator


def _strip_ids(values: List[str]) -> List[str]:
    cleaned = [v.strip() for v in values if v and v.strip()]
    if not cleaned:
        raise ValueError("At least one id is required")
    return cleaned


# ==================== Vendor Requests ====================


class ClaimRequest(BaseModel):
    unique_id: str = Field(..., min_length=1, max_length=100)


class BulkClaimRequest(BaseModel):
    unique_ids: List[str] = Field(..., min_length=1, max_length=500)

    @field_validator("unique_ids")
    @classmethod
    def validate_ids(cls, v):
        return _strip_ids(v)


class OrderRequest(BaseModel):
    """Single-order action (label download, mark ready)."""
    order_id: str = Field(..., min_length=1, max_length=100)


class BulkOrdersRequest(BaseModel):
    order_ids: List[str] = Field(..., min_length=1, max_length=200)

    @field_validator("order_ids")
    @classmethod
    def validate_ids(cls, v):
        return list(dict.fromkeys(_strip_ids(v)))


class ReverseRequest(BaseModel):
    unique_id: str = Field(..., min_length=1, max_length=100)


class ReverseGroupedRequest(BaseModel):
    order_id: str = Field(..., min_length=1, max_length=100)
    unique_ids: List[str] = Field(..., min_length=1, max_length=100)

    @field_validator("unique_ids")
    @classmethod
    def validate_ids(cls, v):
        return _strip_ids(v)


# ==================== Admin Requests ====================


class AdminAssignRequest(BaseModel):
    unique_id: str = Field(..., min_length=1, max_length=100)
    warehouse_id: str = Field(..., min_length=1, max_length=100)


class AdminBulkAssignRequest(BaseModel):
    unique_ids: List[str] = Field(..., min_length=1, max_length=500)
    warehouse_id: str = Field(..., min_length=1, max_length=100)

    @field_validator("unique_ids")
    @classmethod
    def validate_ids(cls, v):
        return _strip_ids(v)


class AdminUnassignRequest(BaseModel):
    unique_id: str = Field(..., min_length=1, max_length=100)


# ==================== Responses ====================


class OrderLineResponse(BaseModel):
    unique_id: str
    order_id: str
    product_name: Optional[str] = None
    product_code: Optional[str] = None
    quantity: int = 1
    pincode: Optional[str] = None
    payment_type: str
    status: str
    claimed_by: Optional[str] = None
    claimed_at: Optional[datetime] = None
    clone_status: str
    cloned_order_id: Optional[str] = None
    label_downloaded: bool = False
    priority_carrier: Optional[str] = None

    class Config:
        from_attributes = True
