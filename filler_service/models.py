"""Pydantic request/response schemas for the PDF filler API."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, Field

from filler_service.types import FieldKind

# -- Extraction ---------------------------------------------------------------


class ExtractRequest(BaseModel):
    file_path: str = Field(..., min_length=1, max_length=4096, description="Path to the PDF")
    template: dict[str, Any] | None = Field(None, description="JSON shape to guide the keys")
    force_refresh: bool = Field(False, description="Ignore a cached result")


# -- Fill ---------------------------------------------------------------------


class FillInstructionModel(BaseModel):
    field: str = Field(..., min_length=1)
    value: str | bool | int | float
    type: FieldKind = FieldKind.TEXT


class FillInstructionsRequest(BaseModel):
    file_path: str = Field(..., min_length=1, max_length=4096)
    data: dict[str, Any] = Field(default_factory=dict)


class FillInstructionsResponse(BaseModel):
    instructions: list[FillInstructionModel]


class FillRequest(BaseModel):
    file_path: str = Field(..., min_length=1, max_length=4096)
    output_path: str = Field(..., min_length=1, max_length=4096)
    values: dict[str, Any] | None = Field(
        None, description="Field name -> value, written directly without a backend"
    )
    data: dict[str, Any] | None = Field(
        None, description="Free-form data; fill instructions are generated from it"
    )
    instructions: list[FillInstructionModel] | None = None
    password: str | None = None


class FillResponse(BaseModel):
    output_path: str
    filled: list[str]
    failed: dict[str, str]


# -- Validation ---------------------------------------------------------------


class ValidateRequest(BaseModel):
    file_path: str = Field(..., min_length=1, max_length=4096)
    required_fields: list[str] | None = None


class ValidationResponse(BaseModel):
    is_valid: bool
    missing_fields: list[str]
    filled_fields: list[str]
    all_fields: list[str]
    summary: str


# -- Fields -------------------------------------------------------------------


class FieldsRequest(BaseModel):
    file_path: str = Field(..., min_length=1, max_length=4096)
    password: str | None = None


class FieldDescriptorModel(BaseModel):
    name: str
    type: str
    value: Any = None
    options: list[str] = Field(default_factory=list)


class FieldsResponse(BaseModel):
    fields: list[FieldDescriptorModel]
    total: int


# -- Cache --------------------------------------------------------------------


class CacheInvalidateResponse(BaseModel):
    removed: int


# -- Health -------------------------------------------------------------------


class ProviderStatus(BaseModel):
    installed: bool
    authenticated: bool
    detail: str | None = None
    fallback_active: bool = False
    rate: dict[str, int] | None = None


class HealthResponse(BaseModel):
    status: Literal["ok", "degraded"]
    error: str | None = None
    selected: str | None = None
    providers: dict[str, ProviderStatus] | None = None
    cache: dict[str, int] | None = None
