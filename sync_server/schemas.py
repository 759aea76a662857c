# -*- coding: utf-8 -*-
"""
Pydantic şemaları - API request/response modelleri

Kablo formatı camelCase; Python tarafında snake_case alan adları kullanılır.
"""

import uuid
from decimal import Decimal
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator


class WireModel(BaseModel):
    """Alias ve alan adıyla doldurulabilen temel model"""
    model_config = ConfigDict(populate_by_name=True)


def check_device_id(value: str) -> str:
    """deviceId bir UUID olmalı."""
    try:
        uuid.UUID(str(value))
    except (ValueError, TypeError, AttributeError):
        raise ValueError("deviceId geçerli bir UUID olmalı")
    return str(value)


# =============================================================================
# PULL
# =============================================================================

class PullRow(WireModel):
    """Pull yanıtındaki tek satır (tombstone dahil)"""
    server_id: str = Field(alias="serverId")
    updated_at: int = Field(alias="updatedAt")
    deleted_at: Optional[int] = Field(default=None, alias="deletedAt")
    payload: Dict[str, Any] = Field(default_factory=dict)
    device_id: Optional[str] = Field(default=None, alias="deviceId")
    local_id: Optional[str] = Field(default=None, alias="localId")


class PullResponse(WireModel):
    rows: List[PullRow] = []
    new_watermark: int = Field(alias="newWatermark")
    has_more: bool = Field(default=False, alias="hasMore")


# =============================================================================
# PUSH
# =============================================================================

class PushItem(WireModel):
    """Push isteğindeki tek değişiklik"""
    local_id: str = Field(alias="localId", min_length=1, max_length=64)
    server_id: Optional[str] = Field(default=None, alias="serverId", max_length=36)
    updated_at: int = Field(alias="updatedAt", ge=0)
    op: Literal['upsert', 'delete']
    payload: Dict[str, Any] = Field(default_factory=dict)
    base_version: Optional[int] = Field(default=None, alias="baseVersion", ge=0)


class PushRequest(WireModel):
    """
    Push isteği.

    data elemanları tek tek doğrulanır; bozuk bir eleman yalnızca kendi
    satırı için 'rejected' döner.
    """
    table: str
    device_id: str = Field(alias="deviceId")
    data: List[Any] = []

    @field_validator('device_id')
    @classmethod
    def validate_device_id(cls, value: str) -> str:
        return check_device_id(value)


class PushResult(WireModel):
    local_id: str = Field(alias="localId")
    status: Literal['accepted', 'conflict', 'rejected']
    server_id: Optional[str] = Field(default=None, alias="serverId")
    server_updated_at: Optional[int] = Field(default=None, alias="serverUpdatedAt")
    server_row: Optional[PullRow] = Field(default=None, alias="serverRow")
    reason: Optional[str] = None


class PushResponse(WireModel):
    results: List[PushResult] = []
    server_time: int = Field(alias="serverTime")


# =============================================================================
# TABLO PAYLOAD ŞEMALARI
# =============================================================================

Amount = Union[Decimal, int, float, str]


class PayloadModel(BaseModel):
    """Tablo payload'ları; tanımsız alanlara izin verilir"""
    model_config = ConfigDict(extra='allow')


class ClientPayload(PayloadModel):
    name: str = Field(min_length=2, max_length=150)
    email: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    cpf: Optional[str] = None
    isActive: Optional[bool] = None


class BudgetPayload(PayloadModel):
    clientId: Optional[str] = None
    title: str = Field(min_length=1, max_length=100)
    description: Optional[str] = None
    amount: Optional[Amount] = None
    status: Optional[Literal['Pendente', 'Aprovado', 'Rejeitado', 'Cancelado']] = None


class ContractPayload(PayloadModel):
    clientId: Optional[str] = None
    budgetId: Optional[str] = None
    title: str = Field(min_length=1, max_length=200)
    terms: Optional[str] = None
    value: Optional[Amount] = None
    startDate: Optional[str] = None
    endDate: Optional[str] = None
    status: Optional[Literal['Ativo', 'Concluído', 'Suspenso', 'Cancelado']] = None


class FinancialPayload(PayloadModel):
    type: Literal['Receita', 'Despesa']
    description: str = Field(min_length=1)
    amount: Amount
    date: Optional[str] = None
    category: Optional[str] = None
    referenceId: Optional[str] = None


PAYLOAD_SCHEMAS = {
    'clients': ClientPayload,
    'budgets': BudgetPayload,
    'contracts': ContractPayload,
    'financial': FinancialPayload,
}


def format_validation_error(error: ValidationError) -> str:
    """Pydantic hatasını tek satırlık mesaja çevir."""
    parts = []
    for err in error.errors():
        location = '.'.join(str(p) for p in err.get('loc', ())) or 'payload'
        parts.append(f"{location}: {err.get('msg')}")
    return '; '.join(parts)


def validate_payload(table: str, payload: Dict[str, Any]) -> Dict[str, Any]:
    """
    Payload'ı tablonun şemasına göre doğrula.

    Payload olduğu gibi saklanır; şema yalnızca kontrol için kullanılır.

    Raises:
        ValueError: Payload geçersizse
    """
    schema = PAYLOAD_SCHEMAS.get(table)
    if schema is None:
        return payload
    try:
        schema.model_validate(payload)
    except ValidationError as e:
        raise ValueError(format_validation_error(e)) from None
    return payload
