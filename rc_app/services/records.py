# -*- coding: utf-8 -*-
"""
Alan servisleri: müşteriler, bütçeler, sözleşmeler, finans kayıtları.
"""

import re
from typing import Any, Dict

from .base import RecordService, ValidationError, normalize_amount, normalize_str

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

BUDGET_STATUSES = ('Pendente', 'Aprovado', 'Rejeitado', 'Cancelado')
CONTRACT_STATUSES = ('Ativo', 'Concluído', 'Suspenso', 'Cancelado')
FINANCIAL_TYPES = ('Receita', 'Despesa')


def _check_length(table: str, field: str, value: Any, min_len: int, max_len: int):
    if value is None:
        return
    if not (min_len <= len(value) <= max_len):
        raise ValidationError(f"{table}.{field} {min_len}-{max_len} karakter olmalı")


def _check_choice(table: str, field: str, value: Any, choices):
    if value is not None and value not in choices:
        raise ValidationError(f"{table}.{field} şunlardan biri olmalı: {', '.join(choices)}")


class ClientService(RecordService):
    """Müşteri kayıtları"""
    TABLE = 'clients'
    REQUIRED_FIELDS = ('name',)

    def normalize(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        for key in ('name', 'phone', 'address', 'cpf'):
            if key in payload:
                payload[key] = normalize_str(payload[key])
        _check_length(self.TABLE, 'name', payload.get('name'), 2, 150)

        email = normalize_str(payload.get('email'))
        if email:
            email = email.lower()
            if not EMAIL_RE.match(email):
                raise ValidationError(f"Geçersiz e-posta: {email}")
            payload['email'] = email
        payload.setdefault('isActive', True)
        return {k: v for k, v in payload.items() if v is not None}


class BudgetService(RecordService):
    """Bütçe (orçamento) kayıtları"""
    TABLE = 'budgets'
    REQUIRED_FIELDS = ('clientId', 'title')

    def normalize(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        payload['title'] = normalize_str(payload.get('title'))
        _check_length(self.TABLE, 'title', payload.get('title'), 1, 100)
        if 'amount' in payload:
            payload['amount'] = normalize_amount(payload['amount'])
        payload.setdefault('status', 'Pendente')
        _check_choice(self.TABLE, 'status', payload['status'], BUDGET_STATUSES)
        return {k: v for k, v in payload.items() if v is not None}


class ContractService(RecordService):
    """Sözleşme kayıtları"""
    TABLE = 'contracts'
    REQUIRED_FIELDS = ('clientId', 'title')

    def normalize(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        payload['title'] = normalize_str(payload.get('title'))
        _check_length(self.TABLE, 'title', payload.get('title'), 1, 200)
        if 'value' in payload:
            payload['value'] = normalize_amount(payload['value'])
        payload.setdefault('status', 'Ativo')
        _check_choice(self.TABLE, 'status', payload['status'], CONTRACT_STATUSES)

        start, end = payload.get('startDate'), payload.get('endDate')
        if start and end and str(end) < str(start):
            raise ValidationError("contracts.endDate, startDate'ten önce olamaz")
        return {k: v for k, v in payload.items() if v is not None}


class FinancialService(RecordService):
    """Gelir / gider kayıtları"""
    TABLE = 'financial'
    REQUIRED_FIELDS = ('type', 'description', 'amount')

    def normalize(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        _check_choice(self.TABLE, 'type', payload.get('type'), FINANCIAL_TYPES)
        payload['description'] = normalize_str(payload.get('description'))
        if 'amount' in payload:
            payload['amount'] = normalize_amount(payload['amount'])
        return {k: v for k, v in payload.items() if v is not None}


SERVICES = {
    ClientService.TABLE: ClientService,
    BudgetService.TABLE: BudgetService,
    ContractService.TABLE: ContractService,
    FinancialService.TABLE: FinancialService,
}


def build_services(store) -> Dict[str, RecordService]:
    """Tablo adı -> servis örneği."""
    return {table: cls(store) for table, cls in SERVICES.items()}
