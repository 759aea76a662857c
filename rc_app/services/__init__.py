# -*- coding: utf-8 -*-
"""Alan servisleri."""

from .base import RecordService, ValidationError, normalize_amount, normalize_str
from .records import (
    BudgetService,
    ClientService,
    ContractService,
    FinancialService,
    SERVICES,
    build_services,
)

__all__ = [
    'RecordService',
    'ValidationError',
    'normalize_amount',
    'normalize_str',
    'ClientService',
    'BudgetService',
    'ContractService',
    'FinancialService',
    'SERVICES',
    'build_services',
]
