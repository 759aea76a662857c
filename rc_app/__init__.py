# -*- coding: utf-8 -*-
"""
RC Obra istemci paketi

Çevrimdışı çalışan istemci: yerel SQLite deposu, alan servisleri ve
sunucu ile çift yönlü senkronizasyon motoru.
"""

__version__ = '1.0.0'
