# -*- coding: utf-8 -*-
"""
RC Obra Sync Server

Offline-first istemciler için pull/push senkronizasyon sunucusu.
Çalıştırmak için: uvicorn sync_server.main:app
"""

__version__ = '1.0.0'
