"""
FastAPI dependencies for the key/value store and the services built on it.

בבדיקות מחליפים את get_kv_store דרך app.dependency_overrides.
"""
from fastapi import Depends

from app.db.database import AsyncSessionLocal
from app.db.kv_store import KeyValueStore, SqlKeyValueStore
from app.domain.services.app_state_service import AppStateService
from app.domain.services.template_service import TemplateService


def get_kv_store() -> KeyValueStore:
    return SqlKeyValueStore(AsyncSessionLocal)


def get_template_service(store: KeyValueStore = Depends(get_kv_store)) -> TemplateService:
    return TemplateService(store)


def get_app_state_service(store: KeyValueStore = Depends(get_kv_store)) -> AppStateService:
    return AppStateService(store)
