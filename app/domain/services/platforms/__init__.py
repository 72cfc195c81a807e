"""
Platform adapters - WhatsApp (pywa), Viber and Telegram (httpx).
"""
from app.domain.services.platforms.base_adapter import BasePlatformAdapter
from app.domain.services.platforms.adapter_factory import (
    get_platform_adapters,
    reset_adapters,
)

__all__ = [
    "BasePlatformAdapter",
    "get_platform_adapters",
    "reset_adapters",
]
