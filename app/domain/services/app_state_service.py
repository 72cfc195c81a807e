"""
App State - business-hours schedule and current operating mode.
"""
from app.core.config import settings
from app.core.logging import get_logger
from app.db.kv_store import KeyValueStore
from app.domain.models.calls import AppMode, AppState, BusinessHours

logger = get_logger(__name__)

APP_STATE_KEY = "app_state"


def default_app_state() -> AppState:
    """Mon–Fri 08:00–18:00, Sat 09:00–15:00, normal mode"""
    return AppState(business_hours=BusinessHours(timezone=settings.BUSINESS_TIMEZONE))


class AppStateService:
    def __init__(self, store: KeyValueStore) -> None:
        self._store = store

    async def get_app_state(self) -> AppState:
        """Stored state, or the default when missing or unreadable"""
        try:
            raw = await self._store.get(APP_STATE_KEY)
        except Exception as e:
            logger.error(
                "Failed to read app state, using defaults",
                extra_data={"error": str(e)},
                exc_info=True,
            )
            return default_app_state()

        if not raw:
            return default_app_state()
        try:
            return AppState.model_validate_json(raw)
        except ValueError as e:
            logger.warning(
                "Stored app state is corrupt, using defaults",
                extra_data={"error": str(e)},
            )
            return default_app_state()

    async def save_app_state(self, state: AppState) -> AppState:
        await self._store.set(APP_STATE_KEY, state.model_dump_json())
        logger.info(
            "App state updated",
            extra_data={
                "mode": state.mode.value,
                "business_hours_enabled": state.business_hours.enabled,
            },
        )
        return state

    async def set_mode(self, mode: AppMode) -> AppState:
        state = await self.get_app_state()
        return await self.save_app_state(state.model_copy(update={"mode": mode}))

    async def set_business_hours(self, business_hours: BusinessHours) -> AppState:
        state = await self.get_app_state()
        return await self.save_app_state(state.model_copy(update={"business_hours": business_hours}))
