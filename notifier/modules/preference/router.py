"""FastAPI router for reading and updating preferences."""

from fastapi import APIRouter, Depends, Request

from notifier.modules.preference.cache import PreferenceCache
from notifier.modules.preference.schemas import PreferenceResponse, PreferenceUpdateRequest

router = APIRouter(prefix="/notifications/preferences", tags=["preferences"])


def get_preference_cache(request: Request) -> PreferenceCache:
    """Dependency returning the application's preference cache."""
    return request.app.state.preference_cache


@router.get("/{user_id}", response_model=PreferenceResponse)
async def get_user_preferences(
    user_id: str,
    cache: PreferenceCache = Depends(get_preference_cache),
):
    """Fetch a user's current channel preferences."""
    preferences = await cache.get(user_id)
    return PreferenceResponse(
        data={"userId": user_id, "preferences": preferences.model_dump()},
    )


@router.put("", response_model=PreferenceResponse)
async def update_user_preferences(
    body: PreferenceUpdateRequest,
    cache: PreferenceCache = Depends(get_preference_cache),
):
    """Upsert preference entries; the whole update fails on any bad entry."""
    preferences = await cache.update(body.user_id, body.preferences)
    return PreferenceResponse(
        message="Preferences updated successfully",
        data={"userId": body.user_id, "preferences": preferences.model_dump()},
    )
