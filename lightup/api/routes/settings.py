from fastapi import APIRouter, Depends

from lightup.api import schemas
from lightup.api.dependencies import get_db
from lightup.db.database import Database
from lightup.errors import EntityNotFoundError

router = APIRouter()


@router.get("/settings/{key}", response_model=schemas.SettingOut)
def get_setting(key: str, db: Database = Depends(get_db)):
    setting = db.get_setting(key)
    if setting is None:
        raise EntityNotFoundError(f"Setting not found: {key}")
    return setting


@router.put("/settings/{key}", response_model=schemas.SettingOut)
def put_setting(
    key: str,
    request: schemas.SettingUpdate,
    db: Database = Depends(get_db),
):
    """Upsert a setting (e.g. `ai_concurrency`, `ai_stuck_timeout_minutes`)."""
    return db.set_setting(key, request.value)
