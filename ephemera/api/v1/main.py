from fastapi import APIRouter

router = APIRouter(prefix="/v1")

from .files.main import router as files
from .signals.main import router as signals

router.include_router(files, tags=["files"])
router.include_router(signals, tags=["signals"])
