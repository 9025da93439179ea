# app/health.py
from fastapi import APIRouter

from app.config import get_settings

router = APIRouter()


@router.get("/health")
def health():
    settings = get_settings()
    return {"ok": True, "queue": "memory" if settings.use_mock_data else "arq"}
