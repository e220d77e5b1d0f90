from fastapi import APIRouter
from app.api.endpoints import chat

api_router = APIRouter()

# Combine all sub-routers into one
api_router.include_router(chat.router)
