import os
import logging
from datetime import datetime, timezone

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from api.auth import router as auth_router
from api.chats import router as chats_router
from db.history_store import StorageUnavailable
from db.init_db import init_db

# -------- Logging --------
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
logging.basicConfig(level=LOG_LEVEL, format="[%(asctime)s] %(levelname)s - %(name)s - %(message)s")
logger = logging.getLogger("chat_api")

# CORS origins (dev frontend)
ALLOWED_ORIGINS = [
    "http://localhost:3000",
    "http://127.0.0.1:3000",
]
extra = os.getenv("FRONTEND_ORIGINS")
if extra:
    ALLOWED_ORIGINS += [o.strip() for o in extra.split(",") if o.strip()]

# -------- App --------
app = FastAPI(title="AI Chat API")
app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

@app.on_event("startup")
def _startup():
    init_db()

# detail per endpoint; keyed by the route function name
STORAGE_ERRORS = {
    "send_message": "Error sending message",
    "get_history": "Error retrieving chat history",
    "clear_history": "Error clearing chat history",
    "get_stats": "Error retrieving chat statistics",
    "rename_chat": "Error updating chat title",
    "edit_message": "Error updating message",
    "delete_message": "Error deleting message",
}

@app.exception_handler(StorageUnavailable)
def _storage_unavailable(request: Request, exc: StorageUnavailable):
    endpoint = request.scope.get("endpoint")
    detail = STORAGE_ERRORS.get(getattr(endpoint, "__name__", ""), "Error processing request")
    logger.error("%s %s failed during %s: %s", request.method, request.url.path, exc.op or "storage", exc)
    return JSONResponse(status_code=500, content={"detail": detail})

# mount routes
app.include_router(auth_router)
app.include_router(chats_router)

# -------- Routes --------
@app.get("/")
def root():
    return {
        "message": "AI Chat API Server is running!",
        "environment": os.getenv("APP_ENV", "development"),
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }

@app.get("/health")
def health():
    return {"ok": True}
