import os
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Type, TypeVar

import requests
from pydantic import BaseModel, ValidationError

from chat_client.models import AIHealth, ChatStats, HistoryPage, SendMessageResult, User

API_BASE = os.getenv("CHAT_API_URL", "http://localhost:8000")
TIMEOUT = 60  # seconds; a send waits for the model

M = TypeVar("M", bound=BaseModel)


class ApiError(Exception):
    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class _BaseAPI:
    def __init__(self, base_url: str = API_BASE, session: Optional[requests.Session] = None, timeout: float = TIMEOUT):
        self.base_url = base_url.rstrip("/")
        # the session carries the http-only auth cookie between calls
        self.session = session or requests.Session()
        self.timeout = timeout

    def _request(self, method: str, endpoint: str, **kwargs) -> Any:
        try:
            resp = self.session.request(method, f"{self.base_url}{endpoint}", timeout=self.timeout, **kwargs)
        except requests.RequestException as e:
            raise ApiError(f"Network error: {e}") from e

        if not resp.ok:
            try:
                body = resp.json()
            except ValueError:
                body = {"detail": "Network error"}
            detail = body.get("detail") if isinstance(body, dict) else None
            # 422s carry a list of field errors
            if not isinstance(detail, str):
                detail = None
            raise ApiError(detail or f"HTTP {resp.status_code}", resp.status_code)

        try:
            return resp.json()
        except ValueError as e:
            raise ApiError("Invalid response from server", resp.status_code) from e


def _parse(model: Type[M], body: Any) -> M:
    try:
        return model.model_validate(body)
    except ValidationError as e:
        raise ApiError("Invalid response from server") from e


def _field(body: Any, name: str) -> Any:
    return body.get(name) if isinstance(body, dict) else None


class ChatAPI(_BaseAPI):
    def send_message(self, content: str, role: Optional[str] = None, metadata: Optional[Dict[str, Any]] = None) -> SendMessageResult:
        payload: Dict[str, Any] = {"content": content}
        if role:
            payload["role"] = role
        if metadata:
            payload["metadata"] = metadata
        return _parse(SendMessageResult, self._request("POST", "/chat/message", json=payload))

    def get_chat_history(self, limit: Optional[int] = None, offset: Optional[int] = None) -> HistoryPage:
        params = {}
        if limit:
            params["limit"] = limit
        if offset:
            params["offset"] = offset
        return _parse(HistoryPage, self._request("GET", "/chat/history", params=params))

    def load_more_messages(self, loaded_count: int, limit: int = 20) -> HistoryPage:
        return self.get_chat_history(limit=limit, offset=loaded_count)

    def retry_message(self, content: str) -> SendMessageResult:
        return self.send_message(
            content,
            metadata={"retry": True, "timestamp": datetime.now(timezone.utc).isoformat()},
        )

    def clear_chat_history(self) -> str:
        return _field(self._request("DELETE", "/chat/clear"), "message")

    def get_chat_stats(self) -> ChatStats:
        return _parse(ChatStats, self._request("GET", "/chat/stats"))

    def check_ai_health(self) -> AIHealth:
        return _parse(AIHealth, self._request("GET", "/chat/health"))


class AuthAPI(_BaseAPI):
    def register(self, name: str, username: str, email: str, password: str) -> User:
        body = self._request("POST", "/auth/register", json={
            "name": name, "username": username, "email": email, "password": password,
        })
        return _parse(User, _field(body, "user"))

    def login(self, email: str, password: str) -> User:
        body = self._request("POST", "/auth/login", json={"email": email, "password": password})
        return _parse(User, _field(body, "user"))

    def logout(self) -> str:
        return _field(self._request("POST", "/auth/logout"), "message")

    def me(self) -> User:
        return _parse(User, _field(self._request("GET", "/auth/me"), "user"))
