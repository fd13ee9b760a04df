import os
import logging
from typing import Any, Dict, List, Optional, Sequence, Tuple

from ollama import Client

logger = logging.getLogger(__name__)

# ---- Config (env overridable) ----
OLLAMA_HOST = os.getenv("OLLAMA_HOST", "http://localhost:11434")
CHAT_MODEL = os.getenv("OLLAMA_CHAT_MODEL", "mistral")

# Last N messages sent along as context
CONTEXT_MESSAGES = 10

ROLE_MAP = {"user": "user", "ai": "assistant", "system": "system"}

GENERATION_OPTIONS = {
    "temperature": 0.7,
    "top_k": 40,
    "top_p": 0.95,
    "num_predict": 1024,
}


class AIResponderError(Exception):
    pass


def _field(obj: Any, name: str) -> Any:
    if obj is None:
        return None
    if isinstance(obj, dict):
        return obj.get(name)
    return getattr(obj, name, None)


def to_chat_messages(history: Sequence[Any]) -> List[Dict[str, str]]:
    """Map stored messages (``role``/``content``) to Ollama chat turns."""
    out = []
    for m in history:
        role = _field(m, "role")
        out.append({
            "role": ROLE_MAP.get(role, "user"),
            "content": _field(m, "content") or "",
        })
    return out


class AIResponder:
    def __init__(self, host: str = OLLAMA_HOST, model: str = CHAT_MODEL, client: Optional[Client] = None):
        self.model = model
        self.client = client or Client(host=host)

    def generate(self, user_message: str, recent_history: Sequence[Any] = ()) -> str:
        messages = to_chat_messages(list(recent_history)[-CONTEXT_MESSAGES:])
        messages.append({"role": "user", "content": user_message})

        try:
            resp = self.client.chat(
                model=self.model,
                messages=messages,
                options=GENERATION_OPTIONS,
                stream=False,
            )
        except Exception as e:
            raise AIResponderError(f"Failed to generate AI response: {type(e).__name__}: {e}") from e

        answer = (_field(_field(resp, "message"), "content") or "").strip()
        if not answer:
            raise AIResponderError("Failed to generate AI response: empty response from model")
        return answer

    def test_connection(self) -> Tuple[bool, Optional[str]]:
        try:
            self.client.show(self.model)
            return True, None
        except Exception as e:
            logger.warning("AI health probe failed for model %s: %s", self.model, e)
            return False, f"{type(e).__name__}: {e}"
