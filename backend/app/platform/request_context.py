from contextvars import ContextVar, Token
from typing import Optional

_request_id_ctx: ContextVar[Optional[str]] = ContextVar("request_id", default=None)
_principal_id_ctx: ContextVar[Optional[int]] = ContextVar("principal_id", default=None)


def set_request_id(request_id: str) -> Token:
    return _request_id_ctx.set(request_id)


def get_request_id() -> Optional[str]:
    return _request_id_ctx.get()


def reset_request_id(token: Token) -> None:
    _request_id_ctx.reset(token)


def set_principal_id(user_id: Optional[int]) -> Token:
    """Bind the authenticated user to the current request for log correlation."""
    return _principal_id_ctx.set(user_id)


def get_principal_id() -> Optional[int]:
    return _principal_id_ctx.get()
