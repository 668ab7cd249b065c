"""Rate limiter singleton for the import endpoints.

Limits are counted per instructor (JWT subject) so that staff sharing one
campus NAT address do not throttle each other; unauthenticated callers fall
back to the remote address.
"""
from jose import JWTError
from slowapi import Limiter
from slowapi.util import get_remote_address
from starlette.requests import Request

from roster.core.security import decode_token


def instructor_key(request: Request) -> str:
    auth = request.headers.get("authorization", "")
    scheme, _, token = auth.partition(" ")
    if scheme.lower() == "bearer" and token:
        try:
            subject = decode_token(token).get("sub")
        except JWTError:
            subject = None
        if subject:
            return f"account:{subject}"
    return get_remote_address(request)


limiter = Limiter(key_func=instructor_key)
