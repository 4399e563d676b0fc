import hmac
from typing import Optional

from fastapi import Depends, Query, Request

from stream_proxy.credentials.cache import CredentialCache
from stream_proxy.errors import InvalidCredentialsError, MissingParametersError


def _matches(expected: Optional[str], supplied: str) -> bool:
    # Unknown users still pay for a comparison so both failures look alike.
    candidate = expected if expected is not None else ""
    equal = hmac.compare_digest(candidate.encode("utf-8"), supplied.encode("utf-8"))
    return expected is not None and equal


def validate(
    cache: CredentialCache,
    user: Optional[str],
    password: Optional[str],
    path: Optional[str],
) -> str:
    """
    Check the stream request parameters against the current credential snapshot.

    Returns:
        The requested relative path.

    Raises:
        MissingParametersError: If user, password or path is missing or empty.
        InvalidCredentialsError: If the user is unknown or the password differs.
    """
    if not user or not password or not path:
        raise MissingParametersError()

    snapshot = cache.get()
    if not _matches(snapshot.users.get(user), password):
        raise InvalidCredentialsError()
    return path


def get_credential_cache(request: Request) -> CredentialCache:
    return request.app.state.credential_cache


def require_stream_access(
    user: Optional[str] = Query(None),
    password: Optional[str] = Query(None, alias="pass"),
    path: Optional[str] = Query(None),
    cache: CredentialCache = Depends(get_credential_cache),
) -> str:
    # Plain def: FastAPI runs it on the threadpool, keeping the file stat off the event loop.
    return validate(cache, user, password, path)
