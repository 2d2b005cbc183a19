"""Domain error taxonomy.

Services raise these; ``wishsync.main`` renders them as ``{"detail": ...}``
with the matching status code. Anything that is not a ``WishlistError`` is
an internal failure and becomes a generic 500.
"""

from fastapi import status


class WishlistError(Exception):
    status_code: int = status.HTTP_400_BAD_REQUEST
    default_detail: str = "Request failed"

    def __init__(self, detail: str | None = None) -> None:
        self.detail = detail or self.default_detail
        super().__init__(self.detail)


class Unauthenticated(WishlistError):
    status_code = status.HTTP_401_UNAUTHORIZED
    default_detail = "Not authenticated"


class BadRequest(WishlistError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = "Bad request"


class Forbidden(WishlistError):
    status_code = status.HTTP_403_FORBIDDEN
    default_detail = "Forbidden"


class NotFound(WishlistError):
    status_code = status.HTTP_404_NOT_FOUND
    default_detail = "Not found"


class Conflict(WishlistError):
    status_code = status.HTTP_409_CONFLICT
    default_detail = "Conflict"
