from typing import Protocol

from fastapi import Request

from sheetpipe.core.errors import UnauthorizedError
from sheetpipe.models.sheet import ApiUser


class IdentityProvider(Protocol):
    async def identify(self, request: Request) -> str:
        """Returns the caller's user id or raises UnauthorizedError."""
        ...


class ApiKeyIdentityProvider:
    """Resolves `Authorization: Bearer <api-key>` to the owning user."""

    async def identify(self, request: Request) -> str:
        header = request.headers.get("Authorization")
        if not header:
            raise UnauthorizedError("Missing Authorization header. Please provide: Authorization: Bearer <your-api-key>")
        if not header.startswith("Bearer "):
            raise UnauthorizedError("Invalid Authorization header format. Expected: Bearer <your-api-key>")

        api_key = header[len("Bearer "):].strip()
        if not api_key:
            raise UnauthorizedError("API key is empty")

        user = await ApiUser.get_or_none(api_key=api_key)
        if not user:
            raise UnauthorizedError("Invalid API key.")
        return user.id


async def current_user_id(request: Request) -> str:
    """FastAPI dependency: the identity provider is injected at app construction."""
    provider: IdentityProvider = request.app.state.identity_provider
    return await provider.identify(request)
