"""Current-user resolution for the pipeline."""

from typing import Optional

from shared.errors import AuthenticationRequiredError


class AuthContext:
    """Resolves the user the pipeline acts for."""

    async def get_user_id(self) -> Optional[str]:
        raise NotImplementedError

    async def require_user_id(self) -> str:
        """Return the current user id or raise when nobody is signed in."""
        user_id = await self.get_user_id()
        if not user_id:
            raise AuthenticationRequiredError("Not authenticated")
        return user_id


class StaticAuthContext(AuthContext):
    """Auth context holding a fixed user id, cleared on sign-out."""

    def __init__(self, user_id: Optional[str] = None):
        self.user_id = user_id

    async def get_user_id(self) -> Optional[str]:
        return self.user_id

    def sign_out(self) -> None:
        self.user_id = None
