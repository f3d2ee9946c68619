"""Current-actor context handed to the client-side booking code."""

from dataclasses import dataclass
from enum import Enum

from medibook.errors import MissingIdentityError
from medibook.schemas import LoginResponse


class Role(str, Enum):
    USER = 'user'
    ADMIN = 'admin'


@dataclass
class Session:
    user_id: str | None = None
    role: Role = Role.USER
    access_token: str | None = None

    @classmethod
    def from_login(cls, response: LoginResponse) -> 'Session':
        return cls(user_id=response.user_id, role=Role(response.role), access_token=response.access_token)

    @property
    def is_authenticated(self) -> bool:
        return bool(self.user_id)

    @property
    def is_admin(self) -> bool:
        return self.is_authenticated and self.role is Role.ADMIN

    def require_user_id(self) -> str:
        if not self.user_id:
            raise MissingIdentityError()
        return self.user_id

    def clear(self) -> None:
        self.user_id = None
        self.role = Role.USER
        self.access_token = None
