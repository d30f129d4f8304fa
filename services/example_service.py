"""
Example Service - typed API calls through ApiClient.
Copy this pattern for your own services and delete this file.
"""
import logging
from typing import List, Optional

from pydantic import BaseModel

from api_client import ApiClient, ApiException
from config import settings

logger = logging.getLogger(__name__)


class User(BaseModel):
    id: str
    email: str
    name: str


class CreateUserInput(BaseModel):
    email: str
    name: str


class UpdateUserInput(BaseModel):
    email: Optional[str] = None
    name: Optional[str] = None


def log_api_error(error: ApiException) -> None:
    logger.error(f"API Error [{error.code.value}]: {error.message}")


def create_internal_api(**kwargs) -> ApiClient:
    """Client for this app's own /api"""
    return ApiClient(f"{settings.app_url.rstrip('/')}/api", on_error=log_api_error, **kwargs)


class UserService:
    """
    Example:
        service = UserService()
        try:
            user = await service.create(CreateUserInput(email="a@b.co", name="Ann"))
        except ApiException as e:
            if e.code == ApiErrorCode.VALIDATION_ERROR:
                ...
    """

    def __init__(self, api: Optional[ApiClient] = None):
        self.api = api or create_internal_api()

    async def get_all(self) -> List[User]:
        data = await self.api.get("/users")
        return [User(**item) for item in data]

    async def get_by_id(self, user_id: str) -> User:
        return User(**await self.api.get(f"/users/{user_id}"))

    async def create(self, data: CreateUserInput) -> User:
        return User(**await self.api.post("/users", data.model_dump()))

    async def update(self, user_id: str, data: UpdateUserInput) -> User:
        return User(**await self.api.patch(f"/users/{user_id}", data.model_dump(exclude_none=True)))

    async def delete(self, user_id: str) -> None:
        await self.api.delete(f"/users/{user_id}")
