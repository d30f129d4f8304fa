"""
UserRepository for database operations on User and Account models
"""

from typing import Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from database_models import Account, User, utcnow


class UserRepository:
    """
    Repository class for User database operations.
    Encapsulates all database logic for users and their OAuth accounts.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_user_by_email(self, email: str) -> Optional[User]:
        """
        Retrieve a user by email address.

        Args:
            email: User's email address (case-insensitive search)

        Returns:
            User object if found, None otherwise
        """
        result = await self.db.execute(
            select(User).where(User.email == email.lower())
        )
        return result.scalar_one_or_none()

    async def get_user_by_id(self, user_id: str) -> Optional[User]:
        result = await self.db.execute(
            select(User).where(User.id == user_id)
        )
        return result.scalar_one_or_none()

    async def create_user(self, user_data: dict) -> User:
        """
        Create a new user in the database.

        Args:
            user_data: Dictionary containing user data. Must include:
                - email: str
                Optional:
                - id: str (generated when missing)
                - name: str
                - email_verified: bool (defaults to False)
                - image: str

        Returns:
            Created User object
        """
        user = User(
            email=user_data["email"].lower(),
            name=user_data.get("name") or "",
            email_verified=user_data.get("email_verified", False),
            image=user_data.get("image"),
        )
        if user_data.get("id"):
            user.id = user_data["id"]
        self.db.add(user)
        await self.db.flush()  # Flush to get the ID without committing
        await self.db.refresh(user)
        return user

    async def update_user(self, user: User, updates: dict) -> User:
        """
        Update user fields.

        Args:
            user: User object to update
            updates: Dictionary of fields to update (e.g., {"name": "Jane"})

        Returns:
            Updated User object
        """
        for key, value in updates.items():
            if hasattr(user, key):
                setattr(user, key, value)
        user.updated_at = utcnow()

        await self.db.flush()
        await self.db.refresh(user)
        return user

    async def get_account(self, provider_id: str, account_id: str) -> Optional[Account]:
        result = await self.db.execute(
            select(Account).where(
                Account.provider_id == provider_id,
                Account.account_id == account_id,
            )
        )
        return result.scalar_one_or_none()

    async def link_account(self, user: User, provider_id: str, account_id: str, token_data: dict) -> Account:
        """
        Create or refresh the OAuth account link for a user.

        Args:
            user: The local user
            provider_id: OAuth provider name (e.g. "google")
            account_id: The provider's subject identifier
            token_data: Token fields (access_token, refresh_token, id_token,
                scope, access_token_expires_at); missing keys are left alone

        Returns:
            The Account row
        """
        account = await self.get_account(provider_id, account_id)
        if account is None:
            account = Account(user_id=user.id, provider_id=provider_id, account_id=account_id)
            self.db.add(account)

        for key in ("access_token", "refresh_token", "id_token", "scope", "access_token_expires_at"):
            if token_data.get(key) is not None:
                setattr(account, key, token_data[key])
        account.updated_at = utcnow()

        await self.db.flush()
        return account
