from fastapi import HTTPException, status, Depends
from motor.motor_asyncio import AsyncIOMotorDatabase
from bson import ObjectId
from auth import get_current_user
import logging

logger = logging.getLogger(__name__)

MODULES = ("expenses", "sales", "revenue")


class PermissionChecker:
    """
    Permission enforcement for the payment API.

    RULES:
    1. User must be authenticated
    2. User must have status = "active"
    3. Token version must match the user's current token_version
    4. Module permissions apply; admins have every module
    """

    def __init__(self, db: AsyncIOMotorDatabase):
        self.db = db

    async def get_authenticated_user(self, current_user: dict = Depends(get_current_user)):
        """Get and validate authenticated user"""
        user_id = current_user.get("user_id")

        user = None
        if ObjectId.is_valid(str(user_id)):
            user = await self.db.users.find_one({"_id": ObjectId(user_id)})

        if not user:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="User not found"
            )

        if user.get("status") != "active":
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Your account is disabled. Contact administrator."
            )

        if user.get("token_version", 0) != current_user.get("token_version", 0):
            logger.warning(f"[AUTH] Stale token for user:{user_id}")
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Session invalidated. Please log in again."
            )

        # Normalize role and permissions
        user["role"] = str(user.get("role") or "user").strip().lower()
        permissions = user.get("permissions")
        if not isinstance(permissions, dict):
            permissions = {module: False for module in MODULES}
        if user["role"] == "admin":
            permissions = {module: True for module in MODULES}
        user["permissions"] = permissions

        # Convert _id to user_id for consistency
        user["user_id"] = str(user.pop("_id"))

        return user

    async def check_module_access(self, user: dict, module_key: str):
        """Require a module permission. Admin always bypasses."""
        if user.get("role") == "admin":
            return True

        if (user.get("permissions") or {}).get(module_key) is True:
            return True

        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=f"Access denied: {module_key} module"
        )
