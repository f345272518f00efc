"""
Role Service - permission matrix, role changes and category moderators.
"""

from typing import Any

from loguru import logger
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from openforum.core.exceptions import (
    ConflictError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from openforum.models.forum import Category, CategoryModerator
from openforum.models.user import User, UserRole

PERMISSIONS = (
    "can_moderate",
    "can_edit_any_post",
    "can_delete_any_post",
    "can_ban_users",
    "can_manage_categories",
    "can_view_reports",
    "can_manage_roles",
)

_MODERATOR_PERMISSIONS = {
    "can_moderate",
    "can_edit_any_post",
    "can_delete_any_post",
    "can_view_reports",
}


def permissions_for_role(role: str | None) -> dict[str, bool]:
    """
    Permission matrix for a role.

    Unknown or missing roles get no permissions.
    """
    if role == UserRole.ADMIN.value:
        return {name: True for name in PERMISSIONS}
    if role == UserRole.MODERATOR.value:
        return {name: name in _MODERATOR_PERMISSIONS for name in PERMISSIONS}
    return {name: False for name in PERMISSIONS}


def require_permission(user: User | None, permission: str) -> None:
    """Raise unless the user holds the permission."""
    if permission not in PERMISSIONS:
        raise ValueError(f"Unknown permission: {permission}")
    if user is None or not permissions_for_role(user.effective_role)[permission]:
        raise PermissionDeniedError(f"Permission denied: {permission}")


def can_modify_content(
    user: User | None,
    author_id: int,
    permission: str | None = None,
) -> bool:
    """Owner can always modify their content; others need the permission."""
    if user is None:
        return False
    if user.id == author_id:
        return True
    if permission:
        return permissions_for_role(user.effective_role).get(permission, False)
    return False


class RoleService:
    """
    Service for roles and category moderator assignments.

    Usage:
        roles = RoleService(db_session)
        await roles.update_user_role(admin, target_id, "moderator")
    """

    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def check_permissions(self, user_id: int | None) -> dict[str, bool]:
        """Permissions of a user by id; anonymous or unknown users get none."""
        if user_id is None:
            return permissions_for_role(None)
        role = await self.db.scalar(select(User.role).where(User.id == user_id))
        return permissions_for_role(role or UserRole.USER.value)

    async def update_user_role(self, actor: User, target_id: int, role: str) -> User:
        """
        Change a user's role (admin only).

        Raises:
            ConflictError: When demoting the last admin
        """
        if not actor.is_admin:
            raise PermissionDeniedError("Not authorized to change user roles")
        if role not in {r.value for r in UserRole}:
            raise ValidationError(f"Invalid role: {role}")

        target = await self.db.get(User, target_id)
        if not target:
            raise NotFoundError("User")

        if role != UserRole.ADMIN.value:
            admin_ids = list(
                (
                    await self.db.execute(
                        select(User.id).where(User.role == UserRole.ADMIN.value)
                    )
                ).scalars()
            )
            if admin_ids == [target_id]:
                raise ConflictError("Cannot demote the last admin")

        target.role = role
        await self.db.flush()

        logger.info(f"User {target_id} role changed to {role} by {actor.id}")
        return target

    async def get_role_stats(self) -> dict[str, int]:
        """Count users per role; a missing role counts as a plain user."""
        result = await self.db.execute(
            select(User.role, func.count(User.id)).group_by(User.role)
        )
        stats = {"admins": 0, "moderators": 0, "users": 0}
        for role, count in result.all():
            if role == UserRole.ADMIN.value:
                stats["admins"] += count
            elif role == UserRole.MODERATOR.value:
                stats["moderators"] += count
            elif role in (None, UserRole.USER.value):
                stats["users"] += count
        return stats

    # ==================== Category moderators ====================

    async def assign_category_moderator(
        self, actor: User, category_id: int, user_id: int
    ) -> CategoryModerator:
        """Assign a user as moderator of a category (admin only)."""
        if not actor.is_admin:
            raise PermissionDeniedError()

        if not await self.db.get(Category, category_id):
            raise NotFoundError("Category")
        if not await self.db.get(User, user_id):
            raise NotFoundError("User")

        existing = await self.db.scalar(
            select(CategoryModerator).where(
                CategoryModerator.category_id == category_id,
                CategoryModerator.user_id == user_id,
            )
        )
        if existing:
            raise ConflictError("User is already a moderator of this category")

        assignment = CategoryModerator(category_id=category_id, user_id=user_id)
        self.db.add(assignment)
        await self.db.flush()

        logger.info(f"User {user_id} assigned to moderate category {category_id}")
        return assignment

    async def remove_category_moderator(
        self, actor: User, category_id: int, user_id: int
    ) -> None:
        """Remove a category moderator (admin only)."""
        if not actor.is_admin:
            raise PermissionDeniedError()

        assignment = await self.db.scalar(
            select(CategoryModerator).where(
                CategoryModerator.category_id == category_id,
                CategoryModerator.user_id == user_id,
            )
        )
        if not assignment:
            raise NotFoundError("Category moderator")

        await self.db.delete(assignment)
        await self.db.flush()

    async def get_category_moderators(self, category_id: int) -> list[dict[str, Any]]:
        """List the moderators of a category."""
        result = await self.db.execute(
            select(CategoryModerator)
            .options(selectinload(CategoryModerator.user))
            .where(CategoryModerator.category_id == category_id)
            .order_by(CategoryModerator.created_at)
        )
        return [m.user.to_summary() for m in result.scalars().all()]

    async def get_moderated_category_ids(self, user_id: int) -> list[int]:
        """Ids of the categories a user moderates."""
        result = await self.db.execute(
            select(CategoryModerator.category_id).where(
                CategoryModerator.user_id == user_id
            )
        )
        return list(result.scalars().all())
