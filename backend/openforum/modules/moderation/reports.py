"""
Report Service - user reports and their resolution.

Admins see and handle every report. Moderators see and handle reports
on content in the categories they moderate; user reports are admin-only.
"""

import math
from datetime import datetime, timedelta
from typing import Any

from loguru import logger
from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from openforum.core.exceptions import (
    ConflictError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from openforum.models.forum import Category, CategoryModerator, Post, Thread
from openforum.models.moderation import Report, ReportAction, ReportStatus, ReportTarget
from openforum.models.user import User, UserRole
from openforum.modules.forum.validation import ReportCreate
from openforum.modules.moderation.roles import RoleService, require_permission
from openforum.modules.moderation.security import SecurityService
from openforum.modules.notifications.service import NotificationService

TARGET_COLUMNS = {
    ReportTarget.THREAD.value: Report.thread_id,
    ReportTarget.POST.value: Report.post_id,
    ReportTarget.USER.value: Report.reported_id,
}


class ReportService:
    """
    Service for content reports.

    Usage:
        reports = ReportService(db_session)
        report = await reports.create_report(user, ReportCreate(...))
    """

    def __init__(self, db: AsyncSession) -> None:
        self.db = db
        self.notifications = NotificationService(db)

    async def _category_of(self, report: Report) -> int | None:
        """Category of the reported content, None for user reports."""
        if report.thread_id:
            return await self.db.scalar(
                select(Thread.category_id).where(Thread.id == report.thread_id)
            )
        if report.post_id:
            return await self.db.scalar(
                select(Thread.category_id)
                .join(Post, Post.thread_id == Thread.id)
                .where(Post.id == report.post_id)
            )
        return None

    async def create_report(self, reporter: User, data: ReportCreate) -> Report:
        """
        File a report.

        Raises:
            NotFoundError: When the target does not exist
            ConflictError: When the reporter already has a pending report on it
        """
        target_column = TARGET_COLUMNS[data.target_type]
        target_model = {
            ReportTarget.THREAD.value: Thread,
            ReportTarget.POST.value: Post,
            ReportTarget.USER.value: User,
        }[data.target_type]
        if not await self.db.get(target_model, data.target_id):
            raise NotFoundError(data.target_type.capitalize())

        existing = await self.db.scalar(
            select(Report.id).where(
                Report.reporter_id == reporter.id,
                Report.target_type == data.target_type,
                target_column == data.target_id,
                Report.status == ReportStatus.PENDING.value,
            )
        )
        if existing:
            raise ConflictError("You have already reported this content")

        report = Report(
            target_type=data.target_type,
            reason=data.reason,
            details=data.description,
            reporter_id=reporter.id,
            status=ReportStatus.PENDING.value,
        )
        setattr(report, target_column.key, data.target_id)
        self.db.add(report)
        await self.db.flush()

        # Notify admins and the category's moderators
        admin_ids = list(
            (
                await self.db.execute(
                    select(User.id).where(User.role == UserRole.ADMIN.value)
                )
            ).scalars()
        )
        moderator_ids: list[int] = []
        category_id = await self._category_of(report)
        if category_id:
            moderator_ids = list(
                (
                    await self.db.execute(
                        select(CategoryModerator.user_id).where(
                            CategoryModerator.category_id == category_id
                        )
                    )
                ).scalars()
            )

        recipients = [uid for uid in admin_ids + moderator_ids if uid != reporter.id]
        if recipients:
            await self.notifications.notify_many(
                recipients,
                type="report",
                title="New Report",
                message=f"A new {data.target_type} report has been filed and needs review",
                link=f"/admin/reports/{report.id}",
                actor_id=reporter.id,
                entity_id=report.id,
                entity_type="report",
            )

        logger.info(
            f"Report {report.id} filed by {reporter.id} on "
            f"{data.target_type} {data.target_id}: {data.reason}"
        )
        return report

    async def get_reports(
        self,
        actor: User,
        status: str | None = None,
        page: int = 1,
        limit: int = 20,
    ) -> dict[str, Any]:
        """List reports visible to the actor, newest first."""
        require_permission(actor, "can_view_reports")

        conditions = []
        if status:
            conditions.append(Report.status == status)

        if not actor.is_admin:
            category_ids = await RoleService(self.db).get_moderated_category_ids(actor.id)
            conditions.append(
                or_(
                    Report.thread_id.in_(
                        select(Thread.id).where(Thread.category_id.in_(category_ids))
                    ),
                    Report.post_id.in_(
                        select(Post.id)
                        .join(Thread, Post.thread_id == Thread.id)
                        .where(Thread.category_id.in_(category_ids))
                    ),
                )
            )

        total = await self.db.scalar(select(func.count(Report.id)).where(*conditions)) or 0
        result = await self.db.execute(
            select(Report)
            .where(*conditions)
            .order_by(Report.created_at.desc(), Report.id.desc())
            .limit(limit)
            .offset((page - 1) * limit)
        )

        return {
            "reports": list(result.scalars().all()),
            "pagination": {
                "page": page,
                "limit": limit,
                "total_count": total,
                "total_pages": math.ceil(total / limit) if total else 0,
            },
        }

    async def _check_scope(self, actor: User, report: Report) -> None:
        if actor.is_admin:
            return

        category_id = await self._category_of(report)
        if category_id is None:
            raise PermissionDeniedError("Only administrators can handle user reports")

        moderated = await RoleService(self.db).get_moderated_category_ids(actor.id)
        if category_id not in moderated:
            raise PermissionDeniedError(
                "You don't have permission to moderate this content"
            )

    async def offender_id(self, report: Report) -> int | None:
        if report.reported_id:
            return report.reported_id
        if report.thread_id:
            return await self.db.scalar(
                select(Thread.author_id).where(Thread.id == report.thread_id)
            )
        if report.post_id:
            return await self.db.scalar(
                select(Post.author_id).where(Post.id == report.post_id)
            )
        return None

    async def _content_link(self, report: Report) -> str | None:
        if report.thread_id:
            row = (
                await self.db.execute(
                    select(Category.slug, Thread.slug)
                    .join(Thread, Thread.category_id == Category.id)
                    .where(Thread.id == report.thread_id)
                )
            ).first()
            return f"/categories/{row[0]}/{row[1]}" if row else None
        if report.post_id:
            row = (
                await self.db.execute(
                    select(Category.slug, Thread.slug)
                    .join(Thread, Thread.category_id == Category.id)
                    .join(Post, Post.thread_id == Thread.id)
                    .where(Post.id == report.post_id)
                )
            ).first()
            return f"/categories/{row[0]}/{row[1]}#post-{report.post_id}" if row else None
        return None

    async def resolve_report(
        self,
        actor: User,
        report_id: int,
        action: str,
        admin_notes: str | None = None,
    ) -> Report:
        """
        Close a report with an action.

        Args:
            actor: Admin or category moderator
            report_id: Report to close
            action: dismiss, warn, moderate (hide content) or ban (admins only)
            admin_notes: Notes kept on the report
        """
        require_permission(actor, "can_view_reports")
        if action not in {a.value for a in ReportAction}:
            raise ValidationError(f"Invalid action: {action}")

        report = await self.db.get(Report, report_id)
        if not report:
            raise NotFoundError("Report")
        await self._check_scope(actor, report)

        offender_id = await self.offender_id(report)

        if action == ReportAction.WARN.value and offender_id:
            await self.notifications.create_notification(
                user_id=offender_id,
                type="warning",
                title="Moderator Warning",
                message=(
                    f"Your content was reported for {report.reason.replace('_', ' ')} "
                    "and reviewed by a moderator. Please follow the forum rules."
                ),
                link=await self._content_link(report),
                actor_id=actor.id,
                entity_id=report.id,
                entity_type="report",
            )
        elif action == ReportAction.MODERATE.value:
            if report.thread_id:
                thread = await self.db.get(Thread, report.thread_id)
                if thread:
                    thread.is_hidden = True
            elif report.post_id:
                post = await self.db.get(Post, report.post_id)
                if post:
                    post.is_hidden = True
            else:
                raise ValidationError("User reports cannot be moderated, ban instead")
        elif action == ReportAction.BAN.value:
            if not offender_id:
                raise NotFoundError("Reported user")
            await SecurityService(self.db).ban_user(
                actor, offender_id, f"Report #{report.id}: {report.reason}"
            )

        now = datetime.utcnow()
        report.status = (
            ReportStatus.DISMISSED.value
            if action == ReportAction.DISMISS.value
            else ReportStatus.RESOLVED.value
        )
        report.resolution = action
        report.admin_notes = admin_notes
        report.closed_by = actor.id
        report.resolved_at = now
        await self.db.flush()

        await self.notifications.create_notification(
            user_id=report.reporter_id,
            type="report_update",
            title="Report Update",
            message=f"Your report has been {report.status}",
            link=(
                await self._content_link(report)
                if report.status == ReportStatus.RESOLVED.value
                else None
            ),
            entity_id=report.id,
            entity_type="report",
        )

        logger.info(f"Report {report_id} closed by {actor.id} with action {action}")
        return report

    async def get_report_stats(self, actor: User) -> dict[str, int]:
        """Totals for the moderation dashboard."""
        require_permission(actor, "can_view_reports")

        now = datetime.utcnow()
        today_start = now.replace(hour=0, minute=0, second=0, microsecond=0)
        week_start = now - timedelta(days=7)

        async def count(*conditions: Any) -> int:
            return await self.db.scalar(select(func.count(Report.id)).where(*conditions)) or 0

        return {
            "total": await count(),
            "pending": await count(Report.status == ReportStatus.PENDING.value),
            "resolved_today": await count(
                Report.status == ReportStatus.RESOLVED.value,
                Report.resolved_at >= today_start,
            ),
            "total_this_week": await count(Report.created_at >= week_start),
        }
