"""Database models."""

from openforum.models.forum import (
    Category,
    CategoryModerator,
    CategorySubscription,
    Post,
    Reaction,
    ReactionType,
    Tag,
    Thread,
    ThreadSubscription,
    ThreadTag,
    Vote,
)
from openforum.models.moderation import Report, ReportAction, ReportStatus, ReportTarget
from openforum.models.notification import Notification
from openforum.models.user import User, UserRole, Verification
from openforum.models.webhook import Webhook

__all__ = [
    "Category",
    "CategoryModerator",
    "CategorySubscription",
    "Notification",
    "Post",
    "Reaction",
    "ReactionType",
    "Report",
    "ReportAction",
    "ReportStatus",
    "ReportTarget",
    "Tag",
    "Thread",
    "ThreadSubscription",
    "ThreadTag",
    "User",
    "UserRole",
    "Verification",
    "Vote",
    "Webhook",
]
