"""
IPO Application Workflow
Notification Dispatcher.

Stateless fan-out of workflow events into one Notification per recipient,
plus the recipient-side queries. Dispatch is advisory: it runs after the
triggering transition is committed, each recipient row is written in its
own savepoint, and a failed recipient becomes a DependencyFailure warning
instead of an exception.

Recipient resolution lives in the resolvers at the bottom of this module;
the state machine and feedback loop pick which resolver applies.
"""

import logging
from datetime import datetime, timezone

from sqlalchemy.exc import SQLAlchemyError

from ipo_workflow.core.exceptions import DependencyFailure, ForbiddenError, NotFoundError
from ipo_workflow.models import db
from ipo_workflow.models.directory import ISSUER_ROLES, REGULATOR_ROLES, Profile
from ipo_workflow.models.notification import Notification

logger = logging.getLogger(__name__)


class NotificationService:
    """Stateless service class for notification operations."""

    # ── Dispatch ──────────────────────────────────────────────────────────

    @staticmethod
    def dispatch(*, event_type, application_id, recipients, title, message="", priority="MEDIUM"):
        """
        Create one notification per distinct recipient and commit them.

        Args:
            event_type: Notification type tag (e.g. ``APPLICATION_SUBMITTED``).
            application_id: Application the event belongs to.
            recipients: Iterable of profile ids; duplicates are sent once.

        Returns:
            (notifications, warnings): the created rows and one warning dict
            per recipient that could not be written.
        """
        notifications, warnings = [], []
        seen = set()
        for recipient_id in recipients:
            if recipient_id in seen:
                continue
            seen.add(recipient_id)
            try:
                with db.session.begin_nested():
                    notif = Notification(
                        recipient_id=recipient_id,
                        application_id=application_id,
                        title=title,
                        message=message,
                        type=event_type,
                        priority=priority,
                    )
                    db.session.add(notif)
            except SQLAlchemyError as exc:
                failure = DependencyFailure(
                    "notification",
                    f"Could not notify recipient {recipient_id}",
                    details={"recipient_id": recipient_id, "type": event_type, "error": str(exc)},
                )
                logger.warning(
                    "%s", failure,
                    extra={"application_id": application_id, "recipient_id": recipient_id,
                           "dependency": "notification", "event_type": event_type},
                )
                warnings.append(failure.to_warning())
                continue
            notifications.append(notif)

        db.session.commit()
        logger.info(
            "Dispatched %d %s notification(s)", len(notifications), event_type,
            extra={"application_id": application_id, "event_type": event_type},
        )
        return notifications, warnings

    # ── Query ─────────────────────────────────────────────────────────────

    @staticmethod
    def list_for_recipient(recipient_id, unread_only=False, limit=50, offset=0):
        """
        Retrieve notifications for a recipient, newest first.
        """
        q = Notification.query.filter_by(recipient_id=recipient_id)
        if unread_only:
            q = q.filter_by(is_read=False)
        total = q.count()
        items = (
            q.order_by(Notification.created_at.desc(), Notification.id.desc())
            .offset(offset).limit(limit).all()
        )
        return items, total

    @staticmethod
    def unread_count(recipient_id):
        """Return count of unread notifications."""
        return Notification.query.filter_by(recipient_id=recipient_id, is_read=False).count()

    # ── Actions ───────────────────────────────────────────────────────────

    @staticmethod
    def mark_read(notification_id, actor):
        """Mark a single notification as read. Only its recipient may do so."""
        notif = db.session.get(Notification, notification_id)
        if notif is None:
            raise NotFoundError(resource="Notification", resource_id=notification_id)
        if notif.recipient_id != actor.id:
            raise ForbiddenError(actor.id, "mark_read")
        if not notif.is_read:
            notif.mark_read()
            db.session.commit()
        return notif

    @staticmethod
    def mark_all_read(actor):
        """Mark every unread notification of *actor* as read."""
        now = datetime.now(timezone.utc)
        count = (
            Notification.query
            .filter_by(recipient_id=actor.id, is_read=False)
            .update({"is_read": True, "read_at": now}, synchronize_session="fetch")
        )
        db.session.commit()
        return count


# ── Recipient resolution ─────────────────────────────────────────────────────

def regulator_ids():
    """Every CMA_REGULATOR and CMA_ADMIN profile."""
    rows = db.session.query(Profile.id).filter(Profile.role.in_(REGULATOR_ROLES)).order_by(Profile.id).all()
    return [row[0] for row in rows]


def issuer_team_ids(company_id, exclude=None):
    """Every issuer-role member of *company_id*, optionally minus *exclude*."""
    rows = (
        db.session.query(Profile.id)
        .filter(Profile.company_id == company_id, Profile.role.in_(ISSUER_ROLES))
        .order_by(Profile.id)
        .all()
    )
    return [row[0] for row in rows if row[0] != exclude]
