"""Notification service — CRUD operations and benefit lifecycle notifiers."""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from backend.common.constants import NotificationType
from backend.common.exceptions import ForbiddenException, NotFoundException
from backend.common.pagination import PaginationParams, build_meta
from backend.notifications.models import Notification
from backend.notifications.schemas import (
    NotificationListMeta,
    NotificationListResponse,
    NotificationResponse,
)

logger = logging.getLogger(__name__)


# ── Core service ────────────────────────────────────────────────────


class NotificationService:
    """Async notification operations."""

    @staticmethod
    async def create_notification(
        db: AsyncSession,
        *,
        recipient_id: uuid.UUID,
        type: NotificationType = NotificationType.info,
        title: str,
        message: str,
        action_url: Optional[str] = None,
        entity_type: Optional[str] = None,
        entity_id: Optional[uuid.UUID] = None,
    ) -> Notification:
        """Create a new notification and flush to DB."""
        notification = Notification(
            id=uuid.uuid4(),
            recipient_id=recipient_id,
            type=type,
            title=title,
            message=message,
            action_url=action_url,
            entity_type=entity_type,
            entity_id=entity_id,
            is_read=False,
        )
        db.add(notification)
        await db.flush()
        return notification

    @staticmethod
    async def get_notifications(
        db: AsyncSession,
        employee_id: uuid.UUID,
        pagination: PaginationParams,
        *,
        is_read: Optional[bool] = None,
        entity_type: Optional[str] = None,
    ) -> NotificationListResponse:
        """Return paginated notifications for an employee, newest first."""
        query = (
            select(Notification)
            .where(Notification.recipient_id == employee_id)
            .order_by(Notification.created_at.desc())
        )

        if is_read is not None:
            query = query.where(Notification.is_read == is_read)
        if entity_type is not None:
            query = query.where(Notification.entity_type == entity_type)

        count_q = query.with_only_columns(func.count()).order_by(None)
        total: int = (await db.execute(count_q)).scalar_one()

        rows = (
            await db.execute(
                query.offset(pagination.offset).limit(pagination.page_size)
            )
        ).scalars().all()

        # Unread count is always unfiltered (header badge)
        unread = await NotificationService.get_unread_count(db, employee_id)

        return NotificationListResponse(
            data=[NotificationResponse.model_validate(n) for n in rows],
            meta=NotificationListMeta(
                **build_meta(pagination, total).model_dump(),
                unread=unread,
            ),
        )

    @staticmethod
    async def mark_read(
        db: AsyncSession,
        notification_id: uuid.UUID,
        employee_id: uuid.UUID,
    ) -> Notification:
        """Mark a single notification as read. Verifies ownership."""
        notification = await db.get(Notification, notification_id)
        if notification is None:
            raise NotFoundException("Notification", notification_id)

        if notification.recipient_id != employee_id:
            raise ForbiddenException("You can only mark your own notifications as read.")

        notification.is_read = True
        notification.read_at = datetime.now(timezone.utc)
        await db.flush()
        return notification

    @staticmethod
    async def mark_all_read(db: AsyncSession, employee_id: uuid.UUID) -> int:
        """Bulk-mark all unread notifications as read. Returns count updated."""
        result = await db.execute(
            update(Notification)
            .where(
                Notification.recipient_id == employee_id,
                Notification.is_read.is_(False),
            )
            .values(is_read=True, read_at=datetime.now(timezone.utc))
        )
        await db.flush()
        return result.rowcount  # type: ignore[return-value]

    @staticmethod
    async def get_unread_count(db: AsyncSession, employee_id: uuid.UUID) -> int:
        result = await db.execute(
            select(func.count())
            .select_from(Notification)
            .where(
                Notification.recipient_id == employee_id,
                Notification.is_read.is_(False),
            )
        )
        return result.scalar_one()


# ── Benefit lifecycle notifiers ─────────────────────────────────────
# Called by the benefits service; they take the ORM record directly.

_ENTITY_TYPE = "benefit_period"


def _money(value) -> str:
    return f"R$ {value:,.2f}"


async def _notify_employee(
    db: AsyncSession,
    record,  # backend.benefits.models.BenefitPeriod
    *,
    type: NotificationType,
    title: str,
    message: str,
) -> Notification:
    return await NotificationService.create_notification(
        db,
        recipient_id=record.employee_id,
        type=type,
        title=title,
        message=message,
        action_url=f"/benefits/{record.id}",
        entity_type=_ENTITY_TYPE,
        entity_id=record.id,
    )


async def notify_benefit_calculated(db: AsyncSession, record) -> Notification:
    """Tell the employee their month's benefits were calculated."""
    return await _notify_employee(
        db,
        record,
        type=NotificationType.info,
        title="Benefits Calculated",
        message=(
            f"Your benefits for {record.month} were calculated: "
            f"{_money(record.total_benefit_amount)} pending approval."
        ),
    )


async def notify_benefit_approved(db: AsyncSession, record) -> Notification:
    """Tell the employee their monthly benefits were approved."""
    return await _notify_employee(
        db,
        record,
        type=NotificationType.approval,
        title="Benefits Approved",
        message=(
            f"Your benefits for {record.month} were approved: "
            f"{_money(record.total_benefit_amount)}."
        ),
    )


async def notify_benefit_submitted(db: AsyncSession, record) -> Notification:
    """Tell the employee their benefits were sent to the card provider."""
    return await _notify_employee(
        db,
        record,
        type=NotificationType.info,
        title="Benefits Sent for Payment",
        message=(
            f"Your {record.month} benefits were sent for disbursement "
            f"(reference {record.provider_reference})."
        ),
    )


async def notify_benefit_paid(db: AsyncSession, record) -> Notification:
    """Tell the employee the disbursement was credited."""
    return await _notify_employee(
        db,
        record,
        type=NotificationType.info,
        title="Benefits Paid",
        message=(
            f"Your {record.month} benefits of {_money(record.total_benefit_amount)} "
            f"have been credited."
        ),
    )


async def notify_benefit_cancelled(db: AsyncSession, record) -> Notification:
    return await _notify_employee(
        db,
        record,
        type=NotificationType.alert,
        title="Benefits Cancelled",
        message=f"Your benefit record for {record.month} was cancelled by HR.",
    )


async def notify_disbursement_failed(
    db: AsyncSession,
    recipient_id: uuid.UUID,
    reference: str,
    detail: str,
) -> Notification:
    """Alert the HR user who submitted a batch that the provider rejected it."""
    logger.warning("Disbursement batch %s failed: %s", reference, detail)
    return await NotificationService.create_notification(
        db,
        recipient_id=recipient_id,
        type=NotificationType.action_required,
        title="Disbursement Failed",
        message=(
            f"Batch {reference} was not accepted by the card provider: {detail} "
            f"The records can be cancelled and recreated, or submitted again later."
        ),
        action_url=f"/benefits/batches/{reference}",
        entity_type="disbursement_batch",
    )
