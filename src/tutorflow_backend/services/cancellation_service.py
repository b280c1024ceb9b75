'''
Class cancellation: charge decision against the teacher's policy, optimistic
status transition, notifications and the cancellation invoice.
'''
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Annotated, Optional
from uuid import UUID
from fastapi import Depends, HTTPException, status
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from ..database.engine import get_db_session
from ..database import models as db_models
from ..database.db_enums import (
    UserRole,
    ClassStatusEnum,
    CancelledByTypeEnum,
    InvoiceStatusEnum,
    InvoiceTypeEnum,
    NotificationTypeEnum,
    NotificationStatusEnum
)
from ..models import cancellation as cancellation_models
from ..common.config import settings
from ..common.exceptions import PaymentProviderError
from ..common.logger import log
from .user_service import UserService
from .policy_service import CancellationPolicyService
from .payment_gateway import PaymentGateway, get_payment_gateway

MSG_CHARGED = "Class cancelled with charge applied"
MSG_NOT_CHARGED = "Class cancelled without charge"
MSG_NO_FINANCIAL_MODULE = "Class cancelled without charge - financial module unavailable"


class CancellationService:
    """
    Service for cancelling classes and waiving late-cancellation charges.
    """
    def __init__(
        self,
        db: Annotated[AsyncSession, Depends(get_db_session)],
        user_service: Annotated[UserService, Depends(UserService)],
        policy_service: Annotated[CancellationPolicyService, Depends(CancellationPolicyService)],
        payment_gateway: Annotated[PaymentGateway, Depends(get_payment_gateway)]
    ):
        self.db = db
        self.user_service = user_service
        self.policy_service = policy_service
        self.payment_gateway = payment_gateway

    # --- 1. Internal Fetchers & Helpers ---

    async def _get_class_with_participants(self, class_id: UUID) -> db_models.Classes:
        stmt = select(db_models.Classes).options(
            selectinload(db_models.Classes.participants),
            selectinload(db_models.Classes.service)
        ).filter(db_models.Classes.id == class_id)
        class_orm = (await self.db.execute(stmt)).scalars().first()
        if not class_orm:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Class not found.")
        return class_orm

    @staticmethod
    def _affected_student_ids(class_orm: db_models.Classes) -> list[UUID]:
        if class_orm.is_group_class and class_orm.participants:
            return [p.student_id for p in class_orm.participants]
        return [class_orm.student_id] if class_orm.student_id else []

    def _authorize_cancellation(self, class_orm: db_models.Classes, user: db_models.Profiles):
        if user.role == UserRole.TEACHER.value and class_orm.teacher_id == user.id:
            return
        if user.role == UserRole.STUDENT.value and user.id in self._affected_student_ids(class_orm):
            return
        log.warning(f"SECURITY: User {user.id} (Role: {user.role}) tried to cancel class {class_orm.id} without permission.")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="You do not have permission to cancel this class."
        )

    @staticmethod
    def should_charge(
        cancelled_by_type: CancelledByTypeEnum,
        hours_until_class: float,
        hours_before_class: int,
        charge_percentage: Decimal
    ) -> bool:
        """
        Only a student cancelling inside the policy window is charged, and
        only when the policy charges anything at all.
        """
        if cancelled_by_type != CancelledByTypeEnum.STUDENT:
            return False
        return hours_until_class < hours_before_class and charge_percentage > 0

    # --- 2. Cancellation ---

    async def evaluate_cancellation(
        self,
        class_id: UUID,
        cancelled_by: db_models.Profiles,
        reason: str,
        cancelled_by_type: CancelledByTypeEnum,
        now: Optional[datetime] = None
    ) -> cancellation_models.CancellationOutcome:
        """
        Cancels a class on behalf of `cancelled_by` and decides whether the
        late-cancellation charge applies.

        The status change is conditional on the status read at the start, so
        of two concurrent cancellations only one can succeed.
        """
        now = now or datetime.now(timezone.utc)
        log.info(f"User {cancelled_by.id} ({cancelled_by_type.value}) cancelling class {class_id}.")
        try:
            class_orm = await self._get_class_with_participants(class_id)

            if class_orm.status == ClassStatusEnum.CANCELLED.value:
                raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Class is already cancelled.")
            if class_orm.status == ClassStatusEnum.COMPLETED.value and class_orm.class_date < now:
                raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Cannot cancel a class that has already been completed.")
            self._authorize_cancellation(class_orm, cancelled_by)

            policy = await self.policy_service.get_effective_policy(class_orm.teacher_id)
            hours_until_class = (class_orm.class_date - now).total_seconds() / 3600
            charge = self.should_charge(
                cancelled_by_type,
                hours_until_class,
                policy.hours_before_class,
                policy.charge_percentage
            )
            log.info(
                f"Processing cancellation: class={class_id} by={cancelled_by_type.value} "
                f"hours_until_class={hours_until_class:.2f} threshold={policy.hours_before_class} "
                f"percentage={policy.charge_percentage} charge={charge}"
            )

            original_status = class_orm.status
            result = await self.db.execute(
                update(db_models.Classes)
                .where(
                    db_models.Classes.id == class_id,
                    db_models.Classes.status == original_status
                )
                .values(
                    status=ClassStatusEnum.CANCELLED.value,
                    cancellation_reason=reason,
                    cancelled_at=now,
                    cancelled_by=cancelled_by.id,
                    charge_applied=charge
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                log.warning(f"Class {class_id} changed status concurrently; cancellation rejected.")
                raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Class is already being cancelled.")
            await self.db.refresh(
                class_orm,
                attribute_names=['status', 'cancellation_reason', 'cancelled_at', 'cancelled_by', 'charge_applied']
            )

            student_ids = self._affected_student_ids(class_orm)
            if class_orm.is_group_class:
                for participant in class_orm.participants:
                    participant.status = ClassStatusEnum.CANCELLED.value

            notifications = [
                db_models.ClassNotifications(
                    class_id=class_orm.id,
                    student_id=student_id,
                    teacher_id=class_orm.teacher_id,
                    notification_type=NotificationTypeEnum.CLASS_CANCELLED.value,
                    status=NotificationStatusEnum.PENDING.value
                )
                for student_id in student_ids
            ]
            self.db.add_all(notifications)
            await self.db.flush()

            outcome = cancellation_models.CancellationOutcome(
                charged=charge,
                message=MSG_CHARGED if charge else MSG_NOT_CHARGED,
                notification_ids=[n.id for n in notifications]
            )

            teacher = await self.user_service.get_user_by_id(class_orm.teacher_id)
            if charge:
                if not teacher.has_financial_module:
                    log.info(f"Teacher {teacher.id} has no financial module, dropping the charge on class {class_id}.")
                    class_orm.charge_applied = False
                    outcome.charged = False
                    outcome.message = MSG_NO_FINANCIAL_MODULE
                else:
                    invoice = await self._create_cancellation_invoice(class_orm, cancelled_by.id, policy, teacher, now)
                    outcome.invoice_id = invoice.id

            await self.db.flush()
            outcome.emails = await self._build_notification_emails(class_orm, teacher, cancelled_by_type, student_ids, reason)
            log.info(f"Class {class_id} cancelled (charged={outcome.charged}).")
            return outcome

        except HTTPException:
            raise
        except Exception as e:
            log.error(f"Error processing cancellation of class {class_id}: {e}", exc_info=True)
            raise

    async def _create_cancellation_invoice(
        self,
        class_orm: db_models.Classes,
        student_id: UUID,
        policy: cancellation_models.CancellationPolicyRead,
        teacher: db_models.Profiles,
        now: datetime
    ) -> db_models.Invoices:
        base_amount = Decimal(settings.DEFAULT_CLASS_PRICE)
        if class_orm.service and class_orm.service.price:
            base_amount = Decimal(class_orm.service.price)
        charge_amount = (base_amount * Decimal(policy.charge_percentage) / 100).quantize(Decimal('0.01'))

        invoice = db_models.Invoices(
            teacher_id=class_orm.teacher_id,
            student_id=student_id,
            class_id=class_orm.id,
            amount=charge_amount,
            original_amount=base_amount,
            description=f"Late cancellation - {teacher.name} - {class_orm.class_date.date().isoformat()}",
            due_date=(now + timedelta(days=settings.CANCELLATION_INVOICE_DUE_DAYS)).date(),
            status=InvoiceStatusEnum.PENDING.value,
            invoice_type=InvoiceTypeEnum.CANCELLATION.value,
            cancellation_policy_id=policy.id
        )
        self.db.add(invoice)
        class_orm.billed = True
        await self.db.flush()
        log.info(f"Cancellation invoice {invoice.id} created for {charge_amount} (base {base_amount}).")

        try:
            invoice.payment_intent_id = await self.payment_gateway.create_payment_intent(
                charge_amount,
                invoice.description,
                {'invoice_id': invoice.id, 'class_id': class_orm.id}
            )
        except PaymentProviderError as e:
            log.error(f"Payment intent for cancellation invoice {invoice.id} not created: {e}")
        return invoice

    async def _build_notification_emails(
        self,
        class_orm: db_models.Classes,
        teacher: db_models.Profiles,
        cancelled_by_type: CancelledByTypeEnum,
        student_ids: list[UUID],
        reason: str
    ) -> list[cancellation_models.EmailMessage]:
        """
        A student cancelling notifies the teacher; a teacher cancelling
        notifies every affected student.
        """
        when = class_orm.class_date.strftime('%Y-%m-%d %H:%M UTC')
        if cancelled_by_type == CancelledByTypeEnum.STUDENT:
            recipients = [teacher]
        else:
            recipients = await self.user_service.get_users_by_ids(student_ids)

        return [
            cancellation_models.EmailMessage(
                to=recipient.email,
                subject=f"Class on {when} cancelled",
                html=(
                    f"<p>Hello {recipient.name},</p>"
                    f"<p>The class scheduled for <strong>{when}</strong> was cancelled.</p>"
                    f"<p>Reason: {reason}</p>"
                )
            )
            for recipient in recipients
        ]

    # --- 3. Amnesty ---

    async def grant_amnesty(self, class_id: UUID, current_user: db_models.Profiles, now: Optional[datetime] = None) -> str:
        """
        Waives the late-cancellation charge of a class. Only the owning
        teacher can do it, and only if their policy allows amnesty.
        """
        now = now or datetime.now(timezone.utc)
        log.info(f"User {current_user.id} granting amnesty for class {class_id}.")
        try:
            class_orm = await self._get_class_with_participants(class_id)
            if not (current_user.role == UserRole.TEACHER.value and class_orm.teacher_id == current_user.id):
                log.warning(f"SECURITY: User {current_user.id} tried to grant amnesty on class {class_id} owned by {class_orm.teacher_id}.")
                raise HTTPException(
                    status_code=status.HTTP_403_FORBIDDEN,
                    detail="You do not have permission to modify this class."
                )
            if class_orm.status != ClassStatusEnum.CANCELLED.value or not class_orm.charge_applied:
                raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Class has no cancellation charge to waive.")

            policy = await self.policy_service.get_effective_policy(class_orm.teacher_id)
            if not policy.allow_amnesty:
                raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Amnesty is disabled by your cancellation policy.")

            class_orm.charge_applied = False
            class_orm.amnesty_granted = True
            class_orm.amnesty_granted_by = current_user.id
            class_orm.amnesty_granted_at = now

            stmt = select(db_models.Invoices).filter(
                db_models.Invoices.class_id == class_id,
                db_models.Invoices.invoice_type == InvoiceTypeEnum.CANCELLATION.value,
                db_models.Invoices.status == InvoiceStatusEnum.PENDING.value
            )
            invoices = list((await self.db.execute(stmt)).scalars().all())
            for invoice in invoices:
                invoice.status = InvoiceStatusEnum.CANCELLED.value
                if invoice.payment_intent_id:
                    try:
                        await self.payment_gateway.cancel_payment_intent(invoice.payment_intent_id)
                    except PaymentProviderError as e:
                        log.error(f"Payment intent {invoice.payment_intent_id} of invoice {invoice.id} not cancelled: {e}")
            await self.db.flush()

            log.info(f"Amnesty granted for class {class_id}; {len(invoices)} invoice(s) cancelled.")
            return "Amnesty granted, the cancellation charge was waived."

        except HTTPException:
            raise
        except Exception as e:
            log.error(f"Error granting amnesty for class {class_id}: {e}", exc_info=True)
            raise
