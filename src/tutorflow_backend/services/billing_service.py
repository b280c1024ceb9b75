'''

'''
from collections import defaultdict
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Annotated, Optional
from uuid import UUID
from fastapi import Depends
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from ..database.engine import get_db_session
from ..database import models as db_models
from ..database.db_enums import ClassStatusEnum, InvoiceStatusEnum, InvoiceTypeEnum
from ..models.billing import OrphanChargesSummary
from ..common.config import settings
from ..common.logger import log
from .policy_service import CancellationPolicyService


class BillingService:
    """
    Periodic billing jobs. Nothing here is exposed through the API; the jobs
    run from the scripts/ directory on a timer.
    """
    def __init__(
        self,
        db: Annotated[AsyncSession, Depends(get_db_session)],
        policy_service: Annotated[CancellationPolicyService, Depends(CancellationPolicyService)]
    ):
        self.db = db
        self.policy_service = policy_service

    async def _get_orphan_charged_classes(self, cutoff: datetime) -> list[db_models.Classes]:
        stmt = select(db_models.Classes).options(
            selectinload(db_models.Classes.service),
            selectinload(db_models.Classes.teacher)
        ).filter(
            db_models.Classes.status == ClassStatusEnum.CANCELLED.value,
            db_models.Classes.charge_applied.is_(True),
            db_models.Classes.billed.is_(False),
            db_models.Classes.cancelled_at < cutoff
        ).order_by(db_models.Classes.cancelled_at)
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def _charge_percentage_for(self, teacher_id: UUID, cache: dict) -> Decimal:
        if teacher_id not in cache:
            policy = await self.policy_service.get_active_policy_orm(teacher_id)
            if policy is not None and policy.charge_percentage:
                cache[teacher_id] = Decimal(policy.charge_percentage)
            else:
                cache[teacher_id] = Decimal(settings.ORPHAN_CHARGE_PERCENTAGE)
        return cache[teacher_id]

    async def process_orphan_cancellation_charges(self, now: Optional[datetime] = None) -> OrphanChargesSummary:
        """
        Bills late-cancellation charges that never made it into an invoice.

        Classes cancelled with a charge more than ORPHAN_CHARGE_CUTOFF_DAYS ago
        and still unbilled are grouped per teacher/student pair; each pair
        gets one `orphan_charges` invoice. Charges of teachers without the
        financial module are dropped instead.
        """
        now = now or datetime.now(timezone.utc)
        cutoff = now - timedelta(days=settings.ORPHAN_CHARGE_CUTOFF_DAYS)
        log.info(f"Processing orphan cancellation charges older than {cutoff.isoformat()}.")

        summary = OrphanChargesSummary()
        try:
            classes = await self._get_orphan_charged_classes(cutoff)
            if not classes:
                summary.message = "No orphan cancellation charges found."
                log.info(summary.message)
                return summary
            log.info(f"Found {len(classes)} orphan cancellation charges.")

            groups: dict[tuple[UUID, UUID], list[db_models.Classes]] = defaultdict(list)
            for class_orm in classes:
                if not class_orm.teacher.has_financial_module:
                    log.info(f"Dropping charge of class {class_orm.id}: teacher has no financial module.")
                    class_orm.charge_applied = False
                    class_orm.billed = True
                    summary.dropped += 1
                    continue
                # The charged student is whoever cancelled.
                student_id = class_orm.cancelled_by or class_orm.student_id
                groups[(class_orm.teacher_id, student_id)].append(class_orm)

            percentages: dict[UUID, Decimal] = {}
            for (teacher_id, student_id), group in groups.items():
                percentage = await self._charge_percentage_for(teacher_id, percentages)
                total = Decimal('0')
                for class_orm in group:
                    base_amount = Decimal(settings.DEFAULT_CLASS_PRICE)
                    if class_orm.service and class_orm.service.price:
                        base_amount = Decimal(class_orm.service.price)
                    total += base_amount * percentage / 100
                total = total.quantize(Decimal('0.01'))

                teacher = group[0].teacher
                due_days = teacher.payment_due_days or settings.DEFAULT_PAYMENT_DUE_DAYS
                invoice = db_models.Invoices(
                    teacher_id=teacher_id,
                    student_id=student_id,
                    amount=total,
                    description=f"Pending cancellation charges - {len(group)} cancellation(s)",
                    due_date=(now + timedelta(days=due_days)).date(),
                    status=InvoiceStatusEnum.PENDING.value,
                    invoice_type=InvoiceTypeEnum.ORPHAN_CHARGES.value
                )
                self.db.add(invoice)
                for class_orm in group:
                    class_orm.billed = True
                await self.db.flush()

                log.info(f"Orphan charges invoice {invoice.id} created: {total} for {len(group)} classes ({teacher_id} -> {student_id}).")
                summary.invoice_ids.append(invoice.id)
                summary.processed += 1

            await self.db.flush()
            summary.message = f"Orphan charges processing completed. Processed: {summary.processed}, Dropped: {summary.dropped}"
            log.info(summary.message)
            return summary

        except Exception as e:
            log.error(f"Error processing orphan cancellation charges: {e}", exc_info=True)
            raise
