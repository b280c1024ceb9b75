from typing import Optional

from sqlalchemy import Boolean, Date, Enum, ForeignKeyConstraint, Index, Integer, JSON, Numeric, PrimaryKeyConstraint, String, Text, UniqueConstraint, Uuid
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship
import datetime
import decimal
import uuid

from .db_enums import (
    UserRole,
    ClassStatusEnum,
    ExceptionStatusEnum,
    InvoiceStatusEnum,
    InvoiceTypeEnum,
    NotificationTypeEnum,
    NotificationStatusEnum
)
from .utils import UTCDateTime

class Base(DeclarativeBase):
    pass


JSONVariant = JSON(none_as_null=True).with_variant(JSONB(none_as_null=True), 'postgresql')

def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


class Profiles(Base):
    __tablename__ = 'profiles'
    __table_args__ = (
        PrimaryKeyConstraint('id', name='profiles_pkey'),
        UniqueConstraint('email', name='profiles_email_key')
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    email: Mapped[str] = mapped_column(String(255))
    password: Mapped[str] = mapped_column(String(255))
    name: Mapped[str] = mapped_column(Text)
    role: Mapped[str] = mapped_column(Enum(*UserRole.get_all_names(), name='user_role'))
    timezone: Mapped[str] = mapped_column(Text, default='America/Sao_Paulo')
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    has_financial_module: Mapped[bool] = mapped_column(Boolean, default=False)
    payment_due_days: Mapped[Optional[int]] = mapped_column(Integer)


class TeacherStudentRelationships(Base):
    __tablename__ = 'teacher_student_relationships'
    __table_args__ = (
        ForeignKeyConstraint(['teacher_id'], ['profiles.id'], ondelete='CASCADE', name='tsr_teacher_id_fkey'),
        ForeignKeyConstraint(['student_id'], ['profiles.id'], ondelete='CASCADE', name='tsr_student_id_fkey'),
        PrimaryKeyConstraint('id', name='teacher_student_relationships_pkey'),
        UniqueConstraint('teacher_id', 'student_id', name='tsr_teacher_student_key')
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    teacher_id: Mapped[uuid.UUID] = mapped_column(Uuid)
    student_id: Mapped[uuid.UUID] = mapped_column(Uuid)
    billing_day: Mapped[Optional[int]] = mapped_column(Integer)


class ClassServices(Base):
    __tablename__ = 'class_services'
    __table_args__ = (
        ForeignKeyConstraint(['teacher_id'], ['profiles.id'], ondelete='CASCADE', name='class_services_teacher_id_fkey'),
        PrimaryKeyConstraint('id', name='class_services_pkey')
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    teacher_id: Mapped[uuid.UUID] = mapped_column(Uuid)
    name: Mapped[str] = mapped_column(Text)
    price: Mapped[decimal.Decimal] = mapped_column(Numeric(10, 2))
    duration_minutes: Mapped[int] = mapped_column(Integer, default=60)


class Classes(Base):
    """
    A concrete class. A row carrying a `recurrence_pattern` is the template
    (first occurrence) of a recurring series; generated occurrences point
    back at it through `series_id`.
    """
    __tablename__ = 'classes'
    __table_args__ = (
        ForeignKeyConstraint(['teacher_id'], ['profiles.id'], ondelete='CASCADE', name='classes_teacher_id_fkey'),
        ForeignKeyConstraint(['student_id'], ['profiles.id'], ondelete='SET NULL', name='classes_student_id_fkey'),
        ForeignKeyConstraint(['service_id'], ['class_services.id'], ondelete='SET NULL', name='classes_service_id_fkey'),
        ForeignKeyConstraint(['series_id'], ['classes.id'], ondelete='CASCADE', name='classes_series_id_fkey'),
        PrimaryKeyConstraint('id', name='classes_pkey'),
        UniqueConstraint('series_id', 'class_date', name='classes_series_id_class_date_key'),
        Index('idx_classes_teacher_date', 'teacher_id', 'class_date')
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    teacher_id: Mapped[uuid.UUID] = mapped_column(Uuid)
    class_date: Mapped[datetime.datetime] = mapped_column(UTCDateTime)
    duration_minutes: Mapped[int] = mapped_column(Integer, default=60)
    status: Mapped[str] = mapped_column(Enum(*ClassStatusEnum.get_all_names(), name='class_status'), default=ClassStatusEnum.PENDING.value)
    student_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid)
    service_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid)
    series_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid)
    is_experimental: Mapped[bool] = mapped_column(Boolean, default=False)
    is_group_class: Mapped[bool] = mapped_column(Boolean, default=False)
    notes: Mapped[Optional[str]] = mapped_column(Text)
    recurrence_pattern: Mapped[Optional[dict]] = mapped_column(JSONVariant)
    recurrence_end_date: Mapped[Optional[datetime.datetime]] = mapped_column(UTCDateTime)

    # Cancellation
    cancellation_reason: Mapped[Optional[str]] = mapped_column(Text)
    cancelled_at: Mapped[Optional[datetime.datetime]] = mapped_column(UTCDateTime)
    cancelled_by: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid)
    charge_applied: Mapped[bool] = mapped_column(Boolean, default=False)
    billed: Mapped[bool] = mapped_column(Boolean, default=False)

    # Amnesty
    amnesty_granted: Mapped[bool] = mapped_column(Boolean, default=False)
    amnesty_granted_by: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid)
    amnesty_granted_at: Mapped[Optional[datetime.datetime]] = mapped_column(UTCDateTime)

    teacher: Mapped['Profiles'] = relationship('Profiles', foreign_keys='[Classes.teacher_id]')
    student: Mapped[Optional['Profiles']] = relationship('Profiles', foreign_keys='[Classes.student_id]')
    service: Mapped[Optional['ClassServices']] = relationship('ClassServices')
    series: Mapped[Optional['Classes']] = relationship('Classes', remote_side='Classes.id')
    participants: Mapped[list['ClassParticipants']] = relationship(
        'ClassParticipants',
        back_populates='class_',
        cascade='all, delete-orphan'
    )


class ClassParticipants(Base):
    __tablename__ = 'class_participants'
    __table_args__ = (
        ForeignKeyConstraint(['class_id'], ['classes.id'], ondelete='CASCADE', name='class_participants_class_id_fkey'),
        ForeignKeyConstraint(['student_id'], ['profiles.id'], ondelete='CASCADE', name='class_participants_student_id_fkey'),
        PrimaryKeyConstraint('id', name='class_participants_pkey'),
        UniqueConstraint('class_id', 'student_id', name='class_participants_class_student_key')
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    class_id: Mapped[uuid.UUID] = mapped_column(Uuid)
    student_id: Mapped[uuid.UUID] = mapped_column(Uuid)
    status: Mapped[str] = mapped_column(Enum(*ClassStatusEnum.get_all_names(), name='class_status'), default=ClassStatusEnum.PENDING.value)

    class_: Mapped['Classes'] = relationship('Classes', back_populates='participants')
    student: Mapped['Profiles'] = relationship('Profiles')


class ClassExceptions(Base):
    __tablename__ = 'class_exceptions'
    __table_args__ = (
        ForeignKeyConstraint(['original_class_id'], ['classes.id'], ondelete='CASCADE', name='class_exceptions_original_class_id_fkey'),
        PrimaryKeyConstraint('id', name='class_exceptions_pkey'),
        UniqueConstraint('original_class_id', 'exception_date', name='class_exceptions_original_class_id_exception_date_key')
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    original_class_id: Mapped[uuid.UUID] = mapped_column(Uuid)
    exception_date: Mapped[datetime.datetime] = mapped_column(UTCDateTime)
    status: Mapped[str] = mapped_column(Enum(*ExceptionStatusEnum.get_all_names(), name='class_exception_status'))
    new_start_time: Mapped[Optional[datetime.datetime]] = mapped_column(UTCDateTime)
    new_end_time: Mapped[Optional[datetime.datetime]] = mapped_column(UTCDateTime)
    new_title: Mapped[Optional[str]] = mapped_column(Text)
    new_description: Mapped[Optional[str]] = mapped_column(Text)
    new_duration_minutes: Mapped[Optional[int]] = mapped_column(Integer)
    created_at: Mapped[datetime.datetime] = mapped_column(UTCDateTime, default=_utcnow)


class CancellationPolicies(Base):
    __tablename__ = 'cancellation_policies'
    __table_args__ = (
        ForeignKeyConstraint(['teacher_id'], ['profiles.id'], ondelete='CASCADE', name='cancellation_policies_teacher_id_fkey'),
        PrimaryKeyConstraint('id', name='cancellation_policies_pkey')
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    teacher_id: Mapped[uuid.UUID] = mapped_column(Uuid)
    hours_before_class: Mapped[int] = mapped_column(Integer, default=24)
    charge_percentage: Mapped[decimal.Decimal] = mapped_column(Numeric(5, 2), default=decimal.Decimal('0'))
    allow_amnesty: Mapped[bool] = mapped_column(Boolean, default=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    updated_at: Mapped[datetime.datetime] = mapped_column(UTCDateTime, default=_utcnow, onupdate=_utcnow)


class Invoices(Base):
    __tablename__ = 'invoices'
    __table_args__ = (
        ForeignKeyConstraint(['teacher_id'], ['profiles.id'], ondelete='CASCADE', name='invoices_teacher_id_fkey'),
        ForeignKeyConstraint(['student_id'], ['profiles.id'], ondelete='CASCADE', name='invoices_student_id_fkey'),
        ForeignKeyConstraint(['class_id'], ['classes.id'], ondelete='SET NULL', name='invoices_class_id_fkey'),
        ForeignKeyConstraint(['cancellation_policy_id'], ['cancellation_policies.id'], ondelete='SET NULL', name='invoices_cancellation_policy_id_fkey'),
        PrimaryKeyConstraint('id', name='invoices_pkey')
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    teacher_id: Mapped[uuid.UUID] = mapped_column(Uuid)
    student_id: Mapped[uuid.UUID] = mapped_column(Uuid)
    amount: Mapped[decimal.Decimal] = mapped_column(Numeric(10, 2))
    due_date: Mapped[datetime.date] = mapped_column(Date)
    status: Mapped[str] = mapped_column(Enum(*InvoiceStatusEnum.get_all_names(), name='invoice_status'), default=InvoiceStatusEnum.PENDING.value)
    invoice_type: Mapped[str] = mapped_column(Enum(*InvoiceTypeEnum.get_all_names(), name='invoice_type'), default=InvoiceTypeEnum.REGULAR.value)
    class_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid)
    original_amount: Mapped[Optional[decimal.Decimal]] = mapped_column(Numeric(10, 2))
    description: Mapped[Optional[str]] = mapped_column(Text)
    cancellation_policy_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid)
    payment_intent_id: Mapped[Optional[str]] = mapped_column(Text)
    created_at: Mapped[datetime.datetime] = mapped_column(UTCDateTime, default=_utcnow)


class ClassNotifications(Base):
    __tablename__ = 'class_notifications'
    __table_args__ = (
        ForeignKeyConstraint(['class_id'], ['classes.id'], ondelete='CASCADE', name='class_notifications_class_id_fkey'),
        ForeignKeyConstraint(['student_id'], ['profiles.id'], ondelete='CASCADE', name='class_notifications_student_id_fkey'),
        PrimaryKeyConstraint('id', name='class_notifications_pkey')
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    class_id: Mapped[uuid.UUID] = mapped_column(Uuid)
    student_id: Mapped[uuid.UUID] = mapped_column(Uuid)
    teacher_id: Mapped[uuid.UUID] = mapped_column(Uuid)
    notification_type: Mapped[str] = mapped_column(Enum(*NotificationTypeEnum.get_all_names(), name='notification_type'))
    status: Mapped[str] = mapped_column(Enum(*NotificationStatusEnum.get_all_names(), name='notification_status'), default=NotificationStatusEnum.PENDING.value)
    created_at: Mapped[datetime.datetime] = mapped_column(UTCDateTime, default=_utcnow)
