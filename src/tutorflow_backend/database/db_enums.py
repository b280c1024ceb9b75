'''
Static enums mirroring the values stored in the database columns.
'''
import enum

# --- Base Enum Class ---
class ListableEnum(str, enum.Enum):
    """A custom Enum base class that can list all member names."""
    @classmethod
    def get_all_names(cls) -> list[str]:
        return [member.value for member in cls]


class UserRole(ListableEnum):
    TEACHER = 'teacher'
    STUDENT = 'student'


class ClassStatusEnum(ListableEnum):
    PENDING = 'pendente'
    CONFIRMED = 'confirmada'
    CANCELLED = 'cancelada'
    COMPLETED = 'concluida'


class RecurrenceFrequencyEnum(ListableEnum):
    WEEKLY = 'weekly'
    BIWEEKLY = 'biweekly'
    MONTHLY = 'monthly'


class ExceptionStatusEnum(ListableEnum):
    CANCELED = 'canceled'
    RESCHEDULED = 'rescheduled'


class ExceptionActionEnum(ListableEnum):
    CANCEL = 'cancel'
    RESCHEDULE = 'reschedule'


class OccurrenceStatusEnum(ListableEnum):
    SCHEDULED = 'scheduled'
    CANCELED = 'canceled'
    RESCHEDULED = 'rescheduled'


class CancelledByTypeEnum(ListableEnum):
    STUDENT = 'student'
    TEACHER = 'teacher'


class InvoiceStatusEnum(ListableEnum):
    PENDING = 'pendente'
    PAID = 'paga'
    OVERDUE = 'vencida'
    CANCELLED = 'cancelada'


class InvoiceTypeEnum(ListableEnum):
    REGULAR = 'regular'
    CANCELLATION = 'cancellation'
    ORPHAN_CHARGES = 'orphan_charges'


class NotificationTypeEnum(ListableEnum):
    CLASS_CANCELLED = 'class_cancelled'


class NotificationStatusEnum(ListableEnum):
    PENDING = 'pending'
    SENT = 'sent'
    FAILED = 'failed'
