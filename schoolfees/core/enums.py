from enum import Enum


class ChallanStatus(str, Enum):
    pending = "pending"
    paid = "paid"
    overdue = "overdue"
    cancelled = "cancelled"


class ChallanType(str, Enum):
    monthly = "monthly"
    first_admission = "first_admission"
    regenerated = "regenerated"


class FeeSource(str, Enum):
    CUSTOM = "custom"
    CLASS = "class"
    STRUCTURE = "structure"


class StudentStatus(str, Enum):
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"


class ReminderType(str, Enum):
    sms = "sms"
    email = "email"
    both = "both"


class PaymentMethod(str, Enum):
    CASH = "CASH"
    BANK = "BANK"
    CARD = "CARD"
    UPI = "UPI"
    CHEQUE = "CHEQUE"
