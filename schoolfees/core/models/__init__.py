from schoolfees.core.models.tenant import Tenant
from schoolfees.core.models.class_model import SchoolClass
from schoolfees.core.models.student import Student
from schoolfees.core.models.fee_structure import FeeStructure
from schoolfees.core.models.fee_challan import FeeChallan
from schoolfees.core.models.challan_sequence import ChallanSequence
from schoolfees.core.models.fee_payment import FeePayment
from schoolfees.core.models.reminder_history import ReminderHistory
from schoolfees.core.models.fee_audit_log import FeeAuditLog

__all__ = [
    "Tenant",
    "SchoolClass",
    "Student",
    "FeeStructure",
    "FeeChallan",
    "ChallanSequence",
    "FeePayment",
    "ReminderHistory",
    "FeeAuditLog",
]
