# Import all models so Base.metadata is populated for create_all.
from tally.models.user import User  # noqa: F401
from tally.models.session import Session  # noqa: F401
from tally.models.audit import AuditLogEvent  # noqa: F401
from tally.models.budget import Budget  # noqa: F401
from tally.models.category import Category  # noqa: F401
from tally.models.transaction import Transaction  # noqa: F401
from tally.models.recurring_bill import RecurringBill, RecurringBillPayment  # noqa: F401
