# Import all models here so Alembic can discover them.

from app.models.billing import BillingCustomer, Subscription  # noqa: F401
from app.models.order import Order  # noqa: F401
