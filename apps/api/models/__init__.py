"""Models package."""

from .user import User
from .site_setting import SiteSetting
from .subscription import Subscription, ServiceSubscription
from .monthly_balance import MonthlyBalance
from .purchased_credit_lot import PurchasedCreditLot
