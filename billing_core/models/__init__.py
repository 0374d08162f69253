from .product import Product
from .profile import Profile
from .subscription import Subscription
from .student import Student
from .enrollment import Enrollment
from .notification import Notification
from .effect_failure import EffectFailureLog

__all__ = [
    "Product",
    "Profile",
    "Subscription",
    "Student",
    "Enrollment",
    "Notification",
    "EffectFailureLog",
]
