from .base import Base

# import models so Alembic/autoloaders can discover mappers
from .admin import Admin  # noqa: F401
from .subscriber import Subscriber, Subscription  # noqa: F401
from .draw import Draw, Entry  # noqa: F401
from .winner import WinnerRecord  # noqa: F401
from .donation import Donation  # noqa: F401
from .audit import ActivityLog  # noqa: F401

__all__ = [
    "Base",
    "ActivityLog",
    "Admin",
    "Donation",
    "Draw",
    "Entry",
    "Subscriber",
    "Subscription",
    "WinnerRecord",
]
