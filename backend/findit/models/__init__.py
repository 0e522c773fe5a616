from .user import User
from .catalog import Category, Location
from .item import Item
from .claim import Claim
from .audit_log import AuditLog

__all__ = ["User", "Category", "Location", "Item", "Claim", "AuditLog"]
