from sqlalchemy import Enum

# Portable enum types (native on PostgreSQL, CHECK-constrained VARCHAR elsewhere).

ROLES = ("user", "admin")
ITEM_TYPES = ("lost", "found")
ITEM_STATUSES = ("Open", "Claimed", "Returned")
CLAIM_STATUSES = ("Pending", "Approved", "Denied")
CLAIM_DECISIONS = ("Approved", "Denied")

role_enum = Enum(*ROLES, name="role_enum")
item_type_enum = Enum(*ITEM_TYPES, name="item_type_enum")
item_status_enum = Enum(*ITEM_STATUSES, name="item_status_enum")
claim_status_enum = Enum(*CLAIM_STATUSES, name="claim_status_enum")
