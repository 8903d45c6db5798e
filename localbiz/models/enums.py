from __future__ import annotations

from enum import Enum


class UserRole(str, Enum):
    user = "user"
    admin = "admin"


class ApprovalStatus(str, Enum):
    pending = "pending"
    approved = "approved"
    rejected = "rejected"


class ViewSource(str, Enum):
    search = "search"
    category = "category"
    map = "map"
    direct = "direct"
    social = "social"
    referral = "referral"


class ViewEvent(str, Enum):
    view = "view"
    contact = "contact"


class ContactChannel(str, Enum):
    phone = "phone"
    website = "website"
    directions = "directions"
    email = "email"
