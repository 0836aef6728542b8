from app.db.models.user import GlobalUser
from app.db.models.invite import InviteCode
from app.db.models.license import Product, License
from app.db.models.usage import UsageStats, AccessLog
from app.db.models.access_request import AccessRequest

__all__ = ["GlobalUser", "InviteCode", "Product", "License", "UsageStats", "AccessLog", "AccessRequest"]
