"""FastAPI dependencies."""

from .admin import AdminDep, require_admin_token
from .services import ServicesDep, get_services

__all__ = ["AdminDep", "ServicesDep", "get_services", "require_admin_token"]
