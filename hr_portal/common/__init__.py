"""Common module — shared utilities for the HR portal."""

from hr_portal.common.audit import AuditTrail, create_audit_entry
from hr_portal.common.constants import (
    BUILTIN_LABELS,
    DEFAULT_PAGE_SIZE,
    MAX_PAGE_SIZE,
    RESERVED_TYPE_IDS,
    ZERO,
    NotificationType,
    RequestKind,
    RequestStatus,
    UserRole,
)
from hr_portal.common.exceptions import (
    AppException,
    ConflictError,
    ForbiddenException,
    NotFoundException,
    ValidationException,
    register_exception_handlers,
)
from hr_portal.common.pagination import (
    PaginatedResponse,
    PaginationMeta,
    PaginationParams,
    paginate,
)

__all__ = [
    # Audit
    "AuditTrail",
    "create_audit_entry",
    # Constants / Enums
    "NotificationType",
    "RequestKind",
    "RequestStatus",
    "UserRole",
    "BUILTIN_LABELS",
    "RESERVED_TYPE_IDS",
    "DEFAULT_PAGE_SIZE",
    "MAX_PAGE_SIZE",
    "ZERO",
    # Exceptions
    "AppException",
    "ConflictError",
    "ForbiddenException",
    "NotFoundException",
    "ValidationException",
    "register_exception_handlers",
    # Pagination
    "PaginatedResponse",
    "PaginationMeta",
    "PaginationParams",
    "paginate",
]
