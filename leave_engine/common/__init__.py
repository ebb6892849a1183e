"""Common module — shared utilities for the leave engine."""

from leave_engine.common.audit import AuditTrail, create_audit_entry
from leave_engine.common.constants import (
    ACTIVE_STATUSES,
    DEFAULT_PAGE_SIZE,
    EDITABLE_STATUSES,
    MAX_PAGE_SIZE,
    TERMINAL_STATUSES,
    ApproverRole,
    LeaveStatus,
    LeaveType,
    NotificationKind,
    UserRole,
)
from leave_engine.common.exceptions import (
    AppException,
    ConcurrentModificationError,
    ForbiddenException,
    InsufficientBalanceError,
    InvalidTransitionError,
    NotFoundException,
    ValidationException,
    register_exception_handlers,
)
from leave_engine.common.pagination import (
    PaginatedResponse,
    PaginationMeta,
    PaginationParams,
)

__all__ = [
    # Audit
    "AuditTrail",
    "create_audit_entry",
    # Constants / Enums
    "ApproverRole",
    "LeaveStatus",
    "LeaveType",
    "NotificationKind",
    "UserRole",
    "ACTIVE_STATUSES",
    "EDITABLE_STATUSES",
    "TERMINAL_STATUSES",
    "DEFAULT_PAGE_SIZE",
    "MAX_PAGE_SIZE",
    # Exceptions
    "AppException",
    "ConcurrentModificationError",
    "ForbiddenException",
    "InsufficientBalanceError",
    "InvalidTransitionError",
    "NotFoundException",
    "ValidationException",
    "register_exception_handlers",
    # Pagination
    "PaginatedResponse",
    "PaginationMeta",
    "PaginationParams",
]
