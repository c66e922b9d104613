from dhool_access.core.access_control import (
    AccessContext,
    AccessRegistry,
    AccessService,
    DocumentAccess,
    FieldAccess,
    PermissionResult,
)

__version__ = "1.0.0"

__all__ = [
    "AccessContext",
    "AccessRegistry",
    "AccessService",
    "DocumentAccess",
    "FieldAccess",
    "PermissionResult",
]
