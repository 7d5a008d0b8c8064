"""
Typed failures raised by the authorization and audit services.

Each error carries the HTTP status the API layer answers with and a short
machine-readable code. The message is meant to be shown to the operator as is.
"""


class FreightGuardError(Exception):
    status_code = 400
    code = "error"

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail


class NotFound(FreightGuardError):
    status_code = 404
    code = "not_found"


class DuplicateRole(FreightGuardError):
    status_code = 409
    code = "duplicate_role"

    def __init__(self, name: str):
        super().__init__(f"Role name '{name}' already exists in this organization")
        self.name = name


class SystemRoleImmutable(FreightGuardError):
    status_code = 403
    code = "system_role_immutable"

    def __init__(self, name: str, action: str = "modify"):
        super().__init__(f"Cannot {action} system role '{name}'")
        self.name = name


class RoleInUse(FreightGuardError):
    status_code = 409
    code = "role_in_use"

    def __init__(self, name: str):
        super().__init__(
            f"Cannot delete role '{name}': it is still assigned to at least one user"
        )
        self.name = name


class InvalidPermission(FreightGuardError):
    code = "invalid_permission"

    def __init__(self, names):
        self.names = sorted(names)
        super().__init__(f"Invalid permissions: {', '.join(self.names)}")


class ScopeRequired(FreightGuardError):
    code = "scope_required"

    def __init__(self, detail: str = "Export requires at least one entity id"):
        super().__init__(detail)


class ValidationError(FreightGuardError):
    status_code = 422
    code = "validation_error"


class ImmutableRecordError(RuntimeError):
    """Raised by the ORM guards when append-only rows are rewritten."""
