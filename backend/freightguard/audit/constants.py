from freightguard.db.enums import LegacyRole


class EventTypes:
    """Standard event type names recorded against loads."""
    LOAD_CREATED = "load_created"
    STATUS_CHANGED = "status_changed"
    CARRIER_ASSIGNED = "carrier_assigned"
    DRIVER_ASSIGNED = "driver_assigned"
    ROUTE_MODIFIED = "route_modified"
    DELIVERY_CONFIRMED = "delivery_confirmed"
    DOCUMENT_UPLOADED = "document_uploaded"
    BID_ACCEPTED = "bid_accepted"
    RATING_CREATED = "rating_created"
    RATING_UPDATED = "rating_updated"


class AuditActions:
    """Standard audit action names."""
    ROLE_CREATE = "role.create"
    ROLE_UPDATE = "role.update"
    ROLE_DELETE = "role.delete"
    USER_ROLE_ASSIGN = "user.role.assign"
    USER_ROLE_UNASSIGN = "user.role.unassign"
    USER_DASHBOARD_UPDATE = "user.dashboard.update"
    HISTORY_ARCHIVE = "history.archive"


class AuditTargetTypes:
    """Standard subject types for history rows."""
    LOAD = "load"
    MESSAGE = "message"
    CHAT = "chat"
    ROLE = "role"
    USER = "user"
    SYSTEM = "system"


# Which event types each party sees on a load timeline. None means everything.
ROLE_VISIBLE_EVENT_TYPES = {
    LegacyRole.admin: None,
    LegacyRole.shipper: frozenset({
        EventTypes.LOAD_CREATED,
        EventTypes.STATUS_CHANGED,
        EventTypes.CARRIER_ASSIGNED,
        EventTypes.DELIVERY_CONFIRMED,
    }),
    LegacyRole.carrier: frozenset({
        EventTypes.DRIVER_ASSIGNED,
        EventTypes.STATUS_CHANGED,
        EventTypes.ROUTE_MODIFIED,
        EventTypes.DELIVERY_CONFIRMED,
    }),
}
ROLE_VISIBLE_EVENT_TYPES[LegacyRole.driver] = ROLE_VISIBLE_EVENT_TYPES[LegacyRole.carrier]
