import enum


class LegacyRole(str, enum.Enum):
    admin = "admin"
    shipper = "shipper"
    carrier = "carrier"
    driver = "driver"


class HistoryKind(str, enum.Enum):
    load = "load"
    message = "message"
    audit = "audit"


class ExportFormat(str, enum.Enum):
    csv = "csv"
    json = "json"


class NotificationType(str, enum.Enum):
    load_status_changed = "load_status_changed"
    load_assigned = "load_assigned"
    load_in_transit = "load_in_transit"
    load_delivered = "load_delivered"
    rating_received = "rating_received"
