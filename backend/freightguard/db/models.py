import json

from sqlalchemy import (
    Column, Integer, String, Boolean, DateTime, ForeignKey, Text, Index, UniqueConstraint,
    event, inspect,
)
from sqlalchemy.orm import declared_attr

from freightguard.core.errors import ImmutableRecordError
from freightguard.db.database import Base, utcnow
from freightguard.db.enums import HistoryKind


def _loads(raw, default=None):
    if raw is None or raw == "":
        return default
    return json.loads(raw)


def _dumps(value):
    if value is None:
        return None
    return json.dumps(value, default=str)


# ------------------ Users & Roles ------------------

class Role(Base):
    __tablename__ = "roles"
    __table_args__ = (
        # Name uniqueness is enforced here, never by a read-then-insert
        UniqueConstraint("organization_id", "name", name="uq_roles_by_organization_name"),
        Index("ix_roles_by_organization", "organization_id"),
    )

    id = Column(Integer, primary_key=True)
    name = Column(String(100), nullable=False)
    description = Column(Text, nullable=False, default="")
    permissions = Column(Text, nullable=False, default="[]")  # JSON array of permission names
    organization_id = Column(String(64), nullable=False)
    is_custom = Column(Boolean, nullable=False, default=True)
    dashboard_config = Column(Text, nullable=True)  # JSON DashboardConfig
    created_by = Column(Integer, nullable=True)
    updated_by = Column(Integer, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow)

    @property
    def permission_names(self) -> frozenset:
        return frozenset(_loads(self.permissions, []))

    @property
    def dashboard_config_data(self):
        return _loads(self.dashboard_config)


class User(Base):
    __tablename__ = "users"
    __table_args__ = (
        Index("ix_users_by_role_id", "role_id"),
        Index("ix_users_by_organization", "organization_id"),
    )

    id = Column(Integer, primary_key=True)
    email = Column(String(255), unique=True, nullable=False)
    name = Column(String(200), nullable=False, default="")
    legacy_role = Column(String(20), nullable=True)  # LegacyRole value
    role_id = Column(Integer, ForeignKey("roles.id"), nullable=True)
    organization_id = Column(String(64), nullable=True)
    dashboard_config = Column(Text, nullable=True)  # JSON DashboardConfig override
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow)

    @property
    def dashboard_config_data(self):
        return _loads(self.dashboard_config)


class PermissionModel(Base):
    __tablename__ = "permissions"
    __table_args__ = (
        Index("ix_permissions_by_category", "category"),
    )

    id = Column(Integer, primary_key=True)
    name = Column(String(100), nullable=False, unique=True)
    description = Column(Text, nullable=False, default="")
    category = Column(String(100), nullable=False)
    created_at = Column(DateTime, nullable=False, default=utcnow)


# ------------------ Domain events ------------------

class Event(Base):
    """
    Immutable record of a state change against a load.
    Rows are only ever inserted; see the guards at the bottom of this module.
    """
    __tablename__ = "events"
    __table_args__ = (
        Index("ix_events_by_load", "load_id", "timestamp"),
        Index("ix_events_by_user", "user_id", "timestamp"),
        Index("ix_events_by_event_type", "event_type", "timestamp"),
        Index("ix_events_by_timestamp", "timestamp"),
    )

    id = Column(Integer, primary_key=True)
    load_id = Column(String(64), nullable=False)
    user_id = Column(Integer, nullable=True)  # Null for system events
    event_type = Column(String(100), nullable=False)
    previous_value = Column(Text, nullable=True)  # JSON
    new_value = Column(Text, nullable=True)  # JSON
    timestamp = Column(DateTime, nullable=False, default=utcnow)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    @property
    def previous_value_data(self):
        return _loads(self.previous_value)

    @property
    def new_value_data(self):
        return _loads(self.new_value)


# ------------------ History records ------------------

class HistoryRecordMixin:
    """
    Shared shape of load_history, message_history and audit_logs.
    Once written only is_archived (false -> true) and archived_at may change.
    """
    id = Column(Integer, primary_key=True)
    subject_id = Column(String(64), nullable=False)
    subject_type = Column(String(50), nullable=False)
    actor_id = Column(Integer, nullable=True)  # Null for system actions
    action_type = Column(String(100), nullable=False)
    status = Column(String(50), nullable=True)
    content = Column(Text, nullable=False, default="")
    details = Column(Text, nullable=True)  # JSON payload, opaque to queries
    timestamp = Column(DateTime, nullable=False, default=utcnow)
    is_archived = Column(Boolean, nullable=False, default=False)
    archived_at = Column(DateTime, nullable=True)

    @declared_attr
    def __table_args__(cls):
        table = cls.__tablename__
        return (
            Index(f"ix_{table}_by_entity", "subject_type", "subject_id", "timestamp"),
            Index(f"ix_{table}_by_action", "action_type"),
            Index(f"ix_{table}_by_user", "actor_id"),
            Index(f"ix_{table}_by_timestamp", "timestamp"),
            Index(f"ix_{table}_archival", "is_archived", "timestamp"),
        )

    @property
    def details_data(self):
        return _loads(self.details, {})


class LoadHistory(HistoryRecordMixin, Base):
    __tablename__ = "load_history"
    kind = HistoryKind.load


class MessageHistory(HistoryRecordMixin, Base):
    __tablename__ = "message_history"
    kind = HistoryKind.message


class AuditLog(HistoryRecordMixin, Base):
    __tablename__ = "audit_logs"
    kind = HistoryKind.audit


HISTORY_MODELS = {
    HistoryKind.load: LoadHistory,
    HistoryKind.message: MessageHistory,
    HistoryKind.audit: AuditLog,
}


# ------------------ Notifications ------------------

class Notification(Base):
    __tablename__ = "notifications"
    __table_args__ = (
        Index("ix_notifications_by_user", "user_id", "is_read"),
    )

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, nullable=False)
    type = Column(String(50), nullable=False)
    title = Column(String(255), nullable=False)
    message = Column(Text, nullable=False, default="")
    related_id = Column(String(64), nullable=True)
    related_type = Column(String(50), nullable=True)
    is_read = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, nullable=False, default=utcnow)


# ------------------ Append-only guards ------------------

_IMMUTABLE_HISTORY_COLUMNS = (
    "subject_id", "subject_type", "actor_id", "action_type", "status",
    "content", "details", "timestamp",
)


@event.listens_for(Event, "before_update")
def _refuse_event_update(mapper, connection, target):
    raise ImmutableRecordError(f"events are append-only (id={target.id})")


@event.listens_for(Event, "before_delete")
def _refuse_event_delete(mapper, connection, target):
    raise ImmutableRecordError(f"events are append-only (id={target.id})")


def _guard_history_update(mapper, connection, target):
    state = inspect(target)
    for column in _IMMUTABLE_HISTORY_COLUMNS:
        if state.attrs[column].history.has_changes():
            raise ImmutableRecordError(
                f"{target.__tablename__}.{column} cannot change once written (id={target.id})"
            )
    archived = state.attrs["is_archived"].history
    if archived.deleted and archived.deleted[0] and not target.is_archived:
        raise ImmutableRecordError(
            f"{target.__tablename__} rows cannot be unarchived (id={target.id})"
        )


def _guard_history_delete(mapper, connection, target):
    raise ImmutableRecordError(
        f"{target.__tablename__} rows are retained; archive them instead (id={target.id})"
    )


for _model in HISTORY_MODELS.values():
    event.listen(_model, "before_update", _guard_history_update)
    event.listen(_model, "before_delete", _guard_history_delete)
