from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

from freightguard.core.errors import ValidationError


@dataclass(frozen=True)
class DashboardConfig:
    visible_tabs: Tuple[str, ...]
    default_tab: str
    widgets: Tuple[str, ...]

    @classmethod
    def from_data(cls, data: Dict[str, Any]) -> "DashboardConfig":
        """Build from the stored/API shape (camelCase or snake_case keys)."""
        visible = data.get("visible_tabs", data.get("visibleTabs")) or []
        default = data.get("default_tab", data.get("defaultTab")) or ""
        widgets = data.get("widgets") or []
        return cls(
            visible_tabs=tuple(dict.fromkeys(visible)),
            default_tab=default,
            widgets=tuple(dict.fromkeys(widgets)),
        )

    def to_data(self) -> Dict[str, Any]:
        return {
            "visible_tabs": list(self.visible_tabs),
            "default_tab": self.default_tab,
            "widgets": list(self.widgets),
        }

    @property
    def is_consistent(self) -> bool:
        return self.default_tab in self.visible_tabs

    def repaired(self) -> "DashboardConfig":
        """Same config with default_tab guaranteed to be a visible tab."""
        if self.is_consistent:
            return self
        if not self.default_tab:
            if not self.visible_tabs:
                return DEFAULT_DASHBOARD_CONFIG
            return DashboardConfig(self.visible_tabs, self.visible_tabs[0], self.widgets)
        return DashboardConfig(
            visible_tabs=self.visible_tabs + (self.default_tab,),
            default_tab=self.default_tab,
            widgets=self.widgets,
        )


DEFAULT_DASHBOARD_CONFIG = DashboardConfig(
    visible_tabs=("loads", "analytics"),
    default_tab="loads",
    widgets=("activeLoads", "completedLoads", "totalLoads"),
)


def validate_dashboard_config(data: Optional[Dict[str, Any]]) -> Optional[DashboardConfig]:
    """Parse a config supplied by a caller; inconsistent configs are rejected."""
    if data is None:
        return None
    config = DashboardConfig.from_data(data)
    if not config.default_tab:
        raise ValidationError("Dashboard config requires a default tab")
    if not config.is_consistent:
        raise ValidationError(
            f"Default tab '{config.default_tab}' must be one of the visible tabs"
        )
    return config


def merge_dashboard_config(
    user_config: Optional[Dict[str, Any]],
    role_config: Optional[Dict[str, Any]],
) -> DashboardConfig:
    """
    Pure precedence: user override, then role config, then the default.

    A stored config whose default tab is not visible (for example a half
    edited custom role) is repaired rather than rejected, so a bad dashboard
    never blocks login.
    """
    for data in (user_config, role_config):
        if data:
            return DashboardConfig.from_data(data).repaired()
    return DEFAULT_DASHBOARD_CONFIG
