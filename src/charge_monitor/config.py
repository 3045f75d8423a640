"""Configuration system for charge-monitor."""

from dataclasses import dataclass, field, fields, is_dataclass
from pathlib import Path

import tomlkit


@dataclass
class BackendConfig:
    """REST backend connection settings."""

    base_url: str = "http://localhost:3000/api/user"
    token: str = ""  # Bearer token for the customer API
    request_timeout: float = 15.0  # Seconds per request


@dataclass
class PushConfig:
    """Push notification channel settings.

    The push channel only speeds up reactions; the monitor is correct on
    polling alone, so disabling it is always safe.
    """

    enabled: bool = True
    url: str = "ws://localhost:3000/ws"
    heartbeat: float = 15.0  # WebSocket ping interval (seconds)
    connect_timeout: float = 5.0  # Max seconds for the initial connection
    # Reconnection settings
    reconnect_initial_delay: float = 1.0  # Initial reconnect delay (seconds)
    reconnect_max_delay: float = 30.0  # Max reconnect delay (seconds)
    reconnect_multiplier: float = 2.0  # Exponential backoff multiplier


@dataclass
class MonitorConfig:
    """Active session monitor timing and safety thresholds."""

    poll_interval: float = 1.0  # Seconds between authoritative fetches
    smooth_interval: float = 0.1  # Seconds between display smoothing ticks
    interpolation_factor: float = 0.15  # Fraction of remaining gap closed per tick
    energy_epsilon: float = 0.001  # kWh gap below which energy stops nudging
    cost_epsilon: float = 0.01  # Currency gap below which cost stops nudging
    # Fixed delays before each startup retry (two retries: ~2s then ~3s)
    startup_retry_delays: list[float] = field(default_factory=lambda: [2.0, 3.0])
    auto_stop_ratio: float = 0.95  # Stop once cost reaches this share of the prepaid amount
    suppress_window: float = 10.0  # Seconds to suppress duplicate stop notices after a stop
    end_time_grace: float = 1.0  # endTime must be this far in the past to count as ended


@dataclass
class SystemConfig:
    """Logging configuration."""

    # Log file rotation
    log_max_bytes: int = 5 * 1024 * 1024  # Max log file size (5MB)
    log_backup_count: int = 3  # Number of backup log files to keep


# =============================================================================
# TUI Color Configuration
# =============================================================================


@dataclass
class StatusColors:
    """Colors for the session status indicator.

    Default palette: Dracula theme.
    """

    pending: str = "#f1fa8c"  # Dracula yellow - waiting for charger
    active: str = "#50fa7b"  # Dracula green - charging
    stopping: str = "#ffb86c"  # Dracula orange - stop command in flight
    ended: str = "dim"


@dataclass
class CardColors:
    """Colors for the stat cards."""

    energy: str = "#ff5555"  # Dracula red
    cost: str = "#ff79c6"  # Dracula pink
    duration: str = "#8be9fd"  # Dracula cyan
    price: str = "#bd93f9"  # Dracula purple


@dataclass
class TUIColorsConfig:
    """All TUI color configurations grouped together."""

    status: StatusColors = field(default_factory=StatusColors)
    cards: CardColors = field(default_factory=CardColors)


@dataclass
class TUIConfig:
    """TUI-specific configuration."""

    colors: TUIColorsConfig = field(default_factory=TUIColorsConfig)
    currency_symbol: str = "₹"
    exit_delay: float = 1.5  # Seconds to show the final message before leaving


def _dataclass_to_table(obj: object) -> tomlkit.items.Table:
    """Convert a dataclass instance to a tomlkit Table recursively."""
    table = tomlkit.table()
    for f in fields(obj):  # type: ignore[arg-type]
        value = getattr(obj, f.name)
        if is_dataclass(value) and not isinstance(value, type):
            table.add(f.name, _dataclass_to_table(value))
        else:
            table.add(f.name, value)
    return table


@dataclass
class Config:
    """Main configuration container."""

    backend: BackendConfig = field(default_factory=BackendConfig)
    push: PushConfig = field(default_factory=PushConfig)
    monitor: MonitorConfig = field(default_factory=MonitorConfig)
    system: SystemConfig = field(default_factory=SystemConfig)
    tui: TUIConfig = field(default_factory=TUIConfig)

    @property
    def config_dir(self) -> Path:
        """Configuration directory."""
        return Path.home() / ".config" / "charge-monitor"

    @property
    def config_path(self) -> Path:
        """Path to config file."""
        return self.config_dir / "config.toml"

    @property
    def state_dir(self) -> Path:
        """State directory for logs and other expendable persistent state."""
        return Path.home() / ".local" / "state" / "charge-monitor"

    @property
    def log_path(self) -> Path:
        """Monitor log path.

        Logs are expendable persistent state, so they go in XDG_STATE_HOME.
        """
        return self.state_dir / "monitor.log"

    def save(self, path: Path | None = None) -> None:
        """Save config to TOML file."""
        path = path or self.config_path
        path.parent.mkdir(parents=True, exist_ok=True)

        doc = tomlkit.document()
        for name in ["backend", "push", "monitor", "system", "tui"]:
            doc.add(name, _dataclass_to_table(getattr(self, name)))
            doc.add(tomlkit.nl())

        path.write_text(tomlkit.dumps(doc))

    @classmethod
    def load(cls, path: Path | None = None) -> "Config":
        """Load config from TOML file, returning defaults for missing values.

        All defaults come from the dataclass definitions - no hardcoded values here.
        This ensures Config() and Config.load() use identical defaults.
        """
        defaults = cls()
        path = path or defaults.config_path
        if not path.exists():
            return defaults

        try:
            with open(path) as f:
                data = tomlkit.load(f)
        except tomlkit.exceptions.TOMLKitError as e:
            raise ValueError(f"Failed to parse config file {path}: {e}") from e

        backend_data = data.get("backend", {})
        system_data = data.get("system", {})
        be = defaults.backend
        sys_defaults = defaults.system

        return cls(
            backend=BackendConfig(
                base_url=backend_data.get("base_url", be.base_url),
                token=backend_data.get("token", be.token),
                request_timeout=backend_data.get("request_timeout", be.request_timeout),
            ),
            push=_load_push_config(data.get("push", {})),
            monitor=_load_monitor_config(data.get("monitor", {})),
            system=SystemConfig(
                log_max_bytes=system_data.get("log_max_bytes", sys_defaults.log_max_bytes),
                log_backup_count=system_data.get("log_backup_count", sys_defaults.log_backup_count),
            ),
            tui=_load_tui_config(data.get("tui", {})),
        )


def _load_push_config(data: dict) -> PushConfig:
    """Load push config from TOML data."""
    d = PushConfig()
    reconnect_multiplier = data.get("reconnect_multiplier", d.reconnect_multiplier)
    if reconnect_multiplier < 1:
        raise ValueError(f"reconnect_multiplier must be >= 1, got {reconnect_multiplier}")

    return PushConfig(
        enabled=data.get("enabled", d.enabled),
        url=data.get("url", d.url),
        heartbeat=data.get("heartbeat", d.heartbeat),
        connect_timeout=data.get("connect_timeout", d.connect_timeout),
        reconnect_initial_delay=data.get("reconnect_initial_delay", d.reconnect_initial_delay),
        reconnect_max_delay=data.get("reconnect_max_delay", d.reconnect_max_delay),
        reconnect_multiplier=reconnect_multiplier,
    )


def _load_monitor_config(data: dict) -> MonitorConfig:
    """Load monitor config from TOML data, using dataclass defaults for missing fields."""
    defaults = MonitorConfig()

    poll_interval = data.get("poll_interval", defaults.poll_interval)
    smooth_interval = data.get("smooth_interval", defaults.smooth_interval)
    interpolation_factor = data.get("interpolation_factor", defaults.interpolation_factor)
    auto_stop_ratio = data.get("auto_stop_ratio", defaults.auto_stop_ratio)
    raw_delays = data.get("startup_retry_delays", defaults.startup_retry_delays)
    retry_delays = [float(d) for d in raw_delays]

    if poll_interval <= 0:
        raise ValueError(f"poll_interval must be > 0, got {poll_interval}")
    if smooth_interval <= 0:
        raise ValueError(f"smooth_interval must be > 0, got {smooth_interval}")
    if not 0 < interpolation_factor <= 1:
        raise ValueError(f"interpolation_factor must be in (0, 1], got {interpolation_factor}")
    if not 0 < auto_stop_ratio <= 1:
        raise ValueError(f"auto_stop_ratio must be in (0, 1], got {auto_stop_ratio}")
    if any(d < 0 for d in retry_delays):
        raise ValueError(f"startup_retry_delays must be >= 0, got {retry_delays}")

    return MonitorConfig(
        poll_interval=poll_interval,
        smooth_interval=smooth_interval,
        interpolation_factor=interpolation_factor,
        energy_epsilon=data.get("energy_epsilon", defaults.energy_epsilon),
        cost_epsilon=data.get("cost_epsilon", defaults.cost_epsilon),
        startup_retry_delays=retry_delays,
        auto_stop_ratio=auto_stop_ratio,
        suppress_window=data.get("suppress_window", defaults.suppress_window),
        end_time_grace=data.get("end_time_grace", defaults.end_time_grace),
    )


def _load_tui_config(data: dict) -> TUIConfig:
    """Load TUI config from TOML data.

    Handles nested [tui.colors.*] sections with defaults.
    """
    tui_defaults = TUIConfig()
    colors_data = data.get("colors", {})
    status_data = colors_data.get("status", {})
    cards_data = colors_data.get("cards", {})

    # Use dataclass instances as single source of truth for defaults
    s = StatusColors()
    c = CardColors()

    return TUIConfig(
        colors=TUIColorsConfig(
            status=StatusColors(
                pending=status_data.get("pending", s.pending),
                active=status_data.get("active", s.active),
                stopping=status_data.get("stopping", s.stopping),
                ended=status_data.get("ended", s.ended),
            ),
            cards=CardColors(
                energy=cards_data.get("energy", c.energy),
                cost=cards_data.get("cost", c.cost),
                duration=cards_data.get("duration", c.duration),
                price=cards_data.get("price", c.price),
            ),
        ),
        currency_symbol=data.get("currency_symbol", tui_defaults.currency_symbol),
        exit_delay=data.get("exit_delay", tui_defaults.exit_delay),
    )
