from __future__ import annotations

import logging
import threading
from dataclasses import asdict, fields, replace
from typing import Any, Callable, Dict, Mapping, Optional, Protocol

from .models import ChannelConfig

logger = logging.getLogger(__name__)


class SettingsPersistence(Protocol):
    def load(self) -> Mapping[str, Any]:
        ...

    def save(self, values: Mapping[str, Any]) -> None:
        ...


class InMemoryPersistence:
    """Persistence backend that keeps values for the lifetime of the process."""

    def __init__(self, initial: Optional[Mapping[str, Any]] = None) -> None:
        self._values: Dict[str, Any] = dict(initial or {})

    def load(self) -> Mapping[str, Any]:
        return dict(self._values)

    def save(self, values: Mapping[str, Any]) -> None:
        self._values = dict(values)


class QSettingsPersistence:
    """Persist chart settings through Qt's QSettings (imported lazily)."""

    def __init__(self, *, organization: str = "Cycronix", application: str = "CTchart") -> None:
        from PySide6.QtCore import QSettings

        self._qsettings = QSettings(organization, application)

    def load(self) -> Mapping[str, Any]:
        values: Dict[str, Any] = {}
        for f in fields(ChannelConfig):
            value = self._qsettings.value(f.name)
            if value is not None:
                values[f.name] = value
        return values

    def save(self, values: Mapping[str, Any]) -> None:
        for key, value in values.items():
            self._qsettings.setValue(key, value)


def _coerce_field(name: str, value: Any, default: Any) -> Any:
    # QSettings hands back strings on most platforms
    if isinstance(default, int):
        if isinstance(value, float) and not value.is_integer():
            raise ValueError(f"{name} must be a whole number, got {value!r}")
        return int(value)
    if isinstance(default, float):
        return float(value)
    if value is None:
        return ""
    return str(value)


def config_from_mapping(values: Mapping[str, Any], *, base: Optional[ChannelConfig] = None) -> ChannelConfig:
    """Build a ChannelConfig from loosely typed values, keeping `base` for anything invalid."""
    config = base or ChannelConfig()
    for f in fields(ChannelConfig):
        if f.name not in values:
            continue
        default = getattr(config, f.name)
        try:
            candidate = replace(config, **{f.name: _coerce_field(f.name, values[f.name], default)})
        except (TypeError, ValueError, OverflowError) as exc:
            logger.debug("Ignoring invalid chart setting %s=%r: %s", f.name, values[f.name], exc)
            continue
        config = candidate
    return config


class ChartSettingsStore:
    """Thread-safe holder for the current ChannelConfig.

    Readers get an immutable snapshot, so a poll cycle or display tick never
    sees a half-applied update.
    """

    def __init__(
        self,
        initial: Optional[ChannelConfig] = None,
        *,
        persistence: Optional[SettingsPersistence] = None,
    ) -> None:
        self._lock = threading.Lock()
        self._subscribers: Dict[int, Callable[[ChannelConfig], None]] = {}
        self._next_token = 0
        self._persistence: SettingsPersistence = persistence or InMemoryPersistence()
        self._config = self._load(initial)

    def _load(self, initial: Optional[ChannelConfig]) -> ChannelConfig:
        try:
            stored = self._persistence.load()
        except Exception as exc:
            logger.debug("Failed to load chart settings: %s", exc)
            stored = {}
        return config_from_mapping(stored, base=initial)

    def get(self) -> ChannelConfig:
        with self._lock:
            return self._config

    __call__ = get

    def update(self, **kwargs: Any) -> ChannelConfig:
        """Apply changes; raises ValueError and keeps the old config if they are invalid."""
        with self._lock:
            new_config = replace(self._config, **kwargs)
            self._config = new_config
            callbacks = list(self._subscribers.values())
            self._persist(new_config)
        for callback in callbacks:
            try:
                callback(new_config)
            except Exception as exc:
                logger.debug("Chart settings subscriber callback failed: %s", exc)
                continue
        return new_config

    def subscribe(self, callback: Callable[[ChannelConfig], None], *, replay: bool = True) -> Callable[[], None]:
        with self._lock:
            token = self._next_token
            self._next_token += 1
            self._subscribers[token] = callback
            snapshot = self._config
        if replay:
            callback(snapshot)

        def unsubscribe() -> None:
            with self._lock:
                self._subscribers.pop(token, None)

        return unsubscribe

    def _persist(self, config: ChannelConfig) -> None:
        try:
            self._persistence.save(asdict(config))
        except Exception as exc:
            logger.debug("Failed to persist chart settings: %s", exc)


__all__ = [
    "ChartSettingsStore",
    "InMemoryPersistence",
    "QSettingsPersistence",
    "SettingsPersistence",
    "config_from_mapping",
]
