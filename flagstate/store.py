"""In-memory flag store that merges flags from several prioritised sources."""

from __future__ import annotations

import json
import logging
import threading
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)

Metadata = dict[str, Any]
Notifications = dict[str, dict[str, str]]


class NotificationType(str, Enum):
    """Kind of change reported for a flag."""

    CREATE = "write"
    UPDATE = "update"
    DELETE = "delete"


@dataclass(frozen=True)
class Flag:
    """A feature flag definition together with the source it came from."""

    state: str = ""
    default_variant: str = ""
    variants: dict[str, Any] = field(default_factory=dict)
    targeting: Any = None
    source: str = ""
    selector: str = ""
    metadata: Metadata = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Return a JSON-ready mapping of the flag."""
        data: dict[str, Any] = {
            "state": self.state,
            "defaultVariant": self.default_variant,
            "variants": dict(self.variants),
            "source": self.source,
            "selector": self.selector,
        }
        if self.targeting is not None:
            data["targeting"] = self.targeting
        if self.metadata:
            data["metadata"] = dict(self.metadata)
        return data


@dataclass(frozen=True)
class SourceDetails:
    """Where a set of flags was obtained from."""

    source: str = ""
    selector: str = ""


def _notice(kind: NotificationType, source: str) -> dict[str, str]:
    return {"type": kind.value, "source": source}


@dataclass
class State:
    """Thread-safe collection of flags keyed by flag name."""

    flags: dict[str, Flag] = field(default_factory=dict)
    flag_sources: list[str] = field(default_factory=list)
    source_details: dict[str, SourceDetails] = field(default_factory=dict)
    metadata_per_source: dict[str, Metadata] = field(default_factory=dict)
    _lock: threading.RLock = field(
        default_factory=threading.RLock, init=False, repr=False, compare=False
    )

    def has_priority(self, stored: str, new: str) -> bool:
        """Whether source ``new`` may overwrite a flag owned by ``stored``.

        Later entries in ``flag_sources`` take precedence over earlier ones;
        sources not listed always win.
        """
        if stored == new:
            return True
        for source in reversed(self.flag_sources):
            if source == stored:
                return False
            if source == new:
                return True
        return True

    def set(self, key: str, flag: Flag) -> None:
        with self._lock:
            self.flags[key] = flag

    def get(self, key: str) -> tuple[Flag | None, Metadata]:
        """Return the flag (or None) and the metadata that applies to it.

        A found flag carries its own source's metadata; otherwise the
        metadata shared across all sources is returned.
        """
        with self._lock:
            flag = self.flags.get(key)
            if flag is not None:
                return flag, self.get_metadata_for_source(flag.source)
            return None, self.metadata()

    def selector_for_flag(self, flag: Flag) -> str:
        with self._lock:
            details = self.source_details.get(flag.source)
            return details.selector if details else ""

    def delete(self, key: str) -> None:
        with self._lock:
            self.flags.pop(key, None)

    def to_json(self) -> str:
        """Serialise the whole state to a JSON string."""
        with self._lock:
            data: dict[str, Any] = {
                "flags": {k: f.to_dict() for k, f in self.flags.items()},
                "FlagSources": list(self.flag_sources) or None,
            }
            if self.source_details:
                data["sourceMetadata"] = {
                    k: {"Source": d.source, "Selector": d.selector}
                    for k, d in self.source_details.items()
                }
            if self.metadata_per_source:
                data["metadata"] = {
                    k: v for k, v in self.metadata_per_source.items()
                }
            try:
                return json.dumps(data)
            except (TypeError, ValueError) as exc:
                raise ValueError(f"unable to marshal flags: {exc}") from exc

    def get_all(self) -> tuple[dict[str, Flag], Metadata]:
        """Return a copy of all flags and the shared metadata."""
        with self._lock:
            return dict(self.flags), self.metadata()

    def add(self, source: str, selector: str, flags: dict[str, Flag]) -> Notifications:
        """Add flags from ``source``, respecting source priority."""
        notifications: Notifications = {}
        with self._lock:
            for key, new_flag in flags.items():
                stored, _ = self.get(key)
                if stored is not None and not self.has_priority(stored.source, source):
                    logger.debug(
                        "not overwriting: flag %s from source %s does not have priority over %s",
                        key, source, stored.source,
                    )
                    continue
                notifications[key] = _notice(NotificationType.CREATE, source)
                self.set(key, replace(new_flag, source=source, selector=selector))
        return notifications

    def update(self, source: str, selector: str, flags: dict[str, Flag]) -> Notifications:
        """Update existing flags from ``source``; unknown keys are skipped."""
        notifications: Notifications = {}
        with self._lock:
            for key, flag in flags.items():
                stored, _ = self.get(key)
                if stored is None:
                    logger.warning(
                        "failed to update the flag, flag with key %s from source %s does not exist.",
                        key, source,
                    )
                    continue
                if not self.has_priority(stored.source, source):
                    logger.debug(
                        "not updating: flag %s from source %s does not have priority over %s",
                        key, source, stored.source,
                    )
                    continue
                notifications[key] = _notice(NotificationType.UPDATE, source)
                self.set(key, replace(flag, source=source, selector=selector))
        return notifications

    def delete_flags(self, source: str, flags: dict[str, Flag]) -> Notifications:
        """Delete the given flags, or every flag of ``source`` when none are given."""
        logger.debug("store resync triggered: delete event from source %s", source)
        notifications: Notifications = {}
        with self._lock:
            self.metadata_per_source.pop(source, None)

            if not flags:
                all_flags, _ = self.get_all()
                for key, flag in all_flags.items():
                    if flag.source != source:
                        continue
                    notifications[key] = _notice(NotificationType.DELETE, source)
                    self.delete(key)

            for key in flags:
                stored, _ = self.get(key)
                if stored is None:
                    logger.warning(
                        "failed to remove flag, flag with key %s from source %s does not exist.",
                        key, source,
                    )
                    continue
                if not self.has_priority(stored.source, source):
                    logger.debug(
                        "not deleting: flag %s from source %s cannot be deleted by %s",
                        key, stored.source, source,
                    )
                    continue
                notifications[key] = _notice(NotificationType.DELETE, source)
                self.delete(key)
        return notifications

    def merge(
        self,
        source: str,
        selector: str,
        flags: dict[str, Flag] | None,
        metadata: Metadata | None,
    ) -> tuple[Notifications, bool]:
        """Replace the flags of ``source``/``selector`` with ``flags``.

        Returns the notifications and whether a resync is required because
        flags were removed.
        """
        flags = flags or {}
        notifications: Notifications = {}
        resync_required = False
        with self._lock:
            self.metadata_per_source[source] = metadata if metadata is not None else {}

            removed = [
                key
                for key, stored in self.flags.items()
                if stored.source == source
                and stored.selector == selector
                and key not in flags
            ]
            for key in removed:
                del self.flags[key]
                notifications[key] = _notice(NotificationType.DELETE, source)
                resync_required = True
                logger.debug(
                    "store resync triggered: flag %s has been deleted from source %s",
                    key, source,
                )

            for key, flag in flags.items():
                new_flag = replace(flag, source=source, selector=selector)
                stored, _ = self.get(key)
                if stored is not None:
                    if not self.has_priority(stored.source, source):
                        logger.debug(
                            "not merging: flag %s from source %s does not have priority over %s",
                            key, source, stored.source,
                        )
                        continue
                    if stored == new_flag:
                        continue
                    notifications[key] = _notice(NotificationType.UPDATE, source)
                else:
                    notifications[key] = _notice(NotificationType.CREATE, source)
                self.set(key, new_flag)
        return notifications, resync_required

    def get_metadata_for_source(self, source: str) -> Metadata:
        """Return a copy of the metadata registered for ``source``."""
        with self._lock:
            per_source = self.metadata_per_source.get(source)
            return dict(per_source) if per_source else {}

    def metadata(self) -> Metadata:
        """Metadata merged across sources; keys defined by several sources are dropped."""
        with self._lock:
            merged: Metadata = {}
            conflicting: set[str] = set()
            for per_source in self.metadata_per_source.values():
                for key, value in (per_source or {}).items():
                    if key in merged or key in conflicting:
                        merged.pop(key, None)
                        conflicting.add(key)
                    else:
                        merged[key] = value
            return merged