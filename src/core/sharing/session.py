# src/core/sharing/session.py
"""
Состояние трансляции на устройстве-производителе.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any

from src.common.constants import SharingMode


@dataclass
class BusSession:
    """
    Локальная сессия трансляции.

    Не сохраняется между перезапусками: после рестарта выбранный автобус
    восстанавливается только из хранилища флагов.
    """
    mode: SharingMode = SharingMode.BACKGROUND
    default_interval_ms: int = 5000

    selected_label: str | None = None  # выбор в списке
    active_label: str | None = None  # автобус, под которым идёт запись
    shared_by: str = "Student"
    is_sharing: bool = False

    busy: bool = False  # start/stop в процессе
    stopping: bool = False
    updating: bool = False  # идёт тик обновления

    update_interval_ms: int = field(default=0)
    last_alert: str | None = None
    last_error_code: str | None = None
    updates_written: int = 0

    timer_task: asyncio.Task | None = field(default=None, repr=False)
    update_task: asyncio.Task | None = field(default=None, repr=False)
    start_task: asyncio.Task | None = field(default=None, repr=False)

    def __post_init__(self) -> None:
        if not self.update_interval_ms:
            self.update_interval_ms = self.default_interval_ms

    def activate(self, label: str, shared_by: str) -> None:
        self.active_label = label
        self.selected_label = label
        self.shared_by = shared_by
        self.is_sharing = True
        self.last_alert = None
        self.last_error_code = None

    def reset(self) -> None:
        """Возвращает сессию в состояние покоя. Выбор в списке сохраняется."""
        self.active_label = None
        self.shared_by = "Student"
        self.is_sharing = False
        self.busy = False
        self.stopping = False
        self.updating = False
        self.update_interval_ms = self.default_interval_ms
        self.timer_task = None
        self.update_task = None
        self.start_task = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "mode": self.mode.value,
            "selected_label": self.selected_label,
            "active_label": self.active_label,
            "is_sharing": self.is_sharing,
            "busy": self.busy or self.stopping,
            "update_interval_ms": self.update_interval_ms,
            "updates_written": self.updates_written,
            "last_alert": self.last_alert,
            "last_error_code": self.last_error_code,
        }
