"""Callbacks the session engine uses to report to the home-automation layer."""

from __future__ import annotations

from typing import Any, Protocol

from plejdble.core.model import StateChange


class SessionListener:
    """Receives events decoded from the mesh. Override what you need."""

    def state_changed(self, device_id: int, change: StateChange) -> None:
        pass

    def scene_triggered(self, device_id: int, scene_id: int) -> None:
        pass

    def connect_failed(self) -> None:
        pass


class SceneManager(Protocol):
    def execute_scene(self, scene_index: int, service: Any) -> None:
        """Run a scene; ``service`` is the session that requested it."""
