"""Request-reply command handler on kryten.counters.command.

Provides a NATS request-reply API for dashboards and admin tooling:
reading and resetting counters, managing per-broadcaster command overrides,
custom counters and settings, and maintaining the shared counter library.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from . import __version__
from .models import CommandDefinition, CustomCounterDefinition
from .resolver import BUILTIN_COMMANDS

if TYPE_CHECKING:
    from kryten import KrytenClient

    from .main import CountersApp


_SETTINGS_KEYS = ("max_increment", "screams_enabled", "milestone_thresholds", "milestone_notifications")


def _require(request: dict[str, Any], *keys: str) -> None:
    missing = [k for k in keys if not request.get(k)]
    if missing:
        raise ValueError(f"{' and '.join(missing)} {'is' if len(missing) == 1 else 'are'} required")


class CommandHandler:
    """Handles request-reply commands on kryten.counters.command."""

    SUBJECT = "kryten.counters.command"

    def __init__(
        self,
        app: CountersApp,
        client: KrytenClient,
        logger: logging.Logger | None = None,
    ) -> None:
        self._app = app
        self._client = client
        self._logger = logger or logging.getLogger("counters.command")

    async def connect(self) -> None:
        """Subscribe to request-reply on kryten.counters.command."""
        await self._client.subscribe_request_reply(self.SUBJECT, self._handle_command)

    async def _handle_command(self, request: dict[str, Any]) -> dict[str, Any]:
        """Route a command request to the appropriate handler."""
        command = request.get("command", "")
        handler = self._HANDLER_MAP.get(command)

        if not handler:
            return {
                "service": "counters",
                "command": command,
                "success": False,
                "error": f"Unknown command: {command}",
            }

        try:
            result = await handler(self, request)
            self._app.admin_commands_processed += 1
            return {
                "service": "counters",
                "command": command,
                "success": True,
                "data": result,
            }
        except ValueError as e:
            # Includes InvalidCommandConfig
            self._logger.warning("Rejected %s request: %s", command, e)
            return {
                "service": "counters",
                "command": command,
                "success": False,
                "error": str(e),
            }
        except Exception as e:
            self._logger.exception("Command handler error for %s", command)
            return {
                "service": "counters",
                "command": command,
                "success": False,
                "error": str(e),
            }

    # ══════════════════════════════════════════════════════════
    #  System
    # ══════════════════════════════════════════════════════════

    async def _handle_ping(self, request: dict[str, Any]) -> dict[str, Any]:
        return {"pong": True, "version": __version__}

    async def _handle_health(self, request: dict[str, Any]) -> dict[str, Any]:
        return {
            "status": "healthy",
            "database": "connected" if self._app.db else "disconnected",
            "channels": [ch.channel for ch in self._app.config.channels],
            "tracked_cooldowns": self._app.engine.cooldowns.tracked_keys() if self._app.engine else 0,
            "uptime_seconds": self._app.uptime_seconds,
        }

    # ══════════════════════════════════════════════════════════
    #  Counters
    # ══════════════════════════════════════════════════════════

    async def _handle_counters_get(self, request: dict[str, Any]) -> dict[str, Any]:
        _require(request, "channel")
        state = await self._app.db.get_counters(request["channel"])
        return state.to_dict()

    async def _handle_counters_reset(self, request: dict[str, Any]) -> dict[str, Any]:
        _require(request, "channel")
        targets = request.get("counters") or []
        if isinstance(targets, str):
            targets = targets.split(",")
        state = await self._app.engine.reset_counters(request["channel"], targets)
        return state.to_dict()

    # ══════════════════════════════════════════════════════════
    #  Command overrides
    # ══════════════════════════════════════════════════════════

    async def _handle_commands_list(self, request: dict[str, Any]) -> dict[str, Any]:
        _require(request, "channel")
        overrides = await self._app.db.get_command_overrides(request["channel"])
        commands: dict[str, Any] = {}
        for key, definition in overrides.items():
            commands[key] = {**definition.to_dict(), "canonical": definition.name, "source": "override"}
        for key, definition in BUILTIN_COMMANDS.items():
            if key in commands:
                continue
            # Aliases follow an override of their canonical command
            effective = overrides.get(definition.name)
            source = "override" if effective else "builtin"
            commands[key] = {**(effective or definition).to_dict(), "canonical": definition.name, "source": source}
        return {"commands": dict(sorted(commands.items()))}

    async def _handle_commands_set(self, request: dict[str, Any]) -> dict[str, Any]:
        _require(request, "channel", "name")
        definition = CommandDefinition.from_dict(request["name"], request.get("definition") or {})
        await self._app.db.set_command_override(request["channel"], definition)
        self._logger.info("Command %s set for %s", definition.name, request["channel"])
        return {"name": definition.name, **definition.to_dict()}

    async def _handle_commands_delete(self, request: dict[str, Any]) -> dict[str, Any]:
        _require(request, "channel", "name")
        deleted = await self._app.db.delete_command_override(request["channel"], request["name"])
        return {"deleted": deleted}

    # ══════════════════════════════════════════════════════════
    #  Custom counters & library
    # ══════════════════════════════════════════════════════════

    async def _handle_custom_counters_set(self, request: dict[str, Any]) -> dict[str, Any]:
        _require(request, "channel", "counter_id")
        definition = CustomCounterDefinition.from_dict(request["counter_id"], request.get("definition") or {})
        await self._app.db.set_custom_counter(request["channel"], definition)
        self._logger.info("Custom counter %s set for %s", definition.counter_id, request["channel"])
        return {"counter_id": definition.counter_id, "triggers": definition.triggers(), **definition.to_dict()}

    async def _handle_custom_counters_delete(self, request: dict[str, Any]) -> dict[str, Any]:
        _require(request, "channel", "counter_id")
        deleted = await self._app.db.delete_custom_counter(request["channel"], request["counter_id"])
        return {"deleted": deleted}

    async def _handle_library_upsert(self, request: dict[str, Any]) -> dict[str, Any]:
        _require(request, "counter_id")
        item = CustomCounterDefinition.from_dict(request["counter_id"], request.get("definition") or {})
        await self._app.db.upsert_library_item(item)
        return {"counter_id": item.counter_id, "triggers": item.triggers(), **item.to_dict()}

    # ══════════════════════════════════════════════════════════
    #  Settings
    # ══════════════════════════════════════════════════════════

    async def _handle_settings_get(self, request: dict[str, Any]) -> dict[str, Any]:
        _require(request, "channel")
        settings = await self._app.engine.get_settings(request["channel"])
        return settings.to_dict()

    async def _handle_settings_set(self, request: dict[str, Any]) -> dict[str, Any]:
        _require(request, "channel")
        changes = request.get("settings") or {}
        unknown = sorted(set(changes) - set(_SETTINGS_KEYS))
        if unknown:
            raise ValueError(f"Unknown settings: {', '.join(unknown)}")

        if "max_increment" in changes:
            changes["max_increment"] = self._app.config.commands.clamp_max_increment(changes["max_increment"])
        # Validates against the defaults before anything is stored
        self._app.config.default_broadcaster_settings().merged(changes)

        await self._app.db.update_settings_data(request["channel"], changes)
        settings = await self._app.engine.get_settings(request["channel"])
        return settings.to_dict()

    _HANDLER_MAP: dict[str, Any] = {
        "system.ping": _handle_ping,
        "system.health": _handle_health,
        "counters.get": _handle_counters_get,
        "counters.reset": _handle_counters_reset,
        "commands.list": _handle_commands_list,
        "commands.set": _handle_commands_set,
        "commands.delete": _handle_commands_delete,
        "custom_counters.set": _handle_custom_counters_set,
        "custom_counters.delete": _handle_custom_counters_delete,
        "library.upsert": _handle_library_upsert,
        "settings.get": _handle_settings_get,
        "settings.set": _handle_settings_set,
    }
