"""
Hook glue between an agent host and the decision engine.

Agent frameworks in the OpenClaw style expose named hooks instead of a
middleware stack. PermissionsPlugin translates their events into engine
calls:

    before_tool_call({"toolName": ..., "params": {...}})
        -> None (let the call run) or {"block": True, "blockReason": ...}
    message_received({"content": "approve <uuid>"})
        -> resolves the approval request

Usage:
    plugin = PermissionsPlugin.from_config(load_engine_config_or_default())
    plugin.register(api)
"""

import logging
from collections.abc import Mapping
from typing import Any

from ai_permissions.engine import DecisionEngine
from ai_permissions.schema import (
    OPENCLAW_DANGEROUS_TOOLS,
    EngineConfig,
    Intent,
    ToolCall,
)

logger = logging.getLogger(__name__)

MALFORMED_EVENT_REASON = "Malformed tool call event"

HOOK_BEFORE_TOOL_CALL = "before_tool_call"
HOOK_MESSAGE_RECEIVED = "message_received"


class PermissionsPlugin:
    """
    Hook handlers backed by a DecisionEngine.

    Attributes:
        engine: The engine that decides every call
    """

    def __init__(self, engine: DecisionEngine):
        self.engine = engine

    @classmethod
    def from_config(cls, config: EngineConfig | None = None) -> "PermissionsPlugin":
        """
        Build a plugin for an OpenClaw-style host.

        Unless the config names its own dangerous tools, the host's file
        tools (write, edit, apply_patch) are the ones path protection
        watches.
        """
        config = config or EngineConfig()
        if config.path_protection.dangerous_tools is None:
            path_protection = config.path_protection.model_copy(
                update={"dangerous_tools": list(OPENCLAW_DANGEROUS_TOOLS)}
            )
            config = config.model_copy(update={"path_protection": path_protection})
        return cls(DecisionEngine(config))

    def before_tool_call(self, event: Mapping[str, Any]) -> dict[str, Any] | None:
        """Return None to allow the call, or a block verdict for the host."""
        if not isinstance(event, Mapping):
            event = {}
        tool_name = event.get("toolName") or event.get("tool_name")
        if not isinstance(tool_name, str) or not tool_name:
            logger.warning("BLOCKED: %s", MALFORMED_EVENT_REASON)
            return {"block": True, "blockReason": MALFORMED_EVENT_REASON}

        params = event.get("params")
        if not isinstance(params, Mapping):
            params = {}
        intent = event.get("intent")

        decision = self.engine.evaluate(
            ToolCall(tool_name=tool_name, args=dict(params)),
            Intent(text=intent if isinstance(intent, str) else ""),
        )
        if decision.allowed:
            return None
        return {"block": True, "blockReason": decision.reason}

    def message_received(self, event: Mapping[str, Any]) -> None:
        """Resolve an approval request if the message is an approve/deny reply."""
        content = event.get("content") if isinstance(event, Mapping) else None
        self.engine.on_message(content if isinstance(content, str) else "")

    def register(self, api: Any) -> bool:
        """
        Attach the handlers with ``api.on`` or ``api.register_hook``.

        Returns:
            False (and logs a warning) if the host exposes neither
        """
        for name in ("on", "register_hook", "registerHook"):
            hook = getattr(api, name, None)
            if callable(hook):
                hook(HOOK_BEFORE_TOOL_CALL, self.before_tool_call)
                hook(HOOK_MESSAGE_RECEIVED, self.message_received)
                logger.info("Plugin loaded - tool call interception active")
                return True

        logger.warning("No hook API found (api.on or api.register_hook)")
        return False
