"""
AI Permissions Layer - natural-language permissions for agent tool calls.

Sits between an agent and its tools and decides, per call, whether the call
runs, is refused, or waits for a one-use human approval. It provides:
- Rules written in plain English and compiled once by an LLM
- Block-wins rule matching with a safe require-approval default
- Hard-coded protection of its own rules and config files
- A TTL-bounded approval ledger driven by "approve <id>" chat replies

Example usage:
    $ ai-permissions compile
    $ ai-permissions check gmail.delete --args '{"id": "42"}'

    from ai_permissions import DecisionEngine, ToolCall

    with DecisionEngine() as engine:
        decision = engine.evaluate(ToolCall(tool_name="gmail.send", args={}))
"""

__version__ = "0.1.0"
__author__ = "AI Permissions Layer Contributors"

from ai_permissions.engine import DecisionEngine, ExecutionResult
from ai_permissions.host import PermissionsPlugin
from ai_permissions.schema import (
    CompiledRule,
    Decision,
    EngineConfig,
    EngineDecision,
    Intent,
    RuleAction,
    ToolCall,
)

__all__ = [
    "__version__",
    "__author__",
    "CompiledRule",
    "Decision",
    "DecisionEngine",
    "EngineConfig",
    "EngineDecision",
    "ExecutionResult",
    "Intent",
    "PermissionsPlugin",
    "RuleAction",
    "ToolCall",
]
