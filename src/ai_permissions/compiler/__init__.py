"""
Rule compiler for the AI Permissions Layer.

Translates plain-English permission statements into compiled rules with an
LLM. This runs offline (``ai-permissions compile``); the decision engine
only ever reads the resulting JSON.

Components:
    - LLMAdapter: Abstract text-completion backend
    - OpenAICompatibleAdapter: OpenAI, Ollama, LM Studio and vLLM backend
    - create_adapter: Build an adapter from CompilerConfig
    - RuleCompiler: Prompt, repair and validate into a RuleSet

Usage:
    from ai_permissions.compiler import RuleCompiler, create_adapter

    with create_adapter(config.compiler) as llm:
        rule_set = RuleCompiler(llm).compile(["never auto-delete emails"])
"""

from ai_permissions.compiler.base import LLMAdapter
from ai_permissions.compiler.compiler import (
    COMPILER_PROMPT,
    STARTER_RULES,
    RuleCompiler,
    build_prompt,
    parse_plain_rules,
    write_starter_rules,
)
from ai_permissions.compiler.providers import (
    PROVIDER_PRESETS,
    OpenAICompatibleAdapter,
    ProviderPreset,
    create_adapter,
)

__all__ = [
    "COMPILER_PROMPT",
    "LLMAdapter",
    "OpenAICompatibleAdapter",
    "PROVIDER_PRESETS",
    "ProviderPreset",
    "RuleCompiler",
    "STARTER_RULES",
    "build_prompt",
    "create_adapter",
    "parse_plain_rules",
    "write_starter_rules",
]
