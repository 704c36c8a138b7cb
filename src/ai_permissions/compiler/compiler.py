"""
Natural-language rule compiler.

Turns plain-English statements ("never auto-delete emails", "ask me before
running commands") into the compiled rule JSON the decision engine reads.
An LLM does the translation; its output is repaired, validated and only
then accepted.

The plain rules file is YAML-ish: every line starting with ``-`` is one
statement. Everything else (comments, blank lines) is ignored.
"""

import logging
import re
from collections.abc import Sequence
from pathlib import Path

from ai_permissions.compiler.base import LLMAdapter
from ai_permissions.compiler.json_repair import parse_json_safely, validate_rules_json
from ai_permissions.errors import CompilerInvalidResponseError, CompilerParseError, InvalidRuleError
from ai_permissions.policy.rules import parse_rule
from ai_permissions.schema import RuleSet, save_rules

logger = logging.getLogger(__name__)

COMPILER_PROMPT = """You are a rule extractor. Convert user rules into structured JSON.

Rules:
- "don't allow" / "never" / "block" -> action: "block"
- "ask me" / "prompt me" / "before X" / "require approval" -> action: "require_approval" (NEVER "allow")
- "allow" -> action: "allow"

Output ONLY valid JSON: {"rules": [{"action": "...", "tool": "...", "reason": "..."}]}
Include tool names when inferable (e.g. gmail.delete, gmail.batchDelete for email delete).
Emit one rule per tool. Use "toolPattern" (a regular expression) instead of "tool" only
when a rule covers a whole family of tools, and "intentPattern" only when the rule depends
on what the user asked for.
"""

STARTER_RULES = """# AI Permissions - edit and run: ai-permissions compile
- block gmail.delete and gmail.batchDelete - never auto-delete emails
- require approval before exec, bash, or process - ask before running commands
- require approval before write, edit, apply_patch - ask before file changes
- allow read, search, list - safe read-only operations
"""

_STATEMENT_MARKUP = re.compile(r"""^-\s*["']?|["']?$""")


def parse_plain_rules(text: str) -> list[str]:
    """
    Pull rule statements out of a plain rules file.

    Example:
        parse_plain_rules('# mine\\n- "never delete emails"\\n') -> ["never delete emails"]
    """
    statements = []
    for line in text.splitlines():
        line = line.strip()
        if not line.startswith("-"):
            continue
        statement = _STATEMENT_MARKUP.sub("", line).strip()
        if statement:
            statements.append(statement)
    return statements


def build_prompt(statements: Sequence[str]) -> str:
    """Build the compiler prompt for a list of statements."""
    listed = "\n".join(f"- {s}" for s in statements)
    return f"{COMPILER_PROMPT}\n\nUser rules:\n{listed}"


def write_starter_rules(path: Path | str, overwrite: bool = False) -> Path:
    """Write the starter plain rules file unless one already exists."""
    path = Path(path).expanduser()
    if path.exists() and not overwrite:
        return path
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(STARTER_RULES, encoding="utf-8")
    return path


class RuleCompiler:
    """
    Compile natural-language statements into a RuleSet.

    Usage:
        with create_adapter(config.compiler) as llm:
            rule_set = RuleCompiler(llm).compile(["never delete emails"])

    Attributes:
        llm: Backend used for the translation
    """

    def __init__(self, llm: LLMAdapter):
        self.llm = llm

    def compile(self, statements: Sequence[str]) -> RuleSet:
        """
        Compile statements into rules.

        Raises:
            CompilerParseError: The reply held no usable JSON
            CompilerInvalidResponseError: The JSON is not a valid rules document
            CompilerError: Any backend failure from the adapter
        """
        statements = [s.strip() for s in statements if s and s.strip()]
        if not statements:
            return RuleSet(rules=[])

        raw = self.llm.complete(build_prompt(statements))

        parsed, error = parse_json_safely(raw)
        if error:
            raise CompilerParseError(
                provider=self.llm.provider,
                model=self.llm.model,
                raw_response=raw[:500],
                parse_error=error,
            )

        # Some models answer with the bare list
        if isinstance(parsed, list):
            parsed = {"rules": parsed}

        is_valid, validation_error = validate_rules_json(parsed)
        if not is_valid:
            raise CompilerInvalidResponseError(
                provider=self.llm.provider,
                model=self.llm.model,
                raw_response=raw[:500],
                validation_error=validation_error or "Unknown validation error",
            )

        try:
            rules = [parse_rule(record, index) for index, record in enumerate(parsed["rules"])]
        except InvalidRuleError as e:
            raise CompilerInvalidResponseError(
                provider=self.llm.provider,
                model=self.llm.model,
                raw_response=raw[:500],
                validation_error=e.message,
            ) from e

        logger.info("Compiled %d statement(s) into %d rule(s)", len(statements), len(rules))
        return RuleSet(rules=rules)

    def compile_file(self, input_path: Path | str, output_path: Path | str) -> RuleSet:
        """
        Compile a plain rules file and write the rules JSON.

        Raises:
            OSError: If the input cannot be read or the output written
        """
        text = Path(input_path).expanduser().read_text(encoding="utf-8")
        rule_set = self.compile(parse_plain_rules(text))
        save_rules(output_path, rule_set.rules)
        return rule_set
