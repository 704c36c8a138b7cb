"""
CLI entry point for the AI Permissions Layer.

Commands:
    compile     Compile plain-English rules into rules JSON with an LLM
    check       Dry-run the decision for a single tool call
    rules       List the compiled rules
    allow       Approve a tool forever (append an allow rule)
    doctor      Check the environment, config, rules and LLM endpoint

The CLI only parses arguments and prints; decisions come from
:class:`ai_permissions.engine.DecisionEngine`.
"""

import json
import logging
import sys
import traceback
from pathlib import Path
from typing import Annotated, Any, Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table

from ai_permissions import __version__
from ai_permissions.compiler import RuleCompiler, create_adapter, write_starter_rules
from ai_permissions.engine import DecisionEngine
from ai_permissions.errors import ConfigLoadError, PermissionsError, RulesLoadError
from ai_permissions.policy import create_allow_rule
from ai_permissions.schema import (
    DEFAULT_CONFIG_PATH,
    DEFAULT_PLAIN_RULES_PATH,
    Decision,
    EngineConfig,
    Intent,
    RuleAction,
    ToolCall,
    load_engine_config,
    load_engine_config_or_default,
    load_rules,
    save_rules,
)

app = typer.Typer(
    name="ai-permissions",
    help="Decide which agent tool calls run, get blocked, or need your approval.",
    add_completion=False,
    no_args_is_help=True,
)

console = Console()
err_console = Console(stderr=True)


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"[bold]ai-permissions[/bold] version {__version__}")
        raise typer.Exit()


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=err_console, show_path=False)],
        force=True,
    )


@app.callback()
def main(
    version: Annotated[
        Optional[bool],
        typer.Option(
            "--version",
            "-v",
            help="Show version and exit.",
            callback=version_callback,
            is_eager=True,
        ),
    ] = None,
    verbose: Annotated[
        bool,
        typer.Option(
            "--verbose",
            help="Log engine and compiler activity to stderr.",
        ),
    ] = False,
) -> None:
    """
    AI Permissions Layer - natural-language permissions for agent tools.

    Write rules in plain English, compile them once, and every tool call is
    allowed, blocked, or held for a one-use approval.
    """
    _configure_logging(verbose)


def _load_config(config_path: Path | None) -> EngineConfig:
    """Strict when a config is named explicitly, lenient for the default."""
    if config_path is not None:
        return load_engine_config(config_path)
    return load_engine_config_or_default()


def _fail(error_type: str, message: str, json_output: bool, debug: bool = False) -> None:
    if json_output:
        _output_json_error(error_type, message, debug)
    else:
        console.print(f"[red]{message}[/red]")
        if debug:
            console.print(f"[dim]{traceback.format_exc()}[/dim]")
    raise typer.Exit(code=1)


def _output_json_error(error_type: str, message: str, include_traceback: bool = False) -> None:
    """Output an error in JSON format."""
    output: dict[str, Any] = {
        "error": True,
        "error_type": error_type,
        "message": message,
    }
    if include_traceback:
        output["traceback"] = traceback.format_exc()
    print(json.dumps(output, indent=2))


# =============================================================================
# compile
# =============================================================================


@app.command("compile")
def compile_rules(
    input_path: Annotated[
        Optional[Path],
        typer.Argument(help="Plain rules file. Defaults to ~/.config/ai-permissions-layer/rules.yaml."),
    ] = None,
    output_path: Annotated[
        Optional[Path],
        typer.Argument(help="Compiled rules JSON. Defaults to the configured rules_path."),
    ] = None,
    provider: Annotated[
        Optional[str],
        typer.Option("--provider", help="LLM provider (openai, ollama, lm-studio, vllm)."),
    ] = None,
    model: Annotated[
        Optional[str],
        typer.Option("--model", "-m", help="Model name to compile with."),
    ] = None,
    base_url: Annotated[
        Optional[str],
        typer.Option("--base-url", help="OpenAI-compatible API base URL."),
    ] = None,
    config_path: Annotated[
        Optional[Path],
        typer.Option("--config", "-c", help="Engine config YAML."),
    ] = None,
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output results in JSON format."),
    ] = False,
    debug: Annotated[
        bool,
        typer.Option("--debug", help="Enable debug mode with full error tracebacks."),
    ] = False,
) -> None:
    """
    Compile plain-English rules into the JSON the engine reads.

    Each line starting with "-" in the input is one rule. When the default
    input file does not exist yet, a starter file is written first.

    Example:
        $ ai-permissions compile rules.yaml rules.json --provider ollama --model qwen2.5:7b
    """
    try:
        config = _load_config(config_path)
    except ConfigLoadError as e:
        _fail("config_load_error", str(e), json_output, debug)

    source = input_path or DEFAULT_PLAIN_RULES_PATH
    target = output_path or config.rules_path

    if not source.exists():
        if input_path is not None:
            _fail("input_not_found", f"Input file not found: {source}", json_output)
        write_starter_rules(source)
        if not json_output:
            console.print(f"[dim]Created {source} with starter rules.[/dim]")

    overrides = {
        key: value
        for key, value in {"provider": provider, "model": model, "base_url": base_url}.items()
        if value is not None
    }
    compiler_config = config.compiler.model_copy(update=overrides)

    try:
        with create_adapter(compiler_config) as llm:
            rule_set = RuleCompiler(llm).compile_file(source, target)
    except PermissionsError as e:
        _fail(type(e).__name__, str(e), json_output, debug)
    except OSError as e:
        _fail("io_error", f"Cannot compile {source}: {e}", json_output, debug)

    if json_output:
        print(json.dumps({"output": str(target), **rule_set.to_record()}, indent=2))
    else:
        console.print(f"[green]✓[/green] Compiled {len(rule_set.rules)} rules to [bold]{target}[/bold]")


# =============================================================================
# check
# =============================================================================


@app.command()
def check(
    tool: Annotated[
        str,
        typer.Argument(help="Tool name, e.g. gmail.delete."),
    ],
    args_json: Annotated[
        str,
        typer.Option("--args", "-a", help="Tool arguments as a JSON object."),
    ] = "{}",
    intent: Annotated[
        str,
        typer.Option("--intent", "-i", help="What the user asked the agent to do."),
    ] = "",
    rules_path: Annotated[
        Optional[Path],
        typer.Option("--rules", "-r", help="Compiled rules JSON (overrides the config)."),
    ] = None,
    default_action: Annotated[
        Optional[RuleAction],
        typer.Option("--default", help="Action when no rule matches."),
    ] = None,
    config_path: Annotated[
        Optional[Path],
        typer.Option("--config", "-c", help="Engine config YAML."),
    ] = None,
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output results in JSON format."),
    ] = False,
) -> None:
    """
    Show what the engine would decide for one tool call.

    Exits 0 when the call would be allowed and 1 otherwise. Approval
    requests created here live only for this process.

    Example:
        $ ai-permissions check gmail.delete --args '{"id": "42"}'
    """
    try:
        config = _load_config(config_path)
    except ConfigLoadError as e:
        _fail("config_load_error", str(e), json_output)

    try:
        call_args = json.loads(args_json)
    except json.JSONDecodeError as e:
        _fail("invalid_args", f"--args is not valid JSON: {e}", json_output)
    if not isinstance(call_args, dict):
        _fail("invalid_args", "--args must be a JSON object", json_output)

    update: dict[str, Any] = {}
    if rules_path is not None:
        update["rules_path"] = rules_path
    if default_action is not None:
        update["default_when_no_match"] = default_action
    engine = DecisionEngine(config.model_copy(update=update), config_path=config_path)

    decision = engine.evaluate(ToolCall(tool_name=tool, args=call_args), Intent(text=intent))

    if json_output:
        print(json.dumps(decision.model_dump(mode="json"), indent=2))
    else:
        style = {
            Decision.ALLOW: "green",
            Decision.BLOCK: "red",
            Decision.REQUIRES_APPROVAL: "yellow",
        }[decision.decision]
        console.print(f"[{style}]{decision.decision.value}[/{style}] [bold]{tool}[/bold]")
        console.print(f"[dim]{escape(decision.reason)}[/dim]")

    raise typer.Exit(code=0 if decision.allowed else 1)


# =============================================================================
# rules
# =============================================================================


@app.command("rules")
def list_rules(
    rules_path: Annotated[
        Optional[Path],
        typer.Option("--rules", "-r", help="Compiled rules JSON (overrides the config)."),
    ] = None,
    config_path: Annotated[
        Optional[Path],
        typer.Option("--config", "-c", help="Engine config YAML."),
    ] = None,
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output results in JSON format."),
    ] = False,
) -> None:
    """
    List the compiled rules in evaluation order.

    Example:
        $ ai-permissions rules --rules ./rules.json
    """
    try:
        path = rules_path or _load_config(config_path).rules_path
        rules = load_rules(path)
    except (ConfigLoadError, RulesLoadError) as e:
        _fail(type(e).__name__, str(e), json_output)

    if json_output:
        print(json.dumps({"rules": [rule.to_record() for rule in rules]}, indent=2))
        return

    if not rules:
        console.print(f"[dim]No rules in {path}[/dim]")
        return

    table = Table(show_header=True, header_style="bold")
    table.add_column("#", style="dim", width=3)
    table.add_column("Action", width=16)
    table.add_column("Tool", style="cyan")
    table.add_column("Intent")
    table.add_column("Reason")

    action_styles = {
        RuleAction.BLOCK: "red",
        RuleAction.REQUIRE_APPROVAL: "yellow",
        RuleAction.ALLOW: "green",
    }
    for i, rule in enumerate(rules, 1):
        style = action_styles[rule.action]
        tool = rule.tool or f"/{rule.tool_pattern}/"
        table.add_row(
            str(i),
            f"[{style}]{rule.action.value}[/{style}]",
            escape(tool),
            escape(rule.intent_pattern or ""),
            escape(rule.reason),
        )

    console.print(table)
    console.print(f"[dim]{len(rules)} rule(s) from {path}[/dim]")


# =============================================================================
# allow
# =============================================================================


@app.command("allow")
def allow_forever(
    tool: Annotated[
        str,
        typer.Argument(help="Tool name to always allow, e.g. gmail.list."),
    ],
    rules_path: Annotated[
        Optional[Path],
        typer.Option("--rules", "-r", help="Compiled rules JSON (overrides the config)."),
    ] = None,
    config_path: Annotated[
        Optional[Path],
        typer.Option("--config", "-c", help="Engine config YAML."),
    ] = None,
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output results in JSON format."),
    ] = False,
) -> None:
    """
    Approve a tool forever by appending an allow rule.

    Block rules still win over the new rule. A missing rules file is
    created.

    Example:
        $ ai-permissions allow gmail.list
    """
    try:
        path = (rules_path or _load_config(config_path).rules_path).expanduser()
        rules = load_rules(path) if path.exists() else []
    except (ConfigLoadError, RulesLoadError) as e:
        _fail(type(e).__name__, str(e), json_output)

    new_rule = create_allow_rule(ToolCall(tool_name=tool))
    added = not any(r.action == RuleAction.ALLOW and r.tool == tool for r in rules)
    if added:
        try:
            save_rules(path, [*rules, new_rule])
        except OSError as e:
            _fail("io_error", f"Cannot write {path}: {e}", json_output)

    blocked_by = [r for r in rules if r.action == RuleAction.BLOCK and r.tool == tool]

    if json_output:
        print(json.dumps({
            "tool": tool,
            "added": added,
            "rule": new_rule.to_record() if added else None,
            "blocked_by": [r.to_record() for r in blocked_by],
            "rules_path": str(path),
        }, indent=2))
        return

    if added:
        console.print(f"[green]✓[/green] {escape(tool)} is now always allowed ([dim]{path}[/dim])")
    else:
        console.print(f"[dim]{escape(tool)} is already allowed in {path}[/dim]")
    if blocked_by:
        console.print(f"[yellow]A block rule for {escape(tool)} still takes priority.[/yellow]")


# =============================================================================
# doctor
# =============================================================================


@app.command()
def doctor(
    config_path: Annotated[
        Optional[Path],
        typer.Option("--config", "-c", help="Engine config YAML."),
    ] = None,
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output results in JSON format."),
    ] = False,
) -> None:
    """
    Check system environment and configuration.

    Verifies:
    - Python version (3.11+)
    - Engine config file
    - Compiled rules file
    - LLM endpoint used by compile

    Example:
        $ ai-permissions doctor
    """
    checks = []

    # Check 1: Python version
    py_version = sys.version_info
    py_ok = py_version >= (3, 11)
    checks.append({
        "name": "Python version",
        "ok": py_ok,
        "value": f"{py_version.major}.{py_version.minor}.{py_version.micro}",
        "message": "OK" if py_ok else "Requires Python 3.11+",
    })

    # Check 2: Engine config
    config_file = config_path or DEFAULT_CONFIG_PATH
    config = EngineConfig()
    if config_file.exists():
        try:
            config = load_engine_config(config_file)
            config_ok, config_message = True, "Valid"
        except ConfigLoadError as e:
            config_ok, config_message = False, e.message
    else:
        config_ok, config_message = config_path is None, "Not found (using defaults)"
    checks.append({
        "name": "Config",
        "ok": config_ok,
        "value": str(config_file),
        "message": config_message,
    })

    # Check 3: Compiled rules
    try:
        rules = load_rules(config.rules_path)
        rules_ok, rules_message = True, f"{len(rules)} rule(s)"
    except RulesLoadError as e:
        rules_ok, rules_message = False, f"{e.underlying_error}. Run: ai-permissions compile"
    checks.append({
        "name": "Rules",
        "ok": rules_ok,
        "value": str(config.rules_path),
        "message": rules_message,
    })

    # Check 4: LLM endpoint
    try:
        with create_adapter(config.compiler) as llm:
            llm_ok, llm_message = llm.check_connection()
            llm_value = f"{config.compiler.provider} {llm.base_url}"
    except PermissionsError as e:
        llm_ok, llm_message = False, e.message
        llm_value = config.compiler.provider
    checks.append({
        "name": "LLM endpoint",
        "ok": llm_ok,
        "value": llm_value,
        "message": llm_message,
    })

    all_ok = all(c["ok"] for c in checks)

    if json_output:
        print(json.dumps({"ok": all_ok, "version": __version__, "checks": checks}, indent=2))
    else:
        console.print(f"[bold]AI Permissions Doctor[/bold] v{__version__}")
        console.print()

        for c in checks:
            icon = "[green]✓[/green]" if c["ok"] else "[red]✗[/red]"
            if c["ok"]:
                console.print(f"{icon} {c['name']}: [dim]{c['value']}[/dim] - {c['message']}")
            else:
                console.print(f"{icon} {c['name']}: [dim]{c['value']}[/dim]")
                console.print(f"    [red]{escape(c['message'])}[/red]")

        console.print()
        if all_ok:
            console.print("[green]All checks passed![/green]")
        else:
            console.print("[yellow]Some checks failed. See above for details.[/yellow]")

    raise typer.Exit(code=0 if all_ok else 1)


if __name__ == "__main__":
    app()
