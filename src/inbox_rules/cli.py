"""
Command-line interface for the rule engine.

CLI Structure:
    python main.py parse "ignore everyone from acme.com" [--action SUPPRESS]
    python main.py add --type DOMAIN --pattern acme.com --action SUPPRESS
    python main.py list
    python main.py delete <RULE_ID>
    python main.py import rules.json
    python main.py import-csv contacts.csv [--action SUPPRESS] [--dry-run]
    python main.py sweep
    python main.py audit [--limit 20]
"""
import json
import sys
from pathlib import Path
from typing import Any, Optional

import click

from inbox_rules import __version__
from inbox_rules.config import ConfigError, load_settings
from inbox_rules.engine import RuleEngine
from inbox_rules.errors import RuleEngineError, ValidationError
from inbox_rules.logging_config import init_logging
from inbox_rules.logging_context import set_actor
from inbox_rules.models import RuleAction, RuleType

ACTION_CHOICE = click.Choice([action.value for action in RuleAction], case_sensitive=False)
TYPE_CHOICE = click.Choice([rule_type.value for rule_type in RuleType], case_sensitive=False)


def _echo_json(data: Any) -> None:
    click.echo(json.dumps(data, indent=2, ensure_ascii=False))


def _fail(message: str) -> None:
    click.echo(message, err=True)
    sys.exit(1)


def _get_engine(ctx: click.Context) -> RuleEngine:
    """
    Lazy construction of the engine.
    Only loads config when a command needs it (not for --help).
    """
    engine = ctx.obj.get('engine')
    if engine is not None:
        return engine

    try:
        settings = load_settings(ctx.obj['config_path'], ctx.obj['env_path'])
    except ConfigError as e:
        _fail(f"Configuration error [{e.code}]: {e}")

    try:
        engine = RuleEngine(settings)
    except RuleEngineError as e:
        _fail(f"Error: {e}")

    ctx.obj['engine'] = engine
    ctx.call_on_close(engine.close)
    return engine


def _run(operation):
    """Run ``operation`` and turn engine errors into a non-zero exit."""
    try:
        return operation()
    except ValidationError as e:
        lines = [f"Error: {e}"]
        for issue in e.issues:
            lines.append(f"  record {issue['index']}: {'; '.join(issue['errors'])}")
        _fail("\n".join(lines))
    except RuleEngineError as e:
        _fail(f"Error: {e}")


@click.group()
@click.version_option(version=__version__, prog_name='inbox-rules')
@click.option(
    '--config',
    type=click.Path(path_type=Path),
    default=None,
    help='Path to YAML configuration file (default: built-in defaults)'
)
@click.option(
    '--env',
    type=click.Path(path_type=Path),
    default='.env',
    help='Path to .env secrets file (default: .env)'
)
@click.option(
    '--log-level',
    type=click.Choice(['DEBUG', 'INFO', 'WARNING', 'ERROR'], case_sensitive=False),
    default='WARNING',
    help='Console log level (default: WARNING)'
)
@click.option('--actor', default=None, help='Actor recorded in the audit log (default: system)')
@click.pass_context
def cli(ctx: click.Context, config: Optional[Path], env: Path, log_level: str, actor: Optional[str]):
    """
    Inbox-Rules: VIP/suppression rule engine

    Parse free-text rules, manage stored rules and sweep suppressed tasks.
    """
    ctx.ensure_object(dict)
    ctx.obj['config_path'] = str(config) if config else None
    ctx.obj['env_path'] = str(env)
    ctx.obj['actor'] = actor

    init_logging(overrides={
        'level': log_level.upper(),
        'handlers': {'console': {'level': log_level.upper()}}
    })
    set_actor(actor)


@cli.command()
@click.argument('text')
@click.option('--action', type=ACTION_CHOICE, default=None, help='Action when the text does not state one')
@click.pass_context
def parse(ctx: click.Context, text: str, action: Optional[str]):
    """Parse TEXT into a rule draft (nothing is stored)."""
    engine = _get_engine(ctx)
    _echo_json(_run(lambda: engine.parse(text, default_action=action, actor=ctx.obj['actor'])))


@cli.command()
@click.option('--type', 'rule_type', type=TYPE_CHOICE, required=True, help='Rule type')
@click.option('--pattern', required=True, help='Email, domain or topic to match')
@click.option('--action', type=ACTION_CHOICE, required=True, help='VIP or SUPPRESS')
@click.option('--unless', 'unless_contains', default=None, help='Exception substring')
@click.option('--notes', default=None, help='Free text notes')
@click.pass_context
def add(ctx: click.Context, rule_type: str, pattern: str, action: str, unless_contains: Optional[str], notes: Optional[str]):
    """Create one rule."""
    engine = _get_engine(ctx)
    payload = {
        'type': rule_type,
        'pattern': pattern,
        'action': action,
        'unless_contains': unless_contains,
        'notes': notes,
    }
    _echo_json(_run(lambda: engine.create_rule(payload, actor=ctx.obj['actor'])))


@cli.command(name='list')
@click.pass_context
def list_rules(ctx: click.Context):
    """List rules, newest first."""
    engine = _get_engine(ctx)
    _echo_json(_run(engine.list_rules))


@cli.command()
@click.argument('rule_id')
@click.pass_context
def delete(ctx: click.Context, rule_id: str):
    """Delete the rule RULE_ID."""
    engine = _get_engine(ctx)
    _echo_json(_run(lambda: engine.delete_rule(rule_id, actor=ctx.obj['actor'])))


@cli.command(name='import')
@click.argument('path', type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.pass_context
def import_rules(ctx: click.Context, path: Path):
    """Bulk import rules from a JSON file (array of rule records)."""
    try:
        payload = json.loads(path.read_text(encoding='utf-8'))
    except (OSError, ValueError) as e:
        _fail(f"Error: cannot read {path}: {e}")

    if isinstance(payload, dict):
        payload = payload.get('rules')
    if not isinstance(payload, list):
        _fail("Error: expected a JSON array of rules (or an object with a 'rules' array)")

    engine = _get_engine(ctx)
    _echo_json(_run(lambda: engine.import_rules(payload, actor=ctx.obj['actor'])))


@cli.command(name='import-csv')
@click.argument('path', type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option('--action', type=ACTION_CHOICE, default=None, help='Default action for rows that do not state one')
@click.option('--dry-run', is_flag=True, default=False, help='Show the preview without importing')
@click.pass_context
def import_csv(ctx: click.Context, path: Path, action: Optional[str], dry_run: bool):
    """Analyze a CSV file of rules and import the preview."""
    engine = _get_engine(ctx)
    analysis = _run(lambda: engine.analyze_csv(path.read_text(encoding='utf-8'), default_action=action))

    if dry_run or not analysis['preview']:
        _echo_json(analysis)
        return

    result = _run(lambda: engine.import_rules(analysis['preview'], actor=ctx.obj['actor']))
    _echo_json({'summary': analysis['summary'], 'errors': analysis['errors'], 'count': result['count']})


@cli.command()
@click.pass_context
def sweep(ctx: click.Context):
    """Delete tasks that match a SUPPRESS rule."""
    engine = _get_engine(ctx)
    _echo_json(_run(engine.run_sweep))


@cli.command()
@click.option('--limit', type=int, default=None, help='Number of events to show')
@click.pass_context
def audit(ctx: click.Context, limit: Optional[int]):
    """Show recent audit events, newest first."""
    engine = _get_engine(ctx)
    _echo_json(_run(lambda: engine.audit_events(limit)))


def main() -> None:
    cli(obj={})


if __name__ == '__main__':
    main()
