"""CLI main entry point."""

import asyncio
import json
import logging
from pathlib import Path

import click

from .config import Config
from .db import close_db, open_store_db
from .definition import FormDefinition, lint_definition, load_definition, parse_definition
from .enums import FieldType, NavigationAction, ScopeKind, StoreType
from .errors import FormflowException, ValidationError
from .log import setup as setup_log
from .storages import get_store
from .submission import SubmissionScope
from .uploads import CloudinaryUploader, UploadFile
from .visibility import resolve_visibility, visible_section_indexes
from .wizard import WizardController

logger = logging.getLogger(__name__)


def _load_config(path: str) -> Config:
    if Path(path).exists():
        return Config.load_from_file(path)
    logger.debug(f"Configuration file {path} not found, using defaults")
    return Config()


def _read_json(path: str):
    try:
        return json.loads(Path(path).read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise click.ClickException(f"{path} is not valid JSON: {e}")


def initialize_store(cfg: Config):
    """Open the configured store, creating the SQLite schema when needed."""
    if cfg.store.type == StoreType.DB:
        open_store_db(cfg.store.path)
    return get_store(config=cfg)


def _kind(activity: bool) -> ScopeKind:
    return ScopeKind.ACTIVITY if activity else ScopeKind.FORM


@click.group()
@click.option("--config", "-c", default="config.toml", help="Configuration file path")
@click.pass_context
def cli(ctx, config: str):
    """formflow - multi-section form engine."""
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config
    setup_log(console_level="WARNING")


@cli.command(name="check")
@click.argument("file", type=click.Path(exists=True, dir_okay=False))
@click.option("--activity", is_flag=True, default=False, help="Treat as an activity registration form")
def check(file: str, activity: bool):
    """Parse a definition file and report structural problems."""
    try:
        definition = parse_definition(_read_json(file), _kind(activity))
    except FormflowException as e:
        raise click.ClickException(str(e))

    field_count = sum(1 for _ in definition.iter_fields())
    click.echo(f"{definition.title or definition.id}: {len(definition.sections)} sections, {field_count} fields")

    warnings = lint_definition(definition)
    for warning in warnings:
        click.echo(f"  warning: {warning}")
    if warnings:
        raise SystemExit(1)


@cli.command(name="resolve")
@click.argument("file", type=click.Path(exists=True, dir_okay=False))
@click.option(
    "--answers",
    "answers_file",
    required=True,
    type=click.Path(exists=True, dir_okay=False),
    help="JSON object of field id to answer",
)
@click.option("--activity", is_flag=True, default=False, help="Treat as an activity registration form")
def resolve(file: str, answers_file: str, activity: bool):
    """Print the sections visible for a set of answers."""
    try:
        definition = parse_definition(_read_json(file), _kind(activity))
    except FormflowException as e:
        raise click.ClickException(str(e))

    answers = _read_json(answers_file)
    if not isinstance(answers, dict):
        raise click.ClickException("Answers file must contain a JSON object")

    walk = resolve_visibility(definition, answers)
    for index in visible_section_indexes(definition, answers):
        section = definition.sections[index]
        click.echo(f"{index}\t{section.id}\t{section.title}")
    if walk.terminated:
        click.echo(f"(submits after {walk.last})")


@cli.command(name="import")
@click.argument("file", type=click.Path(exists=True, dir_okay=False))
@click.pass_context
def import_definition(ctx, file: str):
    """Validate a definition file and save it to the definition store."""
    try:
        cfg = _load_config(ctx.obj["config_path"])
        document = _read_json(file)
        parse_definition(document)
        store = initialize_store(cfg)
        form_id = store.save_form_definition(document)
        click.echo(f"Imported {form_id}")
    except FormflowException as e:
        logger.error(f"Import failed: {e}", exc_info=True)
        raise click.ClickException(str(e))
    finally:
        close_db()


def _prompt_field(controller: WizardController, field) -> None:
    current = controller.answers.get(field.id)

    if field.type == FieldType.CHECKBOX:
        labels = [o.label for o in field.options]
        click.echo(f"  options: {', '.join(labels)}")
        raw = click.prompt(field.label, default=",".join(current or []), show_default=bool(current))
        controller.set_answer(field.id, [v.strip() for v in raw.split(",") if v.strip()])
    elif field.type in (FieldType.SELECT, FieldType.RADIO):
        labels = [o.label for o in field.options]
        value = click.prompt(
            field.label,
            type=click.Choice(labels),
            default=current or None,
            show_default=bool(current),
        )
        controller.set_answer(field.id, value)
    else:
        value = click.prompt(
            field.label,
            default=current or "",
            show_default=bool(current),
        )
        controller.set_answer(field.id, value.strip())
    controller.blur(field.id)


async def _prompt_upload(controller: WizardController, field) -> None:
    raw = click.prompt(f"{field.label} (comma separated paths)", default="", show_default=False)
    files = []
    for name in (p.strip() for p in raw.split(",")):
        if not name:
            continue
        path = Path(name)
        if not path.is_file():
            click.echo(f"  skipping {name}: not a file")
            continue
        files.append(UploadFile(name=path.name, content=path.read_bytes()))
    if files:
        uploaded = await controller.upload(field.id, files)
        click.echo(f"  uploaded {len(uploaded)} of {len(files)} files")


async def _fill_section(controller: WizardController) -> None:
    asked = set()
    while not controller.submitted:
        pending = [f for f in controller.current_fields() if f.id not in asked]
        if not pending:
            return
        field = pending[0]
        asked.add(field.id)

        if field.is_presentational:
            click.echo(f"  {field.label}")
            continue

        while True:
            if field.type == FieldType.FILE:
                await _prompt_upload(controller, field)
            else:
                _prompt_field(controller, field)
            await controller.wait_idle()
            if controller.submitted:
                return
            try:
                controller.ensure_field_valid(field.id)
            except ValidationError as e:
                click.echo(f"  {e.message}")
                continue
            break


async def run_session(controller: WizardController) -> bool:
    """Drive a controller from the terminal until it submits or the user quits."""
    definition: FormDefinition = controller.definition
    click.echo(definition.title)

    while not controller.submitted:
        section = controller.current_section
        progress = controller.progress()
        click.echo(f"\nSection {progress.position} of {progress.total}: {section.title}")
        if section.description:
            click.echo(section.description)

        await _fill_section(controller)
        if controller.submitted:
            break

        last = controller.is_last_step
        forward = "s" if last else "n"
        choice = click.prompt(
            f"{'[s]ubmit' if last else '[n]ext'}, [b]ack or [q]uit",
            type=click.Choice([forward, "b", "q"]),
            default=forward,
        )
        if choice == "q":
            return False
        if choice == "b":
            controller.retreat()
            continue
        result = await controller.advance()

        if result.message:
            click.echo(result.message)
        for error in result.errors:
            click.echo(f"  - {error.field}: {error.message}")
        if result.action == NavigationAction.FAILED and not click.confirm("Retry?", default=True):
            return False

    result = controller.last_result
    if result is not None and result.submission is not None:
        click.echo(f"Submitted ({result.submission.status.value}): {result.submission.submission_id}")
    return True


@cli.command(name="run")
@click.argument("form_id")
@click.option("--activity", "activity_id", default=None, help="Register for this activity instead")
@click.option("--paid/--free", default=True, help="Whether the activity collects payment")
@click.pass_context
def run(ctx, form_id: str, activity_id: str, paid: bool):
    """Fill in a stored form interactively."""
    try:
        cfg = _load_config(ctx.obj["config_path"])
        setup_log(logfile=cfg.get_log_file(), console_level="WARNING")
        store = initialize_store(cfg)

        kind = ScopeKind.ACTIVITY if activity_id else ScopeKind.FORM
        definition = load_definition(store, form_id, kind)
        if activity_id:
            scope = SubmissionScope.activity(activity_id, definition.title, is_paid=paid)
        else:
            scope = SubmissionScope.form(definition.id, definition.title)

        uploader = CloudinaryUploader(cfg.upload) if cfg.upload.enabled else None
        controller = WizardController.from_config(definition, scope, store, cfg, uploader=uploader)
        controller.reset_delay = None

        if not asyncio.run(run_session(controller)):
            click.echo("Aborted")
    except FormflowException as e:
        logger.error(f"Application error: {e}", exc_info=True)
        raise click.ClickException(str(e))
    finally:
        close_db()


def main():
    cli()


if __name__ == "__main__":
    main()
