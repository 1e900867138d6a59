"""notetree CLI: a directory of notes organised into nested groups.

Commands:
    notetree init                          create notetree.toml + notes dir
    notetree tree                          print the group tree
    notetree note create NAME [-g GROUP]   new note (title/id/date header)
    notetree note show PATH                print a note's header and body
    notetree note rename PATH NEW_NAME
    notetree note move PATH GROUP
    notetree note attach PATH FILE         copy FILE into .assets, print the link
    notetree note delete PATH
    notetree group create PATH
    notetree group rename PATH NEW_NAME
    notetree group move PATH [TARGET]      TARGET omitted: move to the root
    notetree group delete PATH
    notetree watch                         print change batches until Ctrl-C
"""

from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import TypeVar

import click

from notetree.config import NoteTreeConfig, init_config, load_config
from notetree.errors import Result, StoreError
from notetree.models import DEFAULT_GROUP, ChangeEvent, Group, new_note_content
from notetree.store import NoteStore

T = TypeVar("T")

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _load_cfg() -> NoteTreeConfig:
    try:
        return load_config()
    except Exception as exc:
        raise click.ClickException(str(exc)) from exc


def _open_store() -> NoteStore:
    cfg = _load_cfg()
    return NoteStore.from_config(cfg)


def _unwrap(result: Result[T]) -> T:
    try:
        return result.unwrap()
    except StoreError as exc:
        raise click.ClickException(str(exc)) from exc


def _render_group(group: Group, depth: int) -> list[str]:
    pad = "  " * depth
    label = f"{group.name}/" if not group.is_default else f"({DEFAULT_GROUP})"
    lines = [f"{pad}{label}"]
    lines.extend(f"{pad}  {note.name}" for note in group.notes)
    for child in group.children:
        lines.extend(_render_group(child, depth + 1))
    return lines


# ---------------------------------------------------------------------------
# Root group
# ---------------------------------------------------------------------------


@click.group()
@click.version_option(package_name="notetree")
def cli() -> None:
    """notetree: hierarchical notes stored as plain files."""


# ---------------------------------------------------------------------------
# notetree init / tree
# ---------------------------------------------------------------------------


@cli.command()
@click.option("--dir", "root", default=".", show_default=True, help="Project root")
@click.option("--notes-dir", default=None, help="Notes directory, relative to the project root")
def init(root: str, notes_dir: str | None) -> None:
    """Create notetree.toml and the notes directory."""
    root_path = Path(root).resolve()
    try:
        config_path = init_config(root_path, notes_dir=notes_dir)
        click.echo(f"Created {config_path}")
    except FileExistsError:
        click.echo("notetree.toml already exists, skipping init")

    cfg = load_config(root_path)
    cfg.ensure_dirs()
    click.echo(f"Notes dir : {cfg.notes_dir}")


@cli.command()
def tree() -> None:
    """Print every group and note, default group first."""
    store = _open_store()
    groups = store.tree()
    lines: list[str] = []
    for group in groups:
        lines.extend(_render_group(group, 0))
    click.echo("\n".join(lines))
    total = sum(g.note_count() for g in groups)
    click.echo(f"{total} notes, {sum(1 for g in groups for _ in g.walk()) - 1} groups")


# ---------------------------------------------------------------------------
# notetree note ...
# ---------------------------------------------------------------------------


@cli.group()
def note() -> None:
    """Create, show, rename, move and delete notes."""


@note.command("create")
@click.argument("name")
@click.option("-g", "--group", default=DEFAULT_GROUP, show_default=True, help="Group path, e.g. Work/Meetings")
@click.option("--body", default="", help="Initial body text")
@click.option("--title", default=None, help="Header title (defaults to NAME)")
@click.option("--plain", is_flag=True, help="Write the body only, without a header block")
def note_create(name: str, group: str, body: str, title: str | None, plain: bool) -> None:
    """Create a new note.

    \b
    notetree note create standup -g Work/Meetings --body "- ship it"
    """
    store = _open_store()
    content = body if plain else new_note_content(title or name, body)
    created = _unwrap(store.create_note(name, group, content))
    click.echo(f"Created {created.path}")


@note.command("show")
@click.argument("path")
def note_show(path: str) -> None:
    """Print a note. PATH is relative to the notes dir (Work/plan.md)."""
    store = _open_store()
    doc = _unwrap(store.read_note(path))
    if doc.header:
        if doc.title:
            click.echo(f"# {doc.title}")
        meta = "  ".join(f"{k}: {v}" for k, v in (("id", doc.id), ("date", doc.date)) if v)
        if meta:
            click.echo(meta)
        click.echo()
    click.echo(doc.body)


@note.command("rename")
@click.argument("path")
@click.argument("new_name")
def note_rename(path: str, new_name: str) -> None:
    """Rename a note within its group."""
    store = _open_store()
    new_path = _unwrap(store.rename_note(path, new_name))
    click.echo(f"Renamed -> {new_path}")


@note.command("move")
@click.argument("path")
@click.argument("group")
def note_move(path: str, group: str) -> None:
    """Move a note into GROUP ('default' for the root)."""
    store = _open_store()
    new_path = _unwrap(store.move_note(path, group))
    click.echo(f"Moved -> {new_path}")


@note.command("attach")
@click.argument("path")
@click.argument("file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--name", default=None, help="Attachment name (default: the file's name).")
def note_attach(path: str, file: Path, name: str | None) -> None:
    """Copy FILE into the .assets directory beside a note and print its link."""
    store = _open_store()
    ref = _unwrap(store.add_asset(path, name or file.name, file.read_bytes()))
    click.echo(ref)


@note.command("delete")
@click.argument("path")
def note_delete(path: str) -> None:
    """Delete a note file."""
    store = _open_store()
    _unwrap(store.delete_note(path))
    click.echo(f"Deleted {path}")


# ---------------------------------------------------------------------------
# notetree group ...
# ---------------------------------------------------------------------------


@cli.group()
def group() -> None:
    """Create, rename, move and delete groups."""


@group.command("create")
@click.argument("path")
def group_create(path: str) -> None:
    """Create a group and any missing ancestors (idempotent)."""
    store = _open_store()
    created = _unwrap(store.create_group(path))
    click.echo(f"Group {created}")


@group.command("rename")
@click.argument("path")
@click.argument("new_name")
def group_rename(path: str, new_name: str) -> None:
    """Rename the last segment of a group."""
    store = _open_store()
    new_path = _unwrap(store.rename_group(path, new_name))
    click.echo(f"Renamed -> {new_path}")


@group.command("move")
@click.argument("path")
@click.argument("target", required=False, default="")
def group_move(path: str, target: str) -> None:
    """Move a group under TARGET, or to the top level when TARGET is omitted."""
    store = _open_store()
    new_path = _unwrap(store.move_group(path, target))
    click.echo(f"Moved -> {new_path}")


@group.command("delete")
@click.argument("path")
@click.option("--yes", is_flag=True, help="Do not ask for confirmation")
def group_delete(path: str, yes: bool) -> None:
    """Delete a group with all its notes and subgroups."""
    if not yes:
        click.confirm(f"Delete group {path} and everything in it?", abort=True)
    store = _open_store()
    _unwrap(store.delete_group(path))
    click.echo(f"Deleted {path}")


# ---------------------------------------------------------------------------
# notetree watch
# ---------------------------------------------------------------------------


@cli.command()
def watch() -> None:
    """Print each change batch and the re-scanned counts until interrupted."""
    cfg = _load_cfg()
    logging.basicConfig(level=cfg.logging.level, format="%(asctime)s %(name)s %(message)s")
    store = NoteStore.from_config(cfg)

    def report(events: list[ChangeEvent]) -> None:
        for event in events:
            suffix = f"  ({event.message})" if event.message else ""
            click.echo(f"{event.kind.value:<12} {event.path}{suffix}")
        result = store.scan()
        click.echo(f"-- {len(result.notes)} notes, {len(result.groups)} groups")

    store.on_change(report)
    watcher = store.start_watching()
    click.echo(f"Watching {store.root} ({watcher.backend_name}), Ctrl-C to stop")
    try:
        while store.watching:
            time.sleep(0.5)
    except KeyboardInterrupt:
        pass
    finally:
        store.stop_watching()


if __name__ == "__main__":
    cli()
