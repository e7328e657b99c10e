"""CLI entry point for tiered-release."""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path
from typing import Any

import click

from tiered_release.changelog import CommandChangelogGenerator
from tiered_release.config import ReleaseConfig, load_config
from tiered_release.errors import PlanNotFoundError, ReleaseError
from tiered_release.executor import PARENT_LABEL, ReleaseExecutor
from tiered_release.graph import DependencyGraph
from tiered_release.models import (
    ApplyResult,
    BumpType,
    ReleasePlan,
    ReleaseSelectionCriteria,
)
from tiered_release.planner import ReleasePlanner
from tiered_release.resolver import VersionResolver
from tiered_release.shell import print_table, step, warn
from tiered_release.store import PlanStore
from tiered_release.vcs import GitRunner
from tiered_release.workspace import find_root, load_graph


class ReleaseGroup(click.Group):
    """Group that reports any ReleaseError as a clean CLI failure."""

    def invoke(self, ctx: click.Context) -> Any:
        try:
            return super().invoke(ctx)
        except ReleaseError as exc:
            raise click.ClickException(str(exc)) from exc


class Session:
    """Everything a command needs, built once per invocation."""

    def __init__(self, root: Path, dry_run: bool) -> None:
        self.root = root
        self.dry_run = dry_run
        self.config: ReleaseConfig = load_config(root)
        self.git = GitRunner(
            dry_run=dry_run,
            timeout=self.config.timeout,
            retries=self.config.retries,
            remote=self.config.remote,
        )
        self.store = PlanStore(dry_run=dry_run)

    def planner(self) -> ReleasePlanner:
        changelog = None
        if self.config.changelog_command:
            changelog = CommandChangelogGenerator(self.config.changelog_command)
        resolver = VersionResolver(self.git, self.config, changelog)
        return ReleasePlanner(resolver, self.store, self.config)

    def executor(self) -> ReleaseExecutor:
        return ReleaseExecutor(self.git, self.config, self.store)


def _session(ctx: click.Context, root: Path | None = None) -> Session:
    obj = ctx.find_root().obj
    return Session(root or obj["root"] or find_root(), obj["dry_run"])


def _store(ctx: click.Context) -> PlanStore:
    return PlanStore(dry_run=ctx.find_root().obj["dry_run"])


def _split(ctx: click.Context, param: click.Parameter, value: tuple[str, ...]) -> tuple[str, ...]:
    """Accept both repeated options and comma-separated lists."""
    names: list[str] = []
    for item in value:
        names.extend(part.strip() for part in item.split(",") if part.strip())
    return tuple(dict.fromkeys(names))


def plan_options(func: Callable[..., Any]) -> Callable[..., Any]:
    """Options shared by 'release plan' and the one-step 'release'."""
    options = [
        click.option(
            "--repos",
            multiple=True,
            callback=_split,
            help="Repositories to release (default: all with changes).",
        ),
        click.option(
            "--major", multiple=True, callback=_split, help="Force a major bump for these."
        ),
        click.option(
            "--minor", multiple=True, callback=_split, help="Force a minor bump for these."
        ),
        click.option(
            "--patch", multiple=True, callback=_split, help="Force a patch bump for these."
        ),
        click.option("--with-deps", is_flag=True, help="Also release dependencies of --repos."),
        click.option("--skip-parent", is_flag=True, help="Do not commit or tag the parent."),
        click.option(
            "--llm-changelog",
            is_flag=True,
            help="Draft changelogs with the configured changelog command.",
        ),
    ]
    for option in reversed(options):
        func = option(func)
    return func


def apply_options(func: Callable[..., Any]) -> Callable[..., Any]:
    func = click.option(
        "--force", is_flag=True, help="Release despite dirty trees or wrong branches."
    )(func)
    func = click.option(
        "--push/--no-push", default=True, show_default=True, help="Push tags and the parent."
    )(func)
    return func


def _criteria(**kwargs: Any) -> ReleaseSelectionCriteria:
    return ReleaseSelectionCriteria(
        repos=kwargs["repos"],
        major=kwargs["major"],
        minor=kwargs["minor"],
        patch=kwargs["patch"],
        with_deps=kwargs["with_deps"],
        skip_parent=kwargs["skip_parent"],
        llm_changelog=kwargs["llm_changelog"],
    )


def show_plan(plan: ReleasePlan) -> None:
    """Print a plan for review."""
    step(f"Release plan ({plan.created_at:%Y-%m-%d %H:%M} UTC)")
    rows = []
    for name in sorted(plan.repos):
        row = plan.repos[name]
        rows.append(
            (
                name,
                row.current_version,
                row.selected_bump.value,
                row.next_version,
                row.status.value,
                row.execution.value if row.selected else "-",
            )
        )
    print_table(("REPOSITORY", "CURRENT", "BUMP", "NEXT", "STATUS", "EXECUTION"), rows)

    print()
    for name in plan.selected_repos():
        row = plan.repos[name]
        print(f"  {name}: {row.suggestion_reasoning} (suggested {row.suggested_bump.value})")
        if row.changelog_path:
            print(f"    changelog: {row.changelog_path}")
        if row.last_error:
            print(f"    last error: {row.last_error}")

    print()
    for idx, level in enumerate(plan.release_levels):
        print(f"  Level {idx}: {', '.join(level)}")
    if plan.skip_parent:
        print("  Parent: skipped")
    elif plan.parent_version:
        current = plan.parent_current_version or "<none>"
        print(f"  Parent: {current} → {plan.parent_version}")


def _report(result: ApplyResult) -> None:
    if result.released:
        click.echo("Released: " + ", ".join(f"{n}@{v}" for n, v in sorted(result.released.items())))
    if result.already_done:
        click.echo("Already done: " + ", ".join(sorted(result.already_done)))
    if result.parent_version:
        click.echo(f"Parent: {result.parent_version}")


def _generate(session: Session, **kwargs: Any) -> tuple[ReleasePlan, DependencyGraph]:
    if kwargs["llm_changelog"] and not session.config.changelog_command:
        warn("--llm-changelog ignored: no changelog-command configured")
    dep_graph = load_graph(session.root, session.config)
    plan = session.planner().generate(session.root, dep_graph, _criteria(**kwargs))
    show_plan(plan)
    return plan, dep_graph


@click.group(cls=ReleaseGroup)
@click.version_option(package_name="tiered-release")
@click.option(
    "--root",
    type=click.Path(exists=True, file_okay=False, path_type=Path),
    default=None,
    help="Parent repository (default: nearest directory with a .gitmodules).",
)
@click.option("--dry-run", is_flag=True, help="Print mutating git commands instead of running them.")
@click.pass_context
def cli(ctx: click.Context, root: Path | None, dry_run: bool) -> None:
    """Release git submodules in dependency order."""
    ctx.obj = {"root": root.resolve() if root else None, "dry_run": dry_run}


@cli.command()
@click.pass_context
def graph(ctx: click.Context) -> None:
    """Print the release levels of the workspace."""
    session = _session(ctx)
    dep_graph = load_graph(session.root, session.config)
    for idx, level in enumerate(dep_graph.topological_sort()):
        click.echo(f"Level {idx}:")
        for name in level:
            node = dep_graph.node(name)
            if node.external:
                click.echo(f"  {name} (external)")
                continue
            deps = dep_graph.dependency_names(name)
            arrow = f" → [{', '.join(deps)}]" if deps else ""
            click.echo(f"  {name} ({node.module_path}){arrow}")


@cli.group(invoke_without_command=True)
@plan_options
@apply_options
@click.pass_context
def release(ctx: click.Context, push: bool, force: bool, **kwargs: Any) -> None:
    """Plan, review and apply a release.

    Without a subcommand, plans, approves and applies in one go.
    """
    if ctx.invoked_subcommand is not None:
        return
    session = _session(ctx)
    plan, dep_graph = _generate(session, **kwargs)
    session.planner().approve(plan)
    _report(session.executor().apply(plan, dep_graph, force=force, push=push))


@release.command("plan")
@plan_options
@click.pass_context
def plan_cmd(ctx: click.Context, **kwargs: Any) -> None:
    """Compute versions and save a plan for review."""
    _generate(_session(ctx), **kwargs)
    click.echo("\nReview, then run 'tiered-release release approve --all' and 'apply'.")


@release.command()
@click.pass_context
def show(ctx: click.Context) -> None:
    """Print the saved plan."""
    show_plan(_store(ctx).load())


@release.command()
@click.argument("repos", nargs=-1)
@click.option("--all", "approve_all", is_flag=True, help="Approve every pending repository.")
@click.pass_context
def approve(ctx: click.Context, repos: tuple[str, ...], approve_all: bool) -> None:
    """Approve repositories in the saved plan."""
    if not repos and not approve_all:
        raise click.UsageError("Name repositories to approve or pass --all.")
    plan = _store(ctx).load()
    session = _session(ctx, Path(plan.root_dir))
    approved = session.planner().approve(plan, None if approve_all else repos)
    click.echo(f"Approved: {', '.join(approved) or 'nothing new'}")


@release.command()
@click.argument("repo")
@click.option(
    "--bump", "bump_type", type=click.Choice(["major", "minor", "patch"]), default=None
)
@click.option(
    "--select/--deselect", "selected", default=None, help="Include or leave out the repository."
)
@click.pass_context
def edit(ctx: click.Context, repo: str, bump_type: str | None, selected: bool | None) -> None:
    """Change the bump of, or (de)select, one repository."""
    if bump_type is None and selected is None:
        raise click.UsageError("Nothing to change: pass --bump, --select or --deselect.")
    plan = _store(ctx).load()
    session = _session(ctx, Path(plan.root_dir))
    row = session.planner().edit(
        plan,
        repo,
        bump_type=BumpType(bump_type) if bump_type else None,
        selected=selected,
    )
    state = "selected" if row.selected else "deselected"
    click.echo(f"{repo}: {row.current_version} → {row.next_version} ({state}, {row.status.value})")
    if plan.parent_version:
        click.echo(f"Parent: {plan.parent_version}")


@release.command("apply")
@apply_options
@click.pass_context
def apply_cmd(ctx: click.Context, push: bool, force: bool) -> None:
    """Tag and push the approved plan, level by level."""
    store = _store(ctx)
    last = None if store.exists() else store.load_last_release()
    if last is not None:
        click.echo(
            f"Nothing to apply: the release planned {last.created_at:%Y-%m-%d %H:%M} UTC "
            "already completed."
        )
        return
    plan = store.load()
    session = _session(ctx, Path(plan.root_dir))
    dep_graph = load_graph(session.root, session.config)
    _report(session.executor().apply(plan, dep_graph, force=force, push=push))


@release.command("undo-tag")
@click.option("--remote", is_flag=True, help="Also delete the tags from the remote.")
@click.option("--yes", is_flag=True, help="Do not ask for confirmation.")
@click.pass_context
def undo_tag(ctx: click.Context, remote: bool, yes: bool) -> None:
    """Delete the tags of the saved plan, or of the last completed release.

    The plan is saved again with its repositories back to pending, so the
    same release can be applied once whatever needed fixing is fixed.
    """
    store = _store(ctx)
    plan = store.load() if store.exists() else store.load_last_release()
    if plan is None:
        raise PlanNotFoundError("No release plan or completed release found - nothing to undo")
    session = _session(ctx, Path(plan.root_dir))

    tags = [f"{name}@{plan.repos[name].next_version}" for name in plan.selected_repos()]
    if not plan.skip_parent and plan.parent_version:
        tags.append(f"{PARENT_LABEL}@{plan.parent_version}")
    if not yes:
        where = "locally and on the remote" if remote else "locally"
        click.confirm(f"Remove {', '.join(tags)} {where}?", abort=True)

    dep_graph = load_graph(session.root, session.config)
    removed = session.executor().undo_tags(plan, dep_graph, remote=remote)
    click.echo("Removed: " + (", ".join(f"{n}@{t}" for n, t in removed.items()) or "nothing"))


@release.command()
@click.pass_context
def clear(ctx: click.Context) -> None:
    """Discard the saved plan and staged changelogs."""
    store = _store(ctx)
    if not store.exists():
        click.echo("No release plan to clear.")
        return
    store.clear()
    click.echo("Dry run: release plan kept." if store.dry_run else "Release plan cleared.")
