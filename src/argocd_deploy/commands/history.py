"""History inspection commands."""

import click

from argocd_deploy.core.context import DeployContext, pass_context
from argocd_deploy.core.exceptions import ResolutionError
from argocd_deploy.deploy.models import UNKNOWN
from argocd_deploy.deploy.resolver import RevisionResolver


@click.command()
@click.argument("app")
@click.option("-n", "--limit", type=int, default=10, help="Number of entries to show")
@pass_context
def history(ctx: DeployContext, app: str, limit: int) -> None:
    """Show deployment history, newest first.

    \b
    Examples:
        argocd-deploy history my-app
        argocd-deploy -o json history my-app -n 20
    """
    resolver = RevisionResolver(ctx.controller)
    try:
        entries = resolver.rollback_candidates(app, limit=limit)
        current = resolver.current_stable(app)
    except ResolutionError as e:
        ctx.output.print_error(str(e))
        raise click.Abort()

    if not entries:
        ctx.output.print_info(f"No history for {app}")
        return

    rows = [
        {
            "id": e.history_id,
            "revision": e.short_revision(),
            "deployed_at": e.deployed_at,
            "current": "*" if str(e.history_id) == current else "",
        }
        for e in entries
    ]
    ctx.output.print_data(rows, headers=["id", "revision", "deployed_at", "current"], title=f"History: {app}")


@click.command()
@click.argument("app")
@click.argument("token")
@pass_context
def resolve(ctx: DeployContext, app: str, token: str) -> None:
    """Resolve a history ID, commit SHA or 'previous' to a history ID.

    \b
    Examples:
        argocd-deploy resolve my-app 3f2a9c1
        argocd-deploy resolve my-app previous
    """
    resolver = RevisionResolver(ctx.controller)
    requested = token
    try:
        if token.lower() == "previous":
            previous = resolver.previous_stable(app, ctx.metadata)
            if previous == UNKNOWN:
                raise ResolutionError("No previous stable revision available", token=token)
            token = previous
        history_id = resolver.resolve(app, token)
    except ResolutionError as e:
        ctx.output.print_error(e.message)
        if e.available:
            ctx.output.print("Available history (newest first):")
            for row in e.available:
                ctx.output.print(f"  {row}")
        raise click.Abort()

    ctx.output.print_data({"app": app, "token": requested, "history_id": history_id}, title="Resolved revision")
