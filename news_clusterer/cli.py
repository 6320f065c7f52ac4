"""Command-line interface for the news clusterer."""

import click
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from .config import Settings
from .errors import InvalidForceMerge, OracleError
from .logging_config import configure_from_settings, get_logger
from .service import StoryDesk
from .sources import read_articles, read_clusters, write_clusters

console = Console()
logger = get_logger(__name__)


def get_desk(settings: Settings) -> StoryDesk:
    """Build the story desk from settings."""
    return StoryDesk.from_settings(settings)


def load_clusters(ctx, path):
    """Read a saved batch or exit with a readable error."""
    try:
        return read_clusters(path)
    except ValueError as e:
        console.print(f"[red]Cannot read clusters from {path}: {e}[/red]")
        ctx.exit(2)


def print_clusters(clusters, title: str = "Story Clusters"):
    table = Table(title=title, show_lines=True)
    table.add_column("ID", style="dim", width=4)
    table.add_column("Arts", justify="right", width=4)
    table.add_column("Type", style="cyan", width=14)
    table.add_column("Date", width=10)
    table.add_column("Headline", style="bold")
    table.add_column("Dup", justify="center", width=4)

    for cluster in clusters:
        conf = cluster.story_type_confidence
        conf_color = "green" if conf >= 0.7 else "yellow" if conf >= 0.5 else "dim"
        table.add_row(
            str(cluster.id),
            str(cluster.article_count),
            f"{cluster.story_type} [{conf_color}]{conf:.0%}[/{conf_color}]",
            cluster.earliest_date.strftime("%Y-%m-%d") if cluster.earliest_date else "-",
            cluster.headline[:80],
            "[red]Yes[/red]" if cluster.duplicate else "",
        )

    console.print(table)

    for cluster in clusters:
        if cluster.duplicate and cluster.duplicate_of:
            console.print(
                f"[red]#{cluster.id}[/red] duplicates [bold]{cluster.duplicate_of.get('title', '')}[/bold] "
                f"[dim]{cluster.duplicate_of.get('link', '')}[/dim]"
            )


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging")
@click.option("--log-file", help="Write logs to file")
@click.option("--rules", "rules_path", help="Path to the learned rules JSON file")
@click.pass_context
def main(ctx, verbose, log_file, rules_path):
    """News Clusterer - group articles into stories and learn from merges."""
    ctx.ensure_object(dict)
    settings = Settings.from_env()
    if rules_path:
        settings.rules_path = rules_path
    ctx.obj["settings"] = settings

    configure_from_settings(settings, level="DEBUG" if verbose else None, log_file=log_file)
    logger.debug(f"Using rule store: {settings.rules_path}")


@main.command()
@click.argument("path", type=click.Path(exists=True))
@click.option("--output", "-o", type=click.Path(), help="Write clusters JSON to this file")
@click.option("--check-duplicates", "check_dups", is_flag=True, help="Also compare against recent posts")
@click.pass_context
def cluster(ctx, path, output, check_dups):
    """Cluster the articles found in PATH (a JSON file or a directory)."""
    loaded = read_articles(path)
    for error in loaded.errors:
        console.print(f"[yellow]Skipped {error['file']}: {error['error']}[/yellow]")

    if not loaded.articles:
        console.print("[yellow]No articles found.[/yellow]")
        return

    desk = get_desk(ctx.obj["settings"])
    console.print(f"[yellow]Clustering {loaded.count} articles...[/yellow]")

    try:
        with console.status("Asking the clustering oracle..."):
            clusters = desk.cluster(loaded.articles)
    except OracleError as e:
        console.print(f"[red]Clustering failed: {e}[/red]")
        ctx.exit(1)

    if check_dups:
        with console.status("Checking recent posts for duplicates..."):
            clusters = desk.check_duplicates(clusters)

    print_clusters(clusters)
    console.print(f"\n[green]Found {len(clusters)} story clusters.[/green]")

    if output:
        write_clusters(clusters, output)
        console.print(f"[dim]Saved to {output}[/dim]")


@main.command("force-merge")
@click.argument("clusters_file", type=click.Path(exists=True))
@click.argument("cluster_ids", nargs=-1, type=int, required=True)
@click.option("--output", "-o", type=click.Path(), help="Write the updated batch to this file")
@click.pass_context
def force_merge(ctx, clusters_file, cluster_ids, output):
    """Merge clusters CLUSTER_IDS of a saved batch and learn a merge rule.

    Examples:
        news-clusterer force-merge clusters.json 2 5
        news-clusterer force-merge clusters.json 1 3 4 -o merged.json
    """
    desk = get_desk(ctx.obj["settings"])
    desk.clusters = load_clusters(ctx, clusters_file)

    try:
        result = desk.force_merge(list(cluster_ids))
    except InvalidForceMerge as e:
        console.print(f"[red]{e}[/red]")
        ctx.exit(2)

    merged = result.merged_cluster
    rule_line = (
        f"[green]Learned rule:[/green] {', '.join(result.learned_rule.tokens)}"
        if result.learned_rule else "[yellow]No shared headline tokens; nothing learned[/yellow]"
    )
    panel_content = f"""[bold]{merged.headline}[/bold]

[dim]Articles:[/dim] {merged.article_count}
[dim]Sources:[/dim] {', '.join(s.name for s in merged.sources if s.name) or 'Unknown'}
[dim]Type:[/dim] {merged.story_type} ({merged.story_type_confidence:.0%})

{rule_line}
[dim]Rules stored:[/dim] {result.learned_rule_count}"""
    console.print(Panel(panel_content, title=f"Merged clusters {', '.join(str(i) for i in result.merged_ids)}"))

    if output:
        write_clusters(desk.clusters, output)
        console.print(f"[dim]Saved {len(desk.clusters)} clusters to {output}[/dim]")


@main.command("check-duplicates")
@click.argument("clusters_file", type=click.Path(exists=True))
@click.option("--output", "-o", type=click.Path(), help="Write the annotated batch to this file")
@click.pass_context
def check_duplicates(ctx, clusters_file, output):
    """Flag clusters of a saved batch that were already published."""
    desk = get_desk(ctx.obj["settings"])
    clusters = load_clusters(ctx, clusters_file)

    with console.status("Checking recent posts for duplicates..."):
        clusters = desk.check_duplicates(clusters)

    print_clusters(clusters, title="Duplicate Check")
    dup_count = sum(1 for c in clusters if c.duplicate)
    console.print(f"\n[green]Found {dup_count} duplicate(s).[/green]")

    if output:
        write_clusters(clusters, output)
        console.print(f"[dim]Saved to {output}[/dim]")


@main.command()
@click.option("--limit", "-n", default=20, type=click.IntRange(min=1), help="Number of rules to show")
@click.pass_context
def rules(ctx, limit):
    """List the most recently learned merge rules."""
    desk = get_desk(ctx.obj["settings"])
    learned = desk.rule_store.load()

    if not learned:
        console.print("[yellow]No learned rules yet. Use 'force-merge' to teach some.[/yellow]")
        return

    table = Table(title=f"Learned Merge Rules ({len(learned)} stored)")
    table.add_column("Created", style="dim")
    table.add_column("Tokens", style="cyan")
    table.add_column("From headlines")

    for rule in reversed(learned[-limit:]):
        table.add_row(
            rule.created_at.strftime("%Y-%m-%d %H:%M"),
            ", ".join(rule.tokens),
            "\n".join(h[:60] for h in rule.source_headlines),
        )

    console.print(table)


@main.command()
@click.option("--host", default="127.0.0.1", help="Host to bind to")
@click.option("--port", "-p", default=8000, help="Port to run on")
@click.pass_context
def serve(ctx, host, port):
    """Start the HTTP API."""
    from .web import run_server
    settings = ctx.obj["settings"]
    console.print(f"[green]Starting web server at http://{host}:{port}[/green]")
    console.print(f"[dim]Using rule store: {settings.rules_path}[/dim]")
    console.print("[dim]Press Ctrl+C to stop[/dim]\n")
    run_server(host=host, port=port, settings=settings)


if __name__ == "__main__":
    main()
