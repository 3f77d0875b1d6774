"""CLI entry point for the AI knowledge base."""

from pathlib import Path

import click
from rich.console import Console
from rich.table import Table

from .config import DEFAULT_CONFIG, load_config
from .errors import KnowledgeBaseError, user_message

console = Console()


@click.group()
@click.option("--config", "-c", "config_path", default=None, help="Path to config file")
@click.option("--verbose", "-v", is_flag=True, help="Debug logging")
@click.pass_context
def cli(ctx, config_path, verbose):
    """AI knowledge base - save highlights and images, search them by meaning."""
    from .logging_config import configure_logging

    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path
    configure_logging(verbose)


def _get_config(ctx) -> dict:
    try:
        return load_config(ctx.obj.get("config_path"))
    except KnowledgeBaseError as e:
        _fail(ctx, e)


def _get_kb(ctx):
    from .knowledge_base import KnowledgeBase

    if "kb" not in ctx.obj:
        kb = KnowledgeBase(_get_config(ctx))
        kb.startup()
        ctx.obj["kb"] = kb
    return ctx.obj["kb"]


def _fail(ctx, exc: Exception):
    console.print(f"[red]✗ {user_message(exc)}[/]")
    ctx.exit(1)


def _entries_table(title: str, entries) -> Table:
    table = Table(title=title)
    table.add_column("ID", style="dim")
    table.add_column("Type", width=5)
    table.add_column("Category", style="magenta")
    table.add_column("Saved", style="dim")
    table.add_column("Preview", max_width=60)
    for e in entries:
        text = e.content if e.type == "text" else (e.alt_text or e.image_url)
        table.add_row(e.id, e.type, e.category or "-", e.timestamp[:19], text[:80].replace("\n", " "))
    return table


@cli.command()
@click.option("--path", default=None, help="Custom data directory")
@click.pass_context
def init(ctx, path):
    """Create the data directory and a starter config file."""
    import yaml

    base = Path(path).expanduser().resolve() if path else Path("~/.aikb").expanduser()
    console.print(f"[bold green]Initializing aikb at {base}[/]")
    base.mkdir(parents=True, exist_ok=True)

    config_file = base / "config.yaml"
    if config_file.exists():
        console.print(f"  [dim]Config already exists: {config_file}[/]")
    else:
        cfg = {k: v for k, v in DEFAULT_CONFIG.items() if k not in ("hf_api_key", "pinecone_api_key")}
        cfg["store_path"] = str(base / "store.json")
        cfg["chroma_path"] = str(base / "chroma")
        header = (
            "# API keys (or set HF_API_KEY / PINECONE_API_KEY env vars, or run `aikb configure`)\n"
            "# hf_api_key: hf_your-key-here\n"
            "# pinecone_api_key: pcsk_your-key-here\n\n"
            "# Backends: remote|local embeddings, pinecone|chromadb vectors\n\n"
        )
        config_file.write_text(header + yaml.dump(cfg, default_flow_style=False))
        console.print(f"  Created config: {config_file}")

    console.print("[bold green]✓ aikb initialized![/]")
    console.print("  Run: aikb configure")


@cli.command()
@click.option("--hf-key", prompt="Hugging Face API key", hide_input=True, help="Key starting with hf_")
@click.option("--pinecone-key", prompt="Pinecone API key", hide_input=True, help="Key starting with pcsk_")
@click.pass_context
def configure(ctx, hf_key, pinecone_key):
    """Store the Hugging Face and Pinecone API keys."""
    from .config import save_credentials

    target = ctx.obj.get("config_path") or Path("~/.aikb/config.yaml").expanduser()
    try:
        path = save_credentials(hf_key, pinecone_key, target)
    except KnowledgeBaseError as e:
        _fail(ctx, e)
    console.print(f"[green]✓ API keys saved to {path}[/]")


@cli.command("save-text")
@click.argument("text")
@click.option("--url", default="", help="Page URL")
@click.option("--title", default="", help="Page title")
@click.option("--heading", "headings", multiple=True, help="Nearby heading (repeatable)")
@click.pass_context
def save_text(ctx, text, url, title, headings):
    """Save a piece of text to the knowledge base."""
    kb = _get_kb(ctx)
    page_context = {"nearbyHeadings": list(headings)} if headings else {}
    try:
        entry = kb.save_text(text, page_context=page_context, url=url, title=title)
    except KnowledgeBaseError as e:
        _fail(ctx, e)
    console.print(f"[green]✓ Saved {entry.id}[/]")


@cli.command("save-image")
@click.argument("image_url")
@click.option("--alt", default="", help="Alt text")
@click.option("--url", default="", help="Page URL")
@click.option("--title", default="", help="Page title")
@click.option("--heading", "headings", multiple=True, help="Nearby heading (repeatable)")
@click.pass_context
def save_image(ctx, image_url, alt, url, title, headings):
    """Save an image (by URL and its surrounding text) to the knowledge base."""
    kb = _get_kb(ctx)
    page_context = {"nearbyHeadings": list(headings)} if headings else {}
    try:
        entry = kb.save_image(image_url, alt_text=alt, page_context=page_context, url=url, title=title)
    except KnowledgeBaseError as e:
        _fail(ctx, e)
    console.print(f"[green]✓ Saved {entry.id}[/]")


@cli.command()
@click.argument("query")
@click.option("--n", "-n", default=None, type=int, help="Number of results")
@click.pass_context
def search(ctx, query, n):
    """Semantic search over saved entries."""
    kb = _get_kb(ctx)
    console.print(f"[blue]Searching for: '{query}'[/]\n")
    try:
        results = kb.search(query, top_k=n)
    except KnowledgeBaseError as e:
        _fail(ctx, e)

    if not results:
        console.print("[yellow]No results found.[/]")
        return

    table = Table(title="Search Results")
    table.add_column("#", style="dim", width=3)
    table.add_column("Title", style="cyan")
    table.add_column("Score", justify="right", style="green")
    table.add_column("Preview", max_width=60)

    for i, m in enumerate(results, 1):
        meta = m.metadata
        preview = (meta["content"] or meta["alt"] or meta["imageUrl"])[:80].replace("\n", " ")
        table.add_row(str(i), meta["title"] or "Unknown", f"{m.score:.3f}", preview)

    console.print(table)


@cli.command("list")
@click.pass_context
def list_entries(ctx):
    """List every saved entry."""
    entries = _get_kb(ctx).list_entries()
    if not entries:
        console.print("[yellow]No entries saved yet.[/]")
        return
    console.print(_entries_table(f"Entries ({len(entries)})", entries))


@cli.command()
@click.option("--n", "-n", default=10, help="Number of entries")
@click.pass_context
def recent(ctx, n):
    """Show the most recently saved entries."""
    entries = _get_kb(ctx).recent(n)
    if not entries:
        console.print("[yellow]No entries saved yet.[/]")
        return
    console.print(_entries_table("Recent Entries", entries))


@cli.command()
@click.argument("query")
@click.pass_context
def find(ctx, query):
    """Plain substring search over the local cache (works offline)."""
    entries = _get_kb(ctx).search_local(query)
    if not entries:
        console.print(f"[yellow]Nothing matches '{query}'.[/]")
        return
    console.print(_entries_table(f"Matches for '{query}'", entries))


@cli.command()
@click.argument("entry_id")
@click.argument("category")
@click.pass_context
def categorize(ctx, entry_id, category):
    """Set the category of an entry."""
    try:
        updated = _get_kb(ctx).categorize(entry_id, category)
    except KnowledgeBaseError as e:
        _fail(ctx, e)
    if not updated:
        console.print(f"[yellow]No entry with id {entry_id}[/]")
        ctx.exit(1)
    console.print(f"[green]✓ {entry_id} → {category}[/]")


@cli.command()
@click.argument("entry_id")
@click.pass_context
def delete(ctx, entry_id):
    """Delete an entry from the vector index and the local cache."""
    try:
        _get_kb(ctx).delete_entry(entry_id)
    except KnowledgeBaseError as e:
        _fail(ctx, e)
    console.print(f"[green]✓ Deleted {entry_id}[/]")


@cli.command()
@click.pass_context
def reconcile(ctx):
    """Finish interrupted writes and report entries missing from the index."""
    try:
        report = _get_kb(ctx).reconcile()
    except KnowledgeBaseError as e:
        _fail(ctx, e)

    if report.consistent:
        console.print(f"[green]✓ Stores consistent ({report.checked} entries checked)[/]")
    else:
        console.print("[yellow]Stores out of sync[/]")
    console.print(f"  Restored locally: {len(report.restored)}")
    console.print(f"  Dropped (never indexed): {len(report.dropped)}")
    console.print(f"  Deletes replayed: {len(report.deletes_replayed)}")
    if report.still_pending:
        console.print(f"  [red]Still pending: {', '.join(report.still_pending)}[/]")
    if report.local_only:
        console.print(f"  [red]Local only: {', '.join(report.local_only)}[/]")
    if report.error:
        console.print(f"[red]✗ {report.error}[/]")
        ctx.exit(1)


@cli.command()
@click.pass_context
def status(ctx):
    """Show configuration, service health and pending writes."""
    s = _get_kb(ctx).status()

    console.print("\n[bold]Knowledge Base Status[/]")
    console.print(f"  User: {s['user_id']}")
    console.print(f"  Store: {s['store_path']}")
    console.print(f"  Backends: {s['embedding_backend']} embeddings, {s['vector_backend']} index")
    if not s["configured"]:
        console.print(f"  [red]✗ Not configured: {s['error']}[/]")
    elif s["healthy"]:
        console.print("  [green]✓ Embedding service healthy[/]")
    else:
        console.print("  [yellow]Embedding service not answering[/]")
    console.print(f"  Entries: {s['total_entries']} ({s['entries_last_7_days']} in the last 7 days)")
    if s["pending_writes"]:
        console.print(f"  [yellow]Pending writes: {s['pending_writes']} (run 'aikb reconcile')[/]")


@cli.command()
@click.pass_context
def stats(ctx):
    """Show entry counts by type and category."""
    kb = _get_kb(ctx)
    s = kb.cache.stats(kb.scoped_user_id())

    console.print("\n[bold]📊 Knowledge Base Statistics[/]")
    console.print(f"  Total entries: {s['total_entries']}")
    for label, key in (("Types", "types"), ("Categories", "categories")):
        if s[key]:
            console.print(f"\n  [bold]{label}:[/]")
            for name, count in sorted(s[key].items()):
                console.print(f"    {name}: {count}")


@cli.command()
@click.pass_context
def serve(ctx):
    """Run as the browser extension's native messaging host."""
    from .native_host import serve as serve_host

    serve_host(_get_kb(ctx))


if __name__ == "__main__":
    cli()
