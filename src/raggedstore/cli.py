"""Command line interface for raggedstore using Typer.

Commands:
- dialects: list the registered interval file dialects
- import: import one interval file as a sample collection
- query: ragged overlap query across samples
- assay: build a sparse / compact / reduced matrix for a region
"""
from __future__ import annotations

from pathlib import Path
from typing import List, Optional

import polars as pl
import typer
from rich.table import Table

from .assay import REDUCERS, build_assay, tile_region
from .container import SampleContainer
from .core import ImportConfig, StoreConfig, configure_logging, console
from .dialects import DEFAULT_DIALECT, available_dialects
from .errors import PartialQueryError, RaggedStoreError
from .importer import import_file
from .utils import parse_region

app = typer.Typer(help="raggedstore: multi-sample interval queries over a document store")

UriOption = typer.Option("mongodb://localhost:27017", "--uri", help="Document store URI")
DatabaseOption = typer.Option("raggedstore", "--database", "-d", help="Database name")


def _read_metadata(path: Path) -> pl.DataFrame:
    separator = "," if path.suffix.lower() == ".csv" else "\t"
    return pl.read_csv(path, separator=separator)


def _open_container(uri: str, database: str, metadata: Optional[Path], workers: Optional[int]) -> SampleContainer:
    config = StoreConfig(uri=uri, database=database)
    if workers:
        config.max_workers = workers
    if metadata is not None:
        return SampleContainer(_read_metadata(metadata), config)
    return SampleContainer.from_store(config)


def _select(container: SampleContainer, samples: Optional[List[str]], where: Optional[List[str]]) -> list[str]:
    if samples:
        return list(samples)
    schema = container.metadata.schema
    equals = {}
    for clause in where or []:
        column, sep, value = clause.partition("=")
        if not sep:
            raise typer.BadParameter(f"--where expects column=value, got '{clause}'")
        if column not in schema:
            raise typer.BadParameter(f"Unknown metadata column '{column}'", param_hint="--where")
        # cast the text to the column dtype so replicate=1 matches an integer column
        try:
            equals[column] = pl.Series([value]).cast(schema[column]).item()
        except pl.exceptions.PolarsError as e:
            raise typer.BadParameter(
                f"'{value}' is not a valid {schema[column]} for column '{column}'", param_hint="--where"
            ) from e
    return container.samples_where(**equals)


@app.callback()
def main_callback(verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging")) -> None:
    configure_logging("DEBUG" if verbose else None)


@app.command()
def dialects() -> None:
    """List registered dialects and their columns."""
    table = Table(title="Interval dialects", show_header=True, header_style="bold magenta")
    table.add_column("Dialect", style="cyan", no_wrap=True)
    table.add_column("Columns", style="green")
    table.add_column("Coordinates", style="yellow")
    table.add_column("Description")
    for d in available_dialects():
        cols = ", ".join(f"{c.name}*" if c.required else c.name for c in d.columns)
        table.add_row(d.name, cols, "0-based" if d.zero_based else "1-based", d.description)
    console.print(table)


@app.command("import")
def import_(
    path: Path = typer.Argument(..., exists=True, dir_okay=False, help="Interval file (.gz allowed)"),
    sample: str = typer.Argument(..., help="Sample key / collection name"),
    dialect: str = typer.Option(DEFAULT_DIALECT, "--dialect", help="File dialect"),
    uri: str = UriOption,
    database: str = DatabaseOption,
    batch_size: int = typer.Option(1_000, "--batch-size", min=1),
    no_index: bool = typer.Option(False, "--no-index", help="Skip overlap index creation"),
) -> None:
    """Import PATH into the collection SAMPLE."""
    config = ImportConfig(batch_size=batch_size, create_index=not no_index)
    try:
        with SampleContainer(None, StoreConfig(uri=uri, database=database)) as container:
            with console.status(f"[bold green]Importing {path.name}..."):
                report = import_file(path, sample, dialect, container.database, config)
    except RaggedStoreError as e:
        console.print(f"[bold red]Import failed:[/bold red] {e}")
        raise typer.Exit(code=1)
    typer.echo(str(report))


@app.command()
def query(
    region: str = typer.Argument(..., help="Region as chrom:start-end"),
    sample: Optional[List[str]] = typer.Option(None, "--sample", "-s", help="Sample key (repeatable)"),
    where: Optional[List[str]] = typer.Option(None, "--where", "-w", help="Metadata filter column=value"),
    metadata: Optional[Path] = typer.Option(None, "--metadata", "-m", exists=True, help="Sample metadata TSV/CSV"),
    uri: str = UriOption,
    database: str = DatabaseOption,
    skip: int = typer.Option(0, "--skip", min=0),
    limit: int = typer.Option(0, "--limit", min=0, help="Per-sample limit (0 = none)"),
    workers: Optional[int] = typer.Option(None, "--workers", min=1),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Write long-form TSV"),
) -> None:
    """Query REGION across samples and report per-sample hit counts."""
    failed = False
    try:
        with _open_container(uri, database, metadata, workers) as container:
            keys = _select(container, sample, where)
            try:
                result = container.overlaps(parse_region(region), keys, skip, limit)
            except PartialQueryError as e:
                for key, err in e.failures.items():
                    console.print(f"[bold red]{key}:[/bold red] {err}")
                result, failed = e.results, True
    except RaggedStoreError as e:
        console.print(f"[bold red]Query failed:[/bold red] {e}")
        raise typer.Exit(code=1)

    table = Table(title=f"Overlaps in {result.region}", show_header=True, header_style="bold magenta")
    table.add_column("Sample", style="cyan")
    table.add_column("Records", justify="right", style="green")
    for key, n in result.lengths().items():
        table.add_row(key, f"{n:,}")
    console.print(table)
    if output is not None:
        result.to_polars().write_csv(output, separator="\t")
    if failed:
        raise typer.Exit(code=1)


@app.command()
def assay(
    region: str = typer.Argument(..., help="Region as chrom:start-end"),
    policy: str = typer.Option("sparse", "--policy", "-p", help="sparse | compact | reduced"),
    field: Optional[str] = typer.Option(None, "--field", "-f", help="Record field (default: presence)"),
    sample: Optional[List[str]] = typer.Option(None, "--sample", "-s"),
    where: Optional[List[str]] = typer.Option(None, "--where", "-w"),
    metadata: Optional[Path] = typer.Option(None, "--metadata", "-m", exists=True),
    uri: str = UriOption,
    database: str = DatabaseOption,
    n_bins: Optional[int] = typer.Option(None, "--n-bins", min=1, help="reduced: number of bins"),
    bin_size: Optional[int] = typer.Option(None, "--bin-size", min=1, help="reduced: bin width"),
    reducer: str = typer.Option("max", "--reducer", help=f"reduced: one of {', '.join(REDUCERS)}"),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Write matrix TSV"),
) -> None:
    """Build an assay matrix for REGION."""
    if policy == "reduced" and n_bins is None and bin_size is None:
        n_bins = 10
    try:
        target = parse_region(region)
        kwargs = {}
        if policy == "reduced":
            kwargs = {"sub_regions": tile_region(target, n_bins=n_bins, bin_size=bin_size), "reducer": reducer}
        with _open_container(uri, database, metadata, None) as container:
            result = container.overlaps(target, _select(container, sample, where))
        matrix = build_assay(result, policy, field=field, **kwargs)
    except (RaggedStoreError, KeyError, ValueError) as e:
        console.print(f"[bold red]Assay failed:[/bold red] {e}")
        raise typer.Exit(code=1)

    frame = matrix.to_polars()
    if output is not None:
        frame.write_csv(output, separator="\t")
        typer.echo(f"Wrote {matrix!r} to {output}")
    else:
        console.print(frame)


def main() -> None:
    """Entrypoint used by the console script."""
    app()


if __name__ == "__main__":
    main()
