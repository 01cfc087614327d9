"""CLI entry point for swagscan."""

import logging
from pathlib import Path

import click

from swagscan.config import ParserSettings
from swagscan.document import build_document, find_general_info
from swagscan.exceptions import SwagscanError
from swagscan.output import OPENAPI_VERSION, write_outputs


def _split_dirs(value: str) -> list[Path]:
    return [Path(p.strip()) for p in value.split(",") if p.strip()]


@click.group()
def main():
    """Build OpenAPI documents from annotated Go sources."""
    pass


@main.command()
@click.option("-g", "--general-info", default="main.go", help="Go file holding the general API info.")
@click.option("-d", "--dir", "dirs", default="./", help="Comma separated directories to scan.")
@click.option("--exclude-dir", "exclude", default="", help="Comma separated directories to skip.")
@click.option("-o", "--output", default="./docs", type=click.Path(path_type=Path), help="Output directory.")
@click.option("--format", "fmt", default="both", type=click.Choice(["json", "yaml", "both"]), help="Output format.")
@click.option("--openapi-version", default=OPENAPI_VERSION, help="Value of the openapi field.")
@click.option("--strict", is_flag=True, help="Fail on malformed annotations instead of skipping them.")
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging.")
def init(
    general_info: str,
    dirs: str,
    exclude: str,
    output: Path,
    fmt: str,
    openapi_version: str,
    strict: bool,
    verbose: bool,
):
    """Parse annotations and write openapi.json / openapi.yaml."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )
    directories = _split_dirs(dirs)
    settings = ParserSettings(strict=strict)

    entry = find_general_info(general_info, directories)
    if entry is None:
        raise click.ClickException(f"General info file not found: {general_info}")

    click.echo(f"Parsing general info from {entry}...")
    try:
        document = build_document(entry, directories, _split_dirs(exclude), settings=settings)
    except SwagscanError as e:
        raise click.ClickException(str(e)) from e
    click.echo(f"Found {len(document.operations)} operations and {len(document.schemas)} schemas.")

    formats = ["json", "yaml"] if fmt == "both" else [fmt]
    for path in write_outputs(document, output, formats, openapi_version):
        click.echo(f"  Created {path}")
