# =============================================================================
# docrag/cli/ingest.py -- CLI for managing the docrag knowledge base
# =============================================================================
#
# Standalone CLI over the same core the transport layer uses: datasets are
# uploaded, listed, polled and deleted, and the ingested corpus can be
# searched by semantic similarity.
#
# Supported subcommands:
#
#   add       -- Ingest a local file (waits for the run to finish)
#   list      -- List datasets with status, chunk count and size
#   status    -- Show the lifecycle status of one dataset
#   delete    -- Delete a dataset, its chunks and its stored upload
#   search    -- Rank stored chunks against a query
#   validate  -- Probe the configured embedding provider
#
# Provider Selection:
#   - Embedding: EMBEDDING_PROVIDER (auto -> OpenAI if OPENAI_API_KEY is set,
#     otherwise Nomic via Ollama)
#   - Store: SQLite at DATABASE_PATH (always)
#
# Usage examples:
#   python -m docrag.cli.ingest add --file notes.txt
#   python -m docrag.cli.ingest list
#   python -m docrag.cli.ingest search --query "sentence boundaries" --limit 3
#   python -m docrag.cli.ingest delete --id 4 --yes
# =============================================================================

"""Standalone CLI for the docrag knowledge base.

Usage::

    python -m docrag.cli.ingest add --file /path/to/report.pdf

    python -m docrag.cli.ingest status --id 3

    python -m docrag.cli.ingest search --query "chunk overlap"

Exit code is 0 on success and 1 on any failure.
"""

from __future__ import annotations

import argparse
import asyncio
import mimetypes
import sys
from pathlib import Path

from docrag.config.settings import Settings
from docrag.main import Application, build_embedding_provider, open_application
from docrag.models.dataset import DatasetStatus, UploadPayload
from docrag.utils.errors import DocRagError
from docrag.utils.files import format_file_size, generate_storage_filename
from docrag.utils.logging import configure_logging

_DEFAULT_MIME_TYPE = "application/octet-stream"


def _guess_mime_type(path: Path) -> str:
    """Guess a media type from the file extension (``.md`` maps to text/markdown)."""
    if path.suffix.lower() in (".md", ".markdown"):
        return "text/markdown"
    guessed, _ = mimetypes.guess_type(path.name)
    return guessed or _DEFAULT_MIME_TYPE


# ---------------------------------------------------------------------------
# Command handlers
# ---------------------------------------------------------------------------


async def _handle_add(args: argparse.Namespace, app: Application) -> int:
    """Copy the file into the upload directory and ingest it to completion."""
    source = Path(args.file)
    if not source.is_file():
        print(f"Error: file not found: {source}", file=sys.stderr)
        return 1

    file_bytes = source.read_bytes()
    declared_type = args.type or _guess_mime_type(source)
    storage_name = generate_storage_filename(source.name)

    # The stored copy plays the role of the transport layer's temp upload.
    upload_dir = Path(app.settings.upload_dir)
    upload_dir.mkdir(parents=True, exist_ok=True)
    (upload_dir / storage_name).write_bytes(file_bytes)

    print(f"Ingesting: {source.name}")
    print(f"  Type: {declared_type}")
    print(f"  Size: {format_file_size(len(file_bytes))}")

    result = await app.ingestion.ingest_and_wait(
        UploadPayload(
            file_bytes=file_bytes,
            declared_type=declared_type,
            original_name=source.name,
            storage_name=storage_name,
            size=len(file_bytes),
            owner_id=args.owner,
        )
    )

    if result.status is DatasetStatus.FAILED:
        print(f"\nIngestion failed at stage '{result.failed_stage}':", file=sys.stderr)
        print(f"  {result.error}", file=sys.stderr)
        print(f"  Dataset ID:     {result.dataset_id}", file=sys.stderr)
        return 1

    print("\nIngestion complete:")
    print(f"  Chunks created: {result.chunks_created}")
    print(f"  Time:           {result.ingestion_time:.2f}s")
    print(f"  Dataset ID:     {result.dataset_id}")
    return 0


async def _handle_list(app: Application) -> int:
    datasets = await app.ingestion.list_datasets()
    if not datasets:
        print("No datasets uploaded yet.")
        return 0

    print(f"{'ID':>5}  {'Status':<11} {'Chunks':>6}  {'Size':>10}  {'Uploaded':<19}  Name")
    print("-" * 72)
    for ds in datasets:
        uploaded = ds.uploaded_at.strftime("%Y-%m-%d %H:%M:%S")
        print(
            f"{ds.id:>5}  {ds.status.value:<11} {ds.chunk_count:>6}  "
            f"{format_file_size(ds.file_size):>10}  {uploaded:<19}  {ds.original_name}"
        )
    return 0


async def _handle_status(args: argparse.Namespace, app: Application) -> int:
    dataset = await app.ingestion.get_dataset(args.id)
    print(f"Dataset {dataset.id}: {dataset.original_name}")
    print(f"  Status: {dataset.status.value}")
    print(f"  Chunks: {dataset.chunk_count}")
    print(f"  Type:   {dataset.file_type}")
    print(f"  Size:   {format_file_size(dataset.file_size)}")
    return 0


async def _handle_delete(args: argparse.Namespace, app: Application) -> int:
    """Delete a dataset.  Requires confirmation unless --yes is passed."""
    dataset = await app.ingestion.get_dataset(args.id)
    print(f"Deleting dataset {dataset.id}: {dataset.original_name}")
    print(f"  {dataset.chunk_count} chunks will be removed")

    if not args.yes:
        confirm = input("  Continue? [y/N] ").strip().lower()
        if confirm not in ("y", "yes"):
            print("  Aborted.")
            return 0

    deleted = await app.ingestion.delete_dataset(args.id)
    print("  Deleted." if deleted else "  Dataset was already gone.")
    return 0


async def _handle_search(args: argparse.Namespace, app: Application) -> int:
    results = await app.retrieval.retrieve(args.query, limit=args.limit)
    if not results:
        print("No matching chunks.")
        return 0

    for rank, chunk in enumerate(results, start=1):
        preview = " ".join(chunk.text.split())
        if len(preview) > 160:
            preview = preview[:157] + "..."
        print(f"{rank}. [{chunk.similarity:.3f}] {chunk.source_name}")
        print(f"   {preview}")
    return 0


async def _handle_validate(app_settings: Settings) -> int:
    """Run the embedding provider's validation check without opening the store."""
    provider = build_embedding_provider(app_settings)
    name = provider.get_provider_name()
    if await provider.validate():
        print(f"Embedding provider '{name}' is reachable ({provider.get_dimension()} dims).")
        return 0
    print(f"Error: embedding provider '{name}' failed validation.", file=sys.stderr)
    return 1


async def _run(args: argparse.Namespace, app_settings: Settings) -> int:
    """Dispatch a parsed command, mapping docrag errors to exit code 1."""
    try:
        if args.command == "validate":
            return await _handle_validate(app_settings)

        async with open_application(app_settings) as app:
            if args.command == "add":
                return await _handle_add(args, app)
            if args.command == "list":
                return await _handle_list(app)
            if args.command == "status":
                return await _handle_status(args, app)
            if args.command == "delete":
                return await _handle_delete(args, app)
            if args.command == "search":
                return await _handle_search(args, app)
    except DocRagError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    print(f"Error: unknown command '{args.command}'", file=sys.stderr)
    return 1


# ---------------------------------------------------------------------------
# Argument parser
# ---------------------------------------------------------------------------


def _build_parser() -> argparse.ArgumentParser:
    """Build the argparse parser for the docrag CLI."""
    parser = argparse.ArgumentParser(
        prog="python -m docrag.cli.ingest",
        description="Manage the docrag knowledge base.",
    )
    subparsers = parser.add_subparsers(dest="command", help="Knowledge base commands")

    # -- add --
    add_parser = subparsers.add_parser("add", help="Ingest a local file")
    add_parser.add_argument("--file", required=True, help="Path to the file")
    add_parser.add_argument(
        "--type",
        default=None,
        help="Declared media type (default: guessed from the extension)",
    )
    add_parser.add_argument("--owner", default=None, help="Owner id to record")

    # -- list --
    subparsers.add_parser("list", help="List datasets")

    # -- status --
    status_parser = subparsers.add_parser("status", help="Show a dataset's status")
    status_parser.add_argument("--id", required=True, type=int, help="Dataset id")

    # -- delete --
    delete_parser = subparsers.add_parser("delete", help="Delete a dataset")
    delete_parser.add_argument("--id", required=True, type=int, help="Dataset id")
    delete_parser.add_argument(
        "--yes", "-y", action="store_true", help="Skip confirmation prompt"
    )

    # -- search --
    search_parser = subparsers.add_parser("search", help="Search ingested chunks")
    search_parser.add_argument("--query", required=True, help="Query text")
    search_parser.add_argument(
        "--limit", type=int, default=None, help="Maximum results (default: RETRIEVAL_TOP_K)"
    )

    # -- validate --
    subparsers.add_parser("validate", help="Check the embedding provider")

    return parser


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def main(argv: list[str] | None = None) -> None:
    """CLI entry point.

    Parses the subcommand, loads Settings from environment variables /
    .env file, configures logging and runs the handler.
    """
    parser = _build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        sys.exit(1)

    app_settings = Settings()
    configure_logging(
        log_level=app_settings.log_level,
        json_output=(app_settings.app_env == "production"),
    )

    sys.exit(asyncio.run(_run(args, app_settings)))


if __name__ == "__main__":
    main()
