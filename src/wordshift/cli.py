from __future__ import annotations

import argparse
import asyncio
import sys
import tomllib
from importlib import metadata
from pathlib import Path

import uvicorn
from rich.console import Console
from rich.progress import BarColumn, Progress, TaskProgressColumn, TextColumn, TimeElapsedColumn

from .config import ReaderSettings, load_settings
from .dictionary import JsonDictionarySource
from .document import Document
from .library import DocumentLibrary
from .logging_utils import build_uvicorn_log_config, configure_logging
from .pagination import FontMetrics, LayoutMetrics, Paginator
from .pipeline import IngestionError, ProcessingMode, ProcessingState, ingest_file
from .store import JsonDirectoryStore
from .tokens import tokens_to_text
from .vocabulary import JsonVocabularyStore, VocabularyList, format_entries
from .web import WebConfig, create_app

__all__ = ["build_parser", "main"]


def _read_local_version() -> str | None:
    try:
        pyproject_path = Path(__file__).resolve().parents[2] / "pyproject.toml"
    except IndexError:
        return None
    try:
        with pyproject_path.open("rb") as fh:
            data = tomllib.load(fh)
    except (FileNotFoundError, tomllib.TOMLDecodeError):
        return None
    return data.get("project", {}).get("version")


try:
    __version__ = metadata.version("wordshift")
except metadata.PackageNotFoundError:
    __version__ = _read_local_version() or "0.0.0+unknown"


def _add_version_flag(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "-v",
        "--version",
        action="version",
        version=f"wordshift {__version__}",
    )


def _add_common_flags(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--config",
        help="Path to a TOML settings file (default: ~/.wordshift/config.toml or $WORDSHIFT_CONFIG).",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable verbose logging.",
    )


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="wordshift",
        description=(
            "Read foreign-language texts with per-word translations. "
            "Commands: ingest, list, pages, delete, vocab, web."
        ),
    )
    _add_version_flag(ap)
    return ap


def build_ingest_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="wordshift ingest",
        description="Tokenize a .txt or .epub file, resolve its words and save it to the library.",
    )
    _add_version_flag(ap)
    ap.add_argument("input_path", help="Path to a .txt or .epub file.")
    ap.add_argument("--title", help="Document title (default: book title or file name).")
    ap.add_argument(
        "-t",
        "--target",
        help="Target language code, e.g. 'en' (default: from settings).",
    )
    ap.add_argument(
        "-s",
        "--source",
        help="Source language code (default: detected from the text).",
    )
    ap.add_argument(
        "-m",
        "--mode",
        choices=[mode.value for mode in ProcessingMode],
        help=(
            "'full' resolves every word before saving; 'dynamic' resolves the opening "
            "and leaves the rest to the reader (default: from settings)."
        ),
    )
    _add_common_flags(ap)
    return ap


def build_list_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="wordshift list",
        description="List saved documents.",
    )
    _add_version_flag(ap)
    ap.add_argument(
        "--sort",
        choices=["recent", "title"],
        default="recent",
        help="Sort order (default: recent).",
    )
    _add_common_flags(ap)
    return ap


def build_pages_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="wordshift pages",
        description="Estimate page breaks of a saved document for a viewport.",
    )
    _add_version_flag(ap)
    ap.add_argument("document_id", help="Document id as shown by `wordshift list`.")
    ap.add_argument("--width", type=float, default=800.0, help="Viewport width in px (default: 800).")
    ap.add_argument("--height", type=float, default=1000.0, help="Viewport height in px (default: 1000).")
    ap.add_argument("--font-size", type=float, help="Font size in px (default: the document's).")
    ap.add_argument("--page", type=int, help="Print the text of this page instead of the break table.")
    _add_common_flags(ap)
    return ap


def build_delete_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="wordshift delete",
        description="Delete a saved document.",
    )
    _add_version_flag(ap)
    ap.add_argument("document_id", help="Document id as shown by `wordshift list`.")
    _add_common_flags(ap)
    return ap


def build_vocab_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="wordshift vocab",
        description="Print saved vocabulary as `original (pos) : translation` lines.",
    )
    _add_version_flag(ap)
    ap.add_argument("-s", "--source", help="Only entries with this source language.")
    ap.add_argument("-t", "--target", help="Only entries with this target language.")
    ap.add_argument("--text", dest="text_id", help="Only entries saved from this document id.")
    _add_common_flags(ap)
    return ap


def build_web_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="wordshift web",
        description="Serve the reading API over HTTP.",
    )
    _add_version_flag(ap)
    ap.add_argument(
        "--host",
        default="127.0.0.1",
        help="Host interface for the web server (default: 127.0.0.1).",
    )
    ap.add_argument(
        "--port",
        type=int,
        default=2047,
        help="Port for the web server (default: 2047).",
    )
    _add_common_flags(ap)
    return ap


def _load_settings(args: argparse.Namespace) -> ReaderSettings:
    configure_logging(debug=bool(args.debug))
    config_path = Path(args.config).expanduser() if args.config else None
    try:
        return load_settings(config_path)
    except ValueError as exc:
        raise SystemExit(str(exc)) from exc


def _library(settings: ReaderSettings) -> DocumentLibrary:
    return DocumentLibrary(JsonDirectoryStore(settings.store_root))


class _IngestProgress:
    def __init__(self, console: Console) -> None:
        self.console = console
        self.enabled = console.is_terminal
        self.progress: Progress | None = None
        self.task_id = None
        if not self.enabled:
            return
        self.progress = Progress(
            TextColumn("{task.description}", justify="left"),
            BarColumn(bar_width=None),
            TaskProgressColumn(),
            TimeElapsedColumn(),
            console=console,
            transient=True,
        )

    def __enter__(self) -> "_IngestProgress":
        if self.progress is not None:
            self.progress.start()
            self.task_id = self.progress.add_task("Reading file...", total=100)
        return self

    def __exit__(self, *exc_info: object) -> None:
        if self.progress is not None:
            self.progress.stop()

    def __call__(self, state: ProcessingState) -> None:
        if self.progress is None or self.task_id is None:
            return
        self.progress.update(self.task_id, completed=state.progress, description=state.current_step)


def _run_ingest(args: argparse.Namespace) -> int:
    settings = _load_settings(args)
    input_path = Path(args.input_path).expanduser()
    source = JsonDictionarySource(settings.dictionary_dir)
    library = _library(settings)
    console = Console(stderr=True)

    async def _ingest() -> Document:
        with _IngestProgress(console) as progress:
            document = await ingest_file(
                input_path,
                target_language=args.target or settings.target_language,
                title=args.title,
                source_language=args.source,
                source=source,
                mode=args.mode or settings.processing_mode,
                initial_batch_tokens=settings.initial_batch_tokens,
                on_state=progress,
            )
        await library.save(document)
        return document

    try:
        document = asyncio.run(_ingest())
    except IngestionError as exc:
        raise SystemExit(str(exc)) from exc
    unknown = sum(1 for entry in document.dictionary.values() if entry.is_unknown)
    print(f"Saved {document.title!r} as {document.id}")
    print(
        f"{document.source_language}-{document.target_language}: "
        f"{document.word_count} words, {document.unique_word_count} unique, "
        f"{unknown} unknown, {len(document.pending_keys())} pending"
    )
    return 0


def _run_list(args: argparse.Namespace) -> int:
    settings = _load_settings(args)
    entries = asyncio.run(_library(settings).list_documents(args.sort))
    if not entries:
        print("No documents saved yet.")
        return 0
    for info in entries:
        print(
            f"{info.id}  {info.title}  [{info.source_language}-{info.target_language}]  "
            f"{info.word_count} words  {info.updated_at}"
        )
    return 0


def _load_document(settings: ReaderSettings, doc_id: str) -> Document:
    document = asyncio.run(_library(settings).load(doc_id))
    if document is None:
        raise SystemExit(f"Document not found: {doc_id}")
    return document


def _run_pages(args: argparse.Namespace) -> int:
    settings = _load_settings(args)
    document = _load_document(settings, args.document_id)
    if args.width <= 0 or args.height <= 0:
        raise SystemExit("Viewport width and height must be positive.")
    font_size = args.font_size if args.font_size else float(document.font_size_px)
    layout = LayoutMetrics(
        viewport_height_px=args.height,
        viewport_width_px=args.width,
        font=FontMetrics(font_size_px=font_size),
    )
    paginator = Paginator.for_layout(document.tokens, layout, settings.pagination)
    if args.page is not None:
        start, end = paginator.page_range(args.page)
        print(tokens_to_text(document.tokens[start:end]))
        return 0
    print(f"{document.title}: {paginator.total_pages} pages")
    for page in range(1, paginator.total_pages + 1):
        start, end = paginator.page_range(page)
        print(f"{page:>5}  tokens {start}-{end - 1}")
    return 0


def _run_delete(args: argparse.Namespace) -> int:
    settings = _load_settings(args)
    deleted = asyncio.run(_library(settings).delete(args.document_id))
    if not deleted:
        raise SystemExit(f"Document not found: {args.document_id}")
    print(f"Deleted {args.document_id}")
    return 0


def _run_vocab(args: argparse.Namespace) -> int:
    settings = _load_settings(args)
    vocabulary = VocabularyList(JsonVocabularyStore(settings.vocabulary_path))
    entries = asyncio.run(
        vocabulary.list_entries(
            source_language=args.source,
            target_language=args.target,
            text_id=args.text_id,
        )
    )
    if not entries:
        print("No saved words yet.")
        return 0
    print(format_entries(entries))
    return 0


def _run_web(args: argparse.Namespace) -> None:
    settings = _load_settings(args)
    app = create_app(WebConfig(settings=settings))
    print(f"Serving wordshift from {settings.store_root}")
    print(f"API URL: http://{args.host}:{args.port}/api/documents")
    print("Press Ctrl+C to stop.\n")
    uvicorn.run(
        app,
        host=args.host,
        port=args.port,
        log_config=build_uvicorn_log_config(debug=bool(args.debug)),
    )


def main(argv: list[str] | None = None) -> int:
    if argv is None:
        argv = sys.argv[1:]

    if argv and argv[0] == "ingest":
        return _run_ingest(build_ingest_parser().parse_args(argv[1:]))
    if argv and argv[0] in {"list", "ls"}:
        return _run_list(build_list_parser().parse_args(argv[1:]))
    if argv and argv[0] == "pages":
        return _run_pages(build_pages_parser().parse_args(argv[1:]))
    if argv and argv[0] in {"delete", "rm"}:
        return _run_delete(build_delete_parser().parse_args(argv[1:]))
    if argv and argv[0] == "vocab":
        return _run_vocab(build_vocab_parser().parse_args(argv[1:]))
    if argv and argv[0] == "web":
        _run_web(build_web_parser().parse_args(argv[1:]))
        return 0

    parser = build_parser()
    if not argv:
        parser.print_help()
        return 0
    parser.parse_args(argv)
    raise SystemExit(f"Unknown command: {argv[0]}")


if __name__ == "__main__":
    raise SystemExit(main())
