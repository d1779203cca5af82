"""Command line entry point for scrape, targeted and view runs."""

from __future__ import annotations

import argparse
import logging
import time
from dataclasses import dataclass
from pathlib import Path

from quest_archiver.adapters.archive_inspector import discover_archives, is_archive
from quest_archiver.adapters.credentials import (
    DEFAULT_CREDENTIALS_PATH,
    load_credentials,
    save_credentials,
)
from quest_archiver.adapters.failure_ledger import DEFAULT_LEDGER_FILENAME, FailureLedger
from quest_archiver.adapters.http_platform_client import HttpPlatformClient
from quest_archiver.adapters.observability import configure_runtime_logging
from quest_archiver.adapters.target_lists import read_identifier_list
from quest_archiver.config import ArchiverSettings, load_settings
from quest_archiver.core.archive_batch import (
    archive_targets,
    build_views,
    run_scrape,
    run_targeted,
)
from quest_archiver.core.errors import ArchiverError, ListingCrawlError, PlatformError
from quest_archiver.core.story_archiver import StoryArchiver
from quest_archiver.core.target_resolver import IdentifierClassifier, TargetResolver
from quest_archiver.domain.models import SortMode, TargetDescriptor
from quest_archiver.pipelines.results import ArchiveRunResult

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_USAGE = 2


@dataclass(frozen=True)
class ArchiverArgs:
    mode: str
    output_directory: Path | None
    sort_type: SortMode
    start_page: int
    end_page: int
    skip_chat: bool
    download_images: bool
    skip_list_path: Path | None
    target_list_path: Path | None
    target: str | None
    view_mode: str
    input_path: Path | None
    view_output: Path | None
    credentials_path: Path
    save_credentials: bool = False


def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Archive interactive fiction stories and build static views of archives."
    )
    parser.add_argument("-m", "--mode", choices=("scrape", "targeted", "view"), required=True)
    parser.add_argument("-o", "--output-directory", default="")
    parser.add_argument(
        "-s", "--sort-type", choices=[mode.value for mode in SortMode], default=SortMode.NEW.value
    )
    parser.add_argument("-q", "--start-page", type=int, default=1)
    parser.add_argument("-w", "--end-page", type=int, default=1000)
    parser.add_argument("-c", "--skip-chat", action="store_true")
    parser.add_argument("--no-images", action="store_true", help="Do not download images.")
    parser.add_argument("-l", "--skip-list", default="", help="File of story ids to skip.")
    parser.add_argument("-y", "--target-list", default="", help="File of story ids or authors.")
    parser.add_argument("-i", "--target", default="", help="Single story id to archive.")
    parser.add_argument("--view-mode", choices=("single", "multi"), default="multi")
    parser.add_argument("--input-path", default="")
    parser.add_argument(
        "--view-output",
        default="",
        help="Directory for rendered views; omitted means in situ.",
    )
    parser.add_argument("--credentials-file", default=str(DEFAULT_CREDENTIALS_PATH))
    parser.add_argument(
        "--save-credentials",
        action="store_true",
        help="Write the credentials to --credentials-file after a successful login.",
    )
    return parser


def _optional_path(raw: object) -> Path | None:
    text = str(raw or "").strip()
    return Path(text) if text else None


def _args_from_namespace(namespace: argparse.Namespace) -> ArchiverArgs:
    start_page = max(1, int(namespace.start_page))
    return ArchiverArgs(
        mode=str(namespace.mode),
        output_directory=_optional_path(namespace.output_directory),
        sort_type=SortMode(str(namespace.sort_type)),
        start_page=start_page,
        end_page=max(start_page, int(namespace.end_page)),
        skip_chat=bool(namespace.skip_chat),
        download_images=not bool(namespace.no_images),
        skip_list_path=_optional_path(namespace.skip_list),
        target_list_path=_optional_path(namespace.target_list),
        target=str(namespace.target or "").strip() or None,
        view_mode=str(namespace.view_mode),
        input_path=_optional_path(namespace.input_path),
        view_output=_optional_path(namespace.view_output),
        credentials_path=Path(str(namespace.credentials_file)),
        save_credentials=bool(namespace.save_credentials),
    )


def _default_output_directory() -> Path:
    return Path(f"data-{int(time.time() * 1000)}")


def _latest_data_directory(root: Path) -> Path | None:
    candidates = sorted(
        path for path in root.iterdir() if path.is_dir() and path.name.startswith("data-")
    )
    return candidates[-1] if candidates else None


def run_view_mode(args: ArchiverArgs, settings: ArchiverSettings) -> int:
    input_path = args.input_path or _latest_data_directory(Path.cwd())
    if input_path is None:
        logger.error("view.no_input detail=no --input-path and no data-* folder found")
        return EXIT_USAGE
    if args.view_mode == "single":
        if not is_archive(input_path):
            logger.error("view.not_archive path=%s", input_path)
            return EXIT_FAILURE
        inputs = [input_path]
    else:
        inputs = discover_archives(input_path)
        if not inputs:
            logger.error("view.no_archives path=%s", input_path)
            return EXIT_FAILURE
        logger.info("view.detected count=%s archives=%s", len(inputs), [str(p) for p in inputs])
    result = build_views(inputs, args.view_output, page_char_limit=settings.page_char_limit)
    return EXIT_OK if not result.failed else EXIT_FAILURE


@dataclass(frozen=True)
class _ArchiveInputs:
    skip_set: frozenset[str] = frozenset()
    identifiers: tuple[str, ...] = ()
    target: TargetDescriptor | None = None


def _load_archive_inputs(args: ArchiverArgs, settings: ArchiverSettings) -> _ArchiveInputs | None:
    """Read list files and validate `--target` before any network traffic."""
    try:
        skip_set = (
            frozenset(read_identifier_list(args.skip_list_path))
            if args.skip_list_path
            else frozenset()
        )
        identifiers = (
            tuple(read_identifier_list(args.target_list_path)) if args.target_list_path else ()
        )
    except (OSError, UnicodeDecodeError) as exc:
        logger.error("input.unreadable error=%s", exc)
        return None
    if args.mode == "scrape":
        return _ArchiveInputs(skip_set=skip_set)
    if args.target_list_path:
        return _ArchiveInputs(identifiers=identifiers)
    if not args.target:
        logger.error("targeted.no_target detail=pass --target or --target-list")
        return None
    classified = IdentifierClassifier(author_marker=settings.author_marker).classify(args.target)
    if classified is None or classified.kind != "story":
        logger.error(
            "targeted.bad_target target=%r detail=expected a story id or story URL", args.target
        )
        return None
    return _ArchiveInputs(
        target=TargetDescriptor(story_id=classified.value, skip_chat=args.skip_chat)
    )


def _run_archive_mode(
    args: ArchiverArgs,
    settings: ArchiverSettings,
    client: HttpPlatformClient,
    inputs: _ArchiveInputs,
) -> ArchiveRunResult:
    output_dir = args.output_directory or _default_output_directory()
    output_dir.mkdir(parents=True, exist_ok=True)
    policy = settings.retry_policy()
    archiver = StoryArchiver(client, output_dir, retry_policy=policy)
    ledger = FailureLedger(output_dir / DEFAULT_LEDGER_FILENAME)
    logger.info("archive.output_dir path=%s", output_dir)

    if args.mode == "scrape":
        return run_scrape(
            client,
            archiver,
            ledger,
            sort_mode=args.sort_type,
            start_page=args.start_page,
            end_page=args.end_page,
            skip_set=inputs.skip_set,
            skip_chat=args.skip_chat,
            download_images=args.download_images,
            retry_policy=policy,
        )
    if inputs.target is not None:
        return archive_targets(
            [inputs.target], archiver, ledger, download_images=args.download_images
        )
    resolver = TargetResolver(
        client,
        IdentifierClassifier(author_marker=settings.author_marker),
        retry_policy=policy,
    )
    return run_targeted(
        resolver,
        archiver,
        ledger,
        identifiers=inputs.identifiers,
        skip_chat=args.skip_chat,
        download_images=args.download_images,
    )


def run(args: ArchiverArgs) -> int:
    settings = load_settings()
    if args.mode == "view":
        return run_view_mode(args, settings)

    inputs = _load_archive_inputs(args, settings)
    if inputs is None:
        return EXIT_USAGE
    credentials = load_credentials(args.credentials_path)
    if credentials is None:
        logger.error(
            "login.no_credentials path=%s detail=set QUEST_ARCHIVER_USERNAME/PASSWORD",
            args.credentials_path,
        )
        return EXIT_USAGE
    with HttpPlatformClient(
        settings.base_url,
        timeout_seconds=settings.timeout_seconds,
        user_agent=settings.user_agent,
        request_delay_seconds=settings.request_delay_seconds,
    ) as client:
        try:
            session = client.login(credentials.username, credentials.password)
        except PlatformError as exc:
            logger.error("login.failed error=%s", exc)
            return EXIT_FAILURE
        logger.info("login.ok username=%s", session.username)
        if args.save_credentials:
            save_credentials(credentials, args.credentials_path)
            logger.info("credentials.saved path=%s", args.credentials_path)
        try:
            result = _run_archive_mode(args, settings, client, inputs)
        except ListingCrawlError as exc:
            logger.error("scrape.aborted error=%s", exc)
            return EXIT_FAILURE
        except ArchiverError as exc:
            logger.error("archive.aborted error=%s", exc)
            return EXIT_FAILURE
    logger.info(
        "archive.finished attempted=%s succeeded=%s failed=%s",
        result.attempted,
        result.succeeded,
        result.failed,
    )
    return EXIT_OK


def main(argv: list[str] | None = None) -> int:
    parser = build_arg_parser()
    parsed = parser.parse_args(argv)
    configure_runtime_logging()
    return run(_args_from_namespace(parsed))


if __name__ == "__main__":
    raise SystemExit(main())
