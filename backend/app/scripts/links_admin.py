from __future__ import annotations

import argparse
from collections.abc import Sequence

from backend.app.config import AppSettings, load_settings
from backend.app.repositories.database import Database
from backend.app.repositories.link_repository import LinkRecord, LinkRepository
from backend.app.services.link_board import LinkBoard
from backend.app.services.link_service import LinkService
from backend.app.services.metadata_service import MetadataService
from backend.app.services.page_fetcher import PageFetcher
from backend.app.services.url_normalizer import is_absolute_web_url, normalize_url


def _parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Inspect and maintain the Link Shelf database.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    list_parser = subparsers.add_parser("list", help="List the links of a list in display order.")
    list_parser.add_argument("--list-id", type=int, required=True, help="List identifier.")

    add_parser = subparsers.add_parser("add", help="Add a link, fetching its metadata.")
    add_parser.add_argument("--list-id", type=int, required=True, help="List identifier.")
    add_parser.add_argument("--url", required=True, help="URL to add (scheme optional).")

    move_parser = subparsers.add_parser("move", help="Move a link to a new index in its list.")
    move_parser.add_argument("--list-id", type=int, required=True, help="List identifier.")
    move_parser.add_argument("--link-id", type=int, required=True, help="Link to move.")
    move_parser.add_argument(
        "--to-index",
        type=int,
        required=True,
        help="Zero-based destination index.",
    )

    preview_parser = subparsers.add_parser(
        "preview",
        help="Print the metadata that would be stored for a URL.",
    )
    preview_parser.add_argument("--url", required=True, help="URL to preview.")

    compact_parser = subparsers.add_parser(
        "compact",
        help="Rewrite positions of a list as 1..N, keeping the current order.",
    )
    compact_parser.add_argument("--list-id", type=int, required=True, help="List identifier.")

    return parser.parse_args(argv)


def _build_metadata_service(settings: AppSettings) -> MetadataService:
    return MetadataService(
        fetcher=PageFetcher(
            user_agent=settings.metadata_user_agent,
            max_bytes=settings.metadata_fetch_max_bytes,
        ),
        enabled=settings.metadata_fetch_enabled,
        timeout_ms=settings.metadata_fetch_timeout_ms,
    )


def _print_links(links: Sequence[LinkRecord]) -> None:
    if not links:
        print("No links found.")
        return

    print("id\tposition\turl\ttitle\tnote")
    for link in links:
        print(
            "\t".join(
                [
                    str(link.link_id),
                    "-" if link.position is None else str(link.position),
                    link.url,
                    link.title,
                    "" if is_absolute_web_url(link.url) else "not a web URL",
                ]
            )
        )


def main(argv: Sequence[str] | None = None) -> int:
    args = _parse_args(argv)
    settings = load_settings()
    metadata_service = _build_metadata_service(settings)

    if args.command == "preview":
        acquisition = metadata_service.acquire(normalize_url(args.url))
        print(f"Outcome: {acquisition.outcome}")
        print(f"Title: {acquisition.metadata.title}")
        print(f"Description: {acquisition.metadata.description}")
        print(f"Image: {acquisition.metadata.image or '-'}")
        if acquisition.detail:
            print(f"Detail: {acquisition.detail}")
        return 0

    database = Database(settings.db_path)
    database.initialize()
    repository = LinkRepository(database)
    service = LinkService(store=repository, metadata_service=metadata_service)

    if args.command == "list":
        _print_links(service.list_links(args.list_id))
        return 0

    if args.command == "add":
        result = service.create_link(url=args.url, list_id=args.list_id)
        print(f"Added link {result.link.link_id}: {result.link.title} <{result.link.url}>")
        print(f"Metadata outcome: {result.acquisition.outcome}")
        return 0

    if args.command == "move":
        board = LinkBoard(
            list_id=args.list_id,
            persist=lambda list_id, ordered_ids: service.reorder_links(
                list_id=list_id,
                ordered_ids=ordered_ids,
            ),
        )
        board.load(service.list_links(args.list_id))
        outcome = board.move(args.link_id, args.to_index)
        if outcome.error is not None:
            print(f"Move failed, order unchanged: {outcome.error}")
            return 1
        if not outcome.moved:
            print("Nothing to move.")
            return 0
        print("Moved. New order: " + ", ".join(str(link_id) for link_id in outcome.ordered_ids))
        return 0

    if args.command == "compact":
        updated = repository.compact_positions(args.list_id)
        print(f"Rewrote positions for {updated} link(s) in list {args.list_id}.")
        return 0

    raise RuntimeError(f"Unhandled command: {args.command}")


if __name__ == "__main__":
    raise SystemExit(main())
