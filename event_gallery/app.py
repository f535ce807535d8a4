import argparse
import asyncio
import logging
import os
import sys

from PySide6.QtCore import QCoreApplication

from .domain import LocalAsset, SortBy
from .errors import GalleryError
from .rest_backend import build_rest_backend
from .settings import load_settings
from .timing import log_stats, reset_stats
from .viewmodel import GallerySession

_LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()


def _configure_logging(log_file: str | None = None):
    # Only call basicConfig if no handlers are configured (prevents duplicate handlers)
    if not logging.getLogger().hasHandlers():
        logging.basicConfig(level=getattr(logging, _LOG_LEVEL, logging.INFO), format="%(levelname)s:%(name)s:%(message)s")
    if log_file:
        try:
            fh = logging.FileHandler(log_file, mode="a")
            fh.setFormatter(logging.Formatter("%(asctime)s %(levelname)s:%(name)s:%(message)s"))
            logging.getLogger().addHandler(fh)
        except OSError as e:
            logging.warning(f"Could not open log file {log_file}: {e}")
    # Reduce verbosity from PIL image plugins and HTTP plumbing
    logging.getLogger("PIL").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Event gallery - list, upload and delete event photos")
    parser.add_argument("event_id", help="Event whose gallery to open")
    parser.add_argument("--sort", choices=[s.value for s in SortBy], default=None, help="Sort order")
    parser.add_argument("--mine", action="store_true", help="Only show my photos")
    parser.add_argument("--upload", nargs="+", metavar="FILE", default=[], help="Photos to upload first")
    parser.add_argument("--delete", nargs="+", metavar="MEDIA_ID", default=[], help="Media ids to delete first")
    parser.add_argument("--url", help="Backend base URL (overrides config)")
    parser.add_argument("--key", help="Anonymous API key (overrides config)")
    parser.add_argument("--token", help="Access token of the signed-in user (overrides config)")
    parser.add_argument("--config", help="Path to the JSON config file", default=None)
    parser.add_argument("--log-file", "-l", help="Path to write log output (appends)", default=None)
    return parser


def format_state(state) -> list[str]:
    lines = []
    title = state.event.name if state.event else "?"
    lines.append(f"{title}: {len(state.visible)} of {len(state.items)} photos (sort={state.sort_by.value})")
    if state.groups:
        for group in state.groups:
            lines.append(f"{group.display_name} ({len(group.items)})")
            lines.extend("  " + _format_item(i) for i in group.items)
    else:
        lines.extend(_format_item(i) for i in state.visible)
    return lines


def _format_item(item) -> str:
    heart = "*" if item.user_has_liked else " "
    return f"{item.created_at:%Y-%m-%d %H:%M}  {item.display_name:<24} {item.likes_count:>3}{heart} {item.id}"


async def run(args, settings: dict) -> int:
    backend = build_rest_backend(settings)
    refresh = getattr(backend.identity, "refresh", None)
    if refresh is not None:
        await refresh()

    async with GallerySession(backend, settings) as session:
        session.bus.notified.connect(lambda n: print(f"[{n.level.value}] {n.title}: {n.message}"))
        vm = await session.open_gallery(args.event_id)
        if vm.state().error:
            print(f"Error: {vm.state().error}", file=sys.stderr)
            return 1
        status = 0
        if args.upload:
            assets = [LocalAsset(uri=p, file_name=os.path.basename(p)) for p in args.upload]
            summary = await vm.upload(assets)
            status = _report(summary.as_error(), status)
        if args.delete:
            vm.selection_model.set(args.delete)
            summary = await vm.delete_selected()
            status = _report(summary.as_error(), status)
        if args.sort:
            vm.set_sort(args.sort)
        vm.set_only_mine(args.mine)
        for line in format_state(vm.state()):
            print(line)
    return status


def _report(error, status: int) -> int:
    if error is None:
        return status
    logging.warning(f"Partial failure: {error}")
    return 2


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    _configure_logging(args.log_file)
    settings = load_settings(args.config)
    for key, value in (("backend_url", args.url), ("anon_key", args.key), ("access_token", args.token)):
        if value:
            settings[key] = value

    # Signals are delivered directly on this thread; the instance only backs Qt bookkeeping
    app = QCoreApplication.instance() or QCoreApplication([])  # noqa: F841
    reset_stats()
    try:
        return asyncio.run(run(args, settings))
    except GalleryError as e:
        logging.error(f"Gallery error: {e}")
        return 1
    except KeyboardInterrupt:
        logging.info("Interrupted")
        return 130
    finally:
        log_stats()


if __name__ == "__main__":
    sys.exit(main())
