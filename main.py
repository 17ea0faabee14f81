import argparse
import asyncio
import logging
import os
import sys

from config.config_manager import ConfigManager
from config.hotkeys import describe_action, format_chord
from core.directory_scanner import DirectoryScanner
from core.errors import HitoError
from core.event_system import EventSystem, EventType
from core.models import FilterOptions, NameOperator, SizeOperator, SortDirection, SortOption
from core.persistence import LocalGateway
from core.session import HitoSession


def setup_logging(log_level, log_dir="~/.hito"):
    numeric_level = getattr(logging, log_level.upper(), logging.INFO)
    log_dir = os.path.expanduser(log_dir)
    os.makedirs(log_dir, exist_ok=True)
    log_path = os.path.join(log_dir, "hito.log")
    logging.basicConfig(
        level=numeric_level,
        format="%(asctime)s [%(levelname)s] %(name)s - %(message)s",
        handlers=[
            logging.FileHandler(log_path, mode="a"),
            logging.StreamHandler(sys.stderr)
        ]
    )


def _report(event):
    level = getattr(event, "level", "error")
    print(f"[{level}] {event.message}", file=sys.stderr)


async def open_session(config_manager: ConfigManager, directory: str, config_file: str = None) -> HitoSession:
    """Scan *directory* and load its category file into a fresh session."""
    events = EventSystem()
    events.subscribe(EventType.NOTIFICATION, _report)
    events.subscribe(EventType.ERROR, _report)

    scan = DirectoryScanner(config_manager).scan(directory)
    session = HitoSession(LocalGateway(config_manager.config_filename), events, config_manager)
    session.config_file_path = config_file
    await session.open_directory(directory, scan.images)
    return session


def _resolve_image(session: HitoSession, directory: str, image: str) -> str:
    if session.collection.contains(image):
        return image
    return os.path.join(directory, image)


async def cmd_view(config_manager, args) -> int:
    session = await open_session(config_manager, args.directory, args.config_file)
    session.set_filters(FilterOptions(
        category_id=args.category,
        name_pattern=args.name,
        name_operator=args.name_op,
        size_operator=args.size_op,
        size_value=args.size,
        size_value2=args.size2,
    ))
    session.set_sort(SortOption(args.sort), SortDirection.DESCENDING if args.desc else SortDirection.ASCENDING)
    names = session.store.category_names()
    for image in session.view():
        assigned = ", ".join(names.get(cid, cid) for cid in session.store.assigned_ids(image.path))
        size = f"{image.size // 1024} KB" if image.size is not None else "?"
        print(f"{image.path}\t{size}\t{assigned}")
    return 0


async def cmd_categories(config_manager, args) -> int:
    session = await open_session(config_manager, args.directory, args.config_file)
    counts = session.category_counts()
    names = session.store.category_names()
    for category in session.store.categories:
        exclusive = ", ".join(names.get(cid, cid) for cid in sorted(category.mutually_exclusive_with))
        line = f"{category.id}\t{category.name}\t{category.color}\t{counts.get(category.id, 0)}"
        if exclusive:
            line += f"\texcludes: {exclusive}"
        print(line)
    return 0


async def cmd_hotkeys(config_manager, args) -> int:
    session = await open_session(config_manager, args.directory, args.config_file)
    names = session.store.category_names()
    for hotkey in session.hotkeys.hotkeys:
        print(f"{format_chord(hotkey.key, hotkey.modifiers)}\t{describe_action(hotkey.action, names)}")
    return 0


async def cmd_toggle(config_manager, args) -> int:
    session = await open_session(config_manager, args.directory, args.config_file)
    path = _resolve_image(session, args.directory, args.image)
    if not session.collection.contains(path):
        logging.error(f"Image not found in {args.directory}: {args.image}")
        return 1
    assigned = await session.toggle_category(path, args.category_id)
    category = session.store.get_category(args.category_id)
    print(f"{'Assigned' if assigned else 'Removed'} {category.name}: {path}")
    return 0


def _print_removed(event):
    print(f"Removed: {event.image_path}")


async def cmd_watch(config_manager, args) -> int:
    session = await open_session(config_manager, args.directory, args.config_file)
    session.events.subscribe(EventType.IMAGE_DELETED, _print_removed)
    watcher = session.watch(DirectoryScanner(config_manager))
    try:
        if args.duration is not None:
            await asyncio.sleep(args.duration)
        else:
            await asyncio.Event().wait()
    finally:
        watcher.stop()
    return 0


COMMANDS = {
    "view": cmd_view,
    "categories": cmd_categories,
    "hotkeys": cmd_hotkeys,
    "toggle": cmd_toggle,
    "watch": cmd_watch,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Hito: sort the images of a directory into categories.")
    parser.add_argument('--config-file', default=None,
                        help='Use this category file instead of .hito.json in the directory.')
    subparsers = parser.add_subparsers(dest='command', required=True)

    view = subparsers.add_parser('view', help='Print the filtered and sorted images.')
    view.add_argument('directory')
    view.add_argument('--category', default='', help='Category id, or "uncategorized".')
    view.add_argument('--name', default='', help='Filename pattern.')
    view.add_argument('--name-op', default=NameOperator.CONTAINS.value,
                      choices=[op.value for op in NameOperator])
    view.add_argument('--size-op', default=SizeOperator.LARGER_THAN.value,
                      choices=[op.value for op in SizeOperator])
    view.add_argument('--size', default='', help='Size in KB.')
    view.add_argument('--size2', default='', help='Upper bound in KB for "between".')
    view.add_argument('--sort', default=SortOption.NAME.value, choices=[opt.value for opt in SortOption])
    view.add_argument('--desc', action='store_true', default=False, help='Sort descending.')

    categories = subparsers.add_parser('categories', help='List categories with image counts.')
    categories.add_argument('directory')

    hotkeys = subparsers.add_parser('hotkeys', help='List key bindings.')
    hotkeys.add_argument('directory')

    toggle = subparsers.add_parser('toggle', help='Toggle a category on an image and save.')
    toggle.add_argument('directory')
    toggle.add_argument('image', help='Image path or filename inside the directory.')
    toggle.add_argument('category_id')

    watch = subparsers.add_parser('watch', help='Drop images deleted from the directory until interrupted.')
    watch.add_argument('directory')
    watch.add_argument('--duration', type=float, default=None, help='Stop after this many seconds.')
    return parser


def main(argv=None):
    args = build_parser().parse_args(argv)
    args.directory = os.path.abspath(args.directory)

    config_manager = ConfigManager()
    setup_logging(config_manager.logging_level, config_manager.get("log_dir", "~/.hito"))
    logging.info(f"Running hito {args.command} on {args.directory}")

    try:
        return asyncio.run(COMMANDS[args.command](config_manager, args))
    except (FileNotFoundError, NotADirectoryError) as e:
        logging.error(f"Invalid directory provided: {e}")
        return 1
    except HitoError as e:
        logging.error(str(e))
        return 1
    except KeyboardInterrupt:
        logging.info("Interrupted, shutting down")
        return 0


if __name__ == "__main__":
    sys.exit(main())
