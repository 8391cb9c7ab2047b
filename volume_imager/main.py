import argparse
import sys
from pathlib import Path

from volume_imager.config import settings
from volume_imager.domain.models import FstabSpec
from volume_imager.logging import LoggerFactory, setup_logging
from volume_imager.storage.exceptions import ImagingError
from volume_imager.storage.image import ImageBuilder
from volume_imager import syschecks


EXIT_FAILURE = 1
EXIT_PREFLIGHT = 2
EXIT_INTERRUPTED = 130


def parse_excludes(value):
    return [path.strip() for path in value.split(",") if path.strip()]


def build_parser():
    parser = argparse.ArgumentParser(
        prog="volume-imager",
        description="Copy a volume into a bootable loopback filesystem image",
    )
    parser.add_argument("-i", "--image", required=True, help="Image file to create")
    parser.add_argument(
        "-v", "--volume", default="/", help="Absolute path of the volume to copy (default: /)"
    )
    parser.add_argument(
        "-s",
        "--size",
        type=int,
        default=settings.get_setting("image_size_mb"),
        help="Image size in MB",
    )
    parser.add_argument(
        "-e",
        "--exclude",
        type=parse_excludes,
        default=None,
        help="Comma separated absolute paths to exclude (default: configured excludes)",
    )
    parser.add_argument(
        "--fstab",
        default=None,
        help="'legacy', 'default' or a file whose contents become the image's /etc/fstab",
    )
    parser.add_argument(
        "--scratch-mountpoint",
        default=settings.get_setting("scratch_mountpoint"),
        help="Temporary mount target for the image",
    )
    parser.add_argument("--log-dir", type=Path, default=None, help="Write log files here")
    parser.add_argument("-d", "--debug", action="store_true", help="Show executed commands and their output")
    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)
    setup_logging(debug=args.debug, log_dir=args.log_dir)
    log = LoggerFactory.for_system()

    if not syschecks.is_root():
        log.error("You need to be root to build an image")
        return EXIT_PREFLIGHT
    missing = syschecks.missing_tools(settings.get_setting("filesystem"))
    if missing:
        log.error(f"Missing required tools: {', '.join(missing)}")
        return EXIT_PREFLIGHT

    excludes = args.exclude
    if excludes is None:
        excludes = list(settings.get_setting("default_excludes"))

    try:
        fstab = FstabSpec.from_option(args.fstab)
    except OSError as error:
        log.error(f"Cannot read fstab file {args.fstab}: {error}")
        return EXIT_PREFLIGHT

    try:
        builder = ImageBuilder(
            args.volume,
            args.image,
            args.size,
            excludes,
            fstab=fstab,
            debug=args.debug,
            scratch_mountpoint=args.scratch_mountpoint,
        )
    except ValueError as error:
        parser.error(str(error))

    try:
        builder.make()
    except ImagingError as error:
        log.error(str(error))
        return EXIT_FAILURE
    except KeyboardInterrupt:
        log.warning("Interrupted")
        return EXIT_INTERRUPTED
    return 0


if __name__ == "__main__":
    sys.exit(main())
