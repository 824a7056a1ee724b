"""Command line interface.

Commands:
    file copy-to-image    copy host files into image partitions
    file copy-from-image  copy files out of image partitions
    image info            show compression and partition table of an image
"""

from __future__ import annotations

import argparse
from pathlib import Path
from typing import Optional, Sequence

from image_provisioner.__version__ import __version__
from image_provisioner.domain.models import (
    Compression,
    FileCopyFromParams,
    FileCopyToParams,
    PipelineOptions,
)
from image_provisioner.pipeline import run_image_command
from image_provisioner.storage import compression
from image_provisioner.storage.exceptions import ImageNotFoundError, PreconditionError
from image_provisioner.storage.file_ops import copy_from_image, copy_to_image
from image_provisioner.storage.partitions import read_partition_table
from image_provisioner.storage.sparse import allocated_bytes


def _argparse_type(parse):
    """Adapt a domain ``parse`` classmethod for argparse error reporting."""

    def convert(value: str):
        try:
            return parse(value)
        except PreconditionError as e:
            raise argparse.ArgumentTypeError(e.reason) from e

    convert.__name__ = getattr(parse, "__qualname__", "value")
    return convert


def _add_image_output_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "-b",
        "--generate-bmap-file",
        dest="generate_bmap",
        action="store_true",
        help="Write <image>.bmap next to the output image",
    )
    parser.add_argument(
        "-c",
        "--compress-image",
        dest="compress_image",
        type=_argparse_type(Compression.parse),
        default=None,
        metavar="CODEC",
        help="Compress the output image (gzip, xz, zstd, bzip2)",
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="image-provisioner",
        description="Provision embedded Linux device images",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("-d", "--debug", action="store_true", help="Enable verbose debug output")
    parser.add_argument("--trace", action="store_true", help="Enable trace output")
    parser.add_argument("--log-dir", type=Path, default=None, help="Directory for log files")
    parser.add_argument(
        "--no-log-files", action="store_true", help="Log to stderr only"
    )

    commands = parser.add_subparsers(dest="command", required=True)

    file_parser = commands.add_parser("file", help="Copy files into or out of an image")
    file_commands = file_parser.add_subparsers(dest="file_command", required=True)

    copy_to = file_commands.add_parser("copy-to-image", help="Copy host files into the image")
    copy_to.add_argument("-i", "--image", type=Path, required=True)
    copy_to.add_argument(
        "-f",
        "--files",
        dest="file_copy_params",
        type=_argparse_type(FileCopyToParams.parse),
        action="append",
        required=True,
        metavar="IN_FILE,PARTITION,OUT_FILE",
    )
    _add_image_output_args(copy_to)
    copy_to.set_defaults(handler=cmd_copy_to_image)

    copy_from = file_commands.add_parser(
        "copy-from-image", help="Copy files out of the image onto the host"
    )
    copy_from.add_argument("-i", "--image", type=Path, required=True)
    copy_from.add_argument(
        "-f",
        "--files",
        dest="file_copy_params",
        type=_argparse_type(FileCopyFromParams.parse),
        action="append",
        required=True,
        metavar="PARTITION:IN_FILE,OUT_FILE",
    )
    copy_from.set_defaults(handler=cmd_copy_from_image)

    image_parser = commands.add_parser("image", help="Inspect images")
    image_commands = image_parser.add_subparsers(dest="image_command", required=True)
    info = image_commands.add_parser("info", help="Show compression and partitions")
    info.add_argument("-i", "--image", type=Path, required=True)
    info.set_defaults(handler=cmd_image_info)

    return parser


def cmd_copy_to_image(args: argparse.Namespace) -> int:
    options = PipelineOptions.from_settings(
        generate_bmap=args.generate_bmap,
        target_compression=args.compress_image,
    )
    result = run_image_command(
        args.image,
        options,
        lambda img: copy_to_image(args.file_copy_params, img),
    )
    print(f"Wrote {result.image}")
    if result.bmap:
        print(f"Wrote {result.bmap}")
    return 0


def cmd_copy_from_image(args: argparse.Namespace) -> int:
    options = PipelineOptions.from_settings(write_image=False)
    run_image_command(
        args.image,
        options,
        lambda img: copy_from_image(args.file_copy_params, img),
    )
    for param in args.file_copy_params:
        print(f"Copied {param.partition.value}:{param.in_file} to {param.out_file}")
    return 0


def cmd_image_info(args: argparse.Namespace) -> int:
    image: Path = args.image
    if not image.exists():
        raise ImageNotFoundError(image, operation="image_info")
    codec = compression.detect(image, read_magic=True)
    print(f"Image:       {image}")
    print(f"Compression: {codec.value if codec else 'none'}")
    print(f"Size:        {image.stat().st_size} bytes ({allocated_bytes(image)} allocated)")
    if codec is not None and Compression.from_path(image) is None:
        raise PreconditionError(
            f"{codec.value} data without a {codec.extension} extension", operation="image_info"
        )
    if codec is not None:
        # The partition table of a compressed image is read from a staged plain copy
        options = PipelineOptions.from_settings(write_image=False)
        run_image_command(image, options, _print_partition_table)
    else:
        _print_partition_table(image)
    return 0


def _print_partition_table(image: Path) -> None:
    entries = read_partition_table(image)
    print("Partitions:")
    for entry in entries:
        print(
            f"  {entry.number:>2}  start={entry.start_bytes:<12} "
            f"size={entry.size_bytes:<12} type={entry.type or '-'}"
        )


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    return build_parser().parse_args(argv)


__all__ = [
    "build_parser",
    "parse_args",
    "cmd_copy_to_image",
    "cmd_copy_from_image",
    "cmd_image_info",
]
