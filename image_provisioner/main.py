from __future__ import annotations

import sys
from typing import Optional, Sequence

from image_provisioner import cli
from image_provisioner.logging import LoggerFactory, setup_logging
from image_provisioner.storage.exceptions import ProvisionError


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = cli.parse_args(argv)
    setup_logging(
        debug=args.debug,
        trace=args.trace,
        log_dir=args.log_dir,
        file_sinks=not args.no_log_files,
    )
    log = LoggerFactory.for_cli()
    log.debug(f"Command: {' '.join(sys.argv[1:] if argv is None else argv)}")

    try:
        return args.handler(args)
    except ProvisionError as error:
        log.error(str(error))
        return 1


if __name__ == "__main__":
    sys.exit(main())
