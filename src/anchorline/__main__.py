"""CLI entrypoint for anchorline."""

import anchorline.cli.audit_cmd  # noqa: F401
import anchorline.cli.cost_cmd  # noqa: F401
import anchorline.cli.init  # noqa: F401
import anchorline.cli.merkle_cmd  # noqa: F401
import anchorline.cli.serve  # noqa: F401
from anchorline.cli.main import cli


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
