import sys

from modinstall.console import modinstall_console
from modinstall.helpers.parse_ops import init_input_parser


def main() -> None:
    options = init_input_parser().parse_args()
    sys.exit(modinstall_console.main(options))


if __name__ == "__main__":
    main()
