from enum import Enum


class bcolors(Enum):  # noqa: N801
    HEADER = "\033[95m"   # Bright Magenta
    OKBLUE = "\033[94m"   # Bright Blue
    OKCYAN = "\033[96m"   # Bright Cyan
    OKGREEN = "\033[92m"  # Bright Green
    WARNING = "\033[93m"  # Bright Yellow
    RED = "\033[91m"      # Bright Red
    GRAY = "\033[90m"     # Bright Black (Gray)
    ENDC = "\033[0m"      # closing code 'tag'
    BOLD = "\033[1m"

    def __str__(self) -> str:
        return self.value


def fconsole(string: str,
             style: bcolors | list[bcolors] = bcolors.BOLD) -> str:
    """Format text with terminal color codes and styles."""
    if isinstance(style, list):
        for color in style:
            string = f"{color}{string}{bcolors.ENDC}"
    else:
        string = f"{style}{string}{bcolors.ENDC}"
    return string

