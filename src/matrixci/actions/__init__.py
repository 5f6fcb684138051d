from .base import Action, ActionCall
from .checkout import checkout
from .files import read_file
from .shell import run_shell
from .tool import run_tool

# Action references usable from `uses:`; `run:` steps resolve to "run".
BUILTIN_ACTIONS = {
    "run": run_shell,
    "checkout": checkout,
    "read-file": read_file,
    "tool": run_tool,
}

__all__ = ["Action", "ActionCall", "BUILTIN_ACTIONS", "checkout", "read_file", "run_shell", "run_tool"]
