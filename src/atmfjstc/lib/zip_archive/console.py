"""
Colored terminal output for the ``zip-archive`` program.

Informational and success messages go to stdout, warnings and errors to stderr. While an entry's content is being
written to stdout, the stdout messages can be muted with `Console.disable_stdout` so they do not get mixed into it.

Use the module-level `console` instance::

    from atmfjstc.lib.zip_archive.console import console

    console.print_error("Archive is corrupt")
"""

import sys

from typing import Optional
from termcolor import cprint


class Console:
    _stdout_enabled: bool = True

    def print_info(self, message: str) -> 'Console':
        return self._print(message, to_stderr=False)

    def print_success(self, message: str) -> 'Console':
        return self._print(message, color='green', to_stderr=False)

    def print_warning(self, message: str) -> 'Console':
        return self._print(message, color='yellow', to_stderr=True)

    def print_error(self, message: str) -> 'Console':
        return self._print(message, color='red', to_stderr=True)

    def disable_stdout(self) -> 'Console':
        self._stdout_enabled = False
        return self

    def enable_stdout(self) -> 'Console':
        self._stdout_enabled = True
        return self

    def _print(self, message: str, to_stderr: bool, color: Optional[str] = None) -> 'Console':
        if not (to_stderr or self._stdout_enabled):
            return self

        channel = sys.stderr if to_stderr else sys.stdout

        if color is None:
            print(message, file=channel)
        else:
            cprint(message, color, attrs=['bold'], file=channel)

        return self


console = Console()
