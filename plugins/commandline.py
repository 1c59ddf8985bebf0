"""Command-line style parsing for chat commands.

    /plugin --enable 2   ->  [("", "/plugin"), ("enable", "2")]
    /plugin -l           ->  [("", "/plugin"), ("l", None)]

The first pair always carries the command token as its value. A token
starting with '-' opens a new (flag, value) pair; the token after it
becomes the value unless it is itself a flag. A bare token with no
preceding flag forms a pair with an empty flag.
"""

from __future__ import annotations

import shlex
from dataclasses import dataclass


@dataclass
class Argument:
    flag: str
    value: str | None = None


def _is_flag(token: str) -> bool:
    return token.startswith("-") and len(token) > 1


def parse_command_line(text: str) -> list[Argument]:
    """Split a chat command into a command token and flag/value pairs.

    Raises ValueError on unbalanced quotes.
    """
    tokens = shlex.split(text.strip())
    if not tokens:
        return []

    args = [Argument(flag="", value=tokens[0])]
    current: Argument | None = None
    for token in tokens[1:]:
        if _is_flag(token):
            current = Argument(flag=token.lstrip("-"))
            args.append(current)
        elif current is not None and current.value is None:
            current.value = token
        else:
            args.append(Argument(flag="", value=token))
            current = None
    return args
