"""UserParameter directive parsing.

A directive is a single agent configuration line of the form::

    UserParameter=<name>,<command>

The key is everything before the first comma (``UserParameter=<name>``).
The command is opaque and may itself contain commas, quotes or pipes.
"""

from dataclasses import dataclass

DIRECTIVE_PREFIX = "UserParameter="


class MalformedDirectiveError(ValueError):
    """Line starts with UserParameter= but is not a valid directive."""

    pass


@dataclass(frozen=True)
class DirectiveKey:
    """
    Validated directive key, e.g. ``UserParameter=gpu.power[*]``.

    Matching is a literal prefix comparison against ``<key>,`` so
    item keys containing ``.``, ``*`` or ``[`` never act as patterns.
    """

    value: str

    def __post_init__(self):
        if not self.value.startswith(DIRECTIVE_PREFIX):
            raise MalformedDirectiveError(
                f"Key must start with {DIRECTIVE_PREFIX!r}: {self.value!r}"
            )
        name = self.value[len(DIRECTIVE_PREFIX):]
        if not name:
            raise MalformedDirectiveError(f"Empty parameter name: {self.value!r}")
        if "," in name or "\n" in name or "\r" in name:
            raise MalformedDirectiveError(f"Invalid character in key: {self.value!r}")

    @classmethod
    def for_item(cls, item_key: str) -> "DirectiveKey":
        """Build a key from a bare item key such as ``gpu.nvlink.status``."""
        return cls(DIRECTIVE_PREFIX + item_key)

    @classmethod
    def coerce(cls, key: "DirectiveKey | str") -> "DirectiveKey":
        """Accept either a DirectiveKey, a full key or a bare item key."""
        if isinstance(key, DirectiveKey):
            return key
        if key.startswith(DIRECTIVE_PREFIX):
            return cls(key)
        return cls.for_item(key)

    @property
    def item(self) -> str:
        """Item key without the UserParameter= prefix."""
        return self.value[len(DIRECTIVE_PREFIX):]

    def matches(self, line: str) -> bool:
        """True if line defines this key (anchored at line start)."""
        return line.startswith(self.value + ",")

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class Directive:
    """A parsed UserParameter line."""

    key: DirectiveKey
    raw_line: str

    @property
    def command(self) -> str:
        return self.raw_line[len(self.key.value) + 1:]


def parse_directive(line: str) -> Directive | None:
    """
    Parse a configuration line.

    Args:
        line: A single line, with or without its terminator

    Returns:
        Directive, or None for comments, blanks and other settings

    Raises:
        MalformedDirectiveError: If the line starts with UserParameter=
            but has no comma or an empty name
    """
    line = line.rstrip("\r\n")
    if not line.startswith(DIRECTIVE_PREFIX):
        return None

    key, sep, _ = line.partition(",")
    if not sep:
        raise MalformedDirectiveError(f"Missing comma separator: {line!r}")

    return Directive(key=DirectiveKey(key), raw_line=line)


def directive_for_line(full_line: str) -> Directive:
    """Parse a line that must be a directive."""
    directive = parse_directive(full_line)
    if directive is None:
        raise MalformedDirectiveError(
            f"Not a {DIRECTIVE_PREFIX} line: {full_line!r}"
        )
    return directive
