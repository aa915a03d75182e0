"""Parser for the sed/perl substitution scripts accepted by substitute mode.

Supported sed subset:

    [address]s<d>pattern<d>replacement<d>[flags]
    [address]d | [address]a\\text | [address]i\\text | [address]c\\text

Addresses are ``N``, ``$``, ``/regex/`` or ``addr1,addr2``. Regexes use Python
``re`` syntax (comparable to ``sed -E``). Flags: ``g``, ``i``/``I`` and a
positive occurrence number.

The perl dialect accepts only ``s<d>pattern<d>replacement<d>[gimsx]`` and is
applied to the whole text rather than line by line.

Parsing raises ScriptSyntaxError; the validator maps it to MalformedPattern.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Literal

SED_COMMANDS = frozenset("sdaic")
_SED_FLAGS = re.compile(r"^(?:[gGiI]|\d+)*$")
_PERL_FLAGS = frozenset("gimsx")


class ScriptSyntaxError(ValueError):
    """Raised when a substitution script cannot be parsed."""

    pass


# ============================================================================
# Parsed structures
# ============================================================================

ReplacementPart = str | int


@dataclass(frozen=True)
class Substitution:
    """A compiled ``s`` command.

    ``replacement`` is a sequence of literal strings and group numbers; group 0
    is the whole match. ``occurrence`` is 1-based: without ``global_`` only that
    match is replaced, with ``global_`` it and every later match are replaced.
    """

    pattern: re.Pattern[str]
    replacement: tuple[ReplacementPart, ...]
    global_: bool = False
    occurrence: int = 1

    def expand(self, match: re.Match[str]) -> str:
        return "".join(
            (match.group(part) or "") if isinstance(part, int) else part
            for part in self.replacement
        )

    def apply(self, text: str) -> tuple[str, int]:
        """Apply the substitution to ``text``.

        Returns:
            (new text, number of replacements made)
        """
        seen = 0
        replaced = 0

        def _replace(match: re.Match[str]) -> str:
            nonlocal seen, replaced
            seen += 1
            if seen < self.occurrence:
                return match.group(0)
            replaced += 1
            return self.expand(match)

        limit = 0 if self.global_ else self.occurrence
        new_text = self.pattern.sub(_replace, text, count=limit)
        return new_text, replaced


@dataclass(frozen=True)
class Address:
    """A single sed address."""

    kind: Literal["line", "last", "regex"]
    line: int | None = None
    regex: re.Pattern[str] | None = None

    def matches(self, index: int, lines: list[str]) -> bool:
        if self.kind == "line":
            return index + 1 == self.line
        if self.kind == "last":
            return index == len(lines) - 1
        assert self.regex is not None
        return self.regex.search(lines[index]) is not None


@dataclass(frozen=True)
class AddressRange:
    """One address, or a ``start,end`` pair."""

    start: Address
    end: Address | None = None

    def select(self, lines: list[str]) -> list[bool]:
        """Return a per-line mask of the lines this address selects.

        Ranges behave as in sed: a regex end is only checked on lines after the
        start, a numeric end at or before the start selects just the start line,
        and a range may open again after it closed.
        """
        selected = [False] * len(lines)
        active = False
        for i in range(len(lines)):
            if not active:
                if not self.start.matches(i, lines):
                    continue
                selected[i] = True
                if self.end is None:
                    continue
                if self.end.kind == "line":
                    assert self.end.line is not None
                    active = self.end.line > i + 1
                elif self.end.kind == "last":
                    active = i != len(lines) - 1
                else:
                    active = True
            else:
                selected[i] = True
                assert self.end is not None
                if self.end.kind == "line":
                    assert self.end.line is not None
                    active = i + 1 < self.end.line
                else:
                    active = not self.end.matches(i, lines)
        return selected


@dataclass(frozen=True)
class SedCommand:
    """A parsed sed script: one command with an optional address."""

    command: Literal["s", "d", "a", "i", "c"]
    address: AddressRange | None = None
    substitution: Substitution | None = None
    text: str | None = None

    def select(self, lines: list[str]) -> list[bool]:
        if self.address is None:
            return [True] * len(lines)
        return self.address.select(lines)


@dataclass
class _Cursor:
    text: str
    pos: int = 0

    def peek(self) -> str:
        return self.text[self.pos] if self.pos < len(self.text) else ""


# ============================================================================
# Parsing helpers
# ============================================================================


def _read_delimited(cursor: _Cursor, delimiter: str, what: str) -> str:
    """Read up to the next unescaped ``delimiter``; escapes are kept verbatim."""
    chunk: list[str] = []
    text = cursor.text
    while cursor.pos < len(text):
        char = text[cursor.pos]
        if char == "\\" and cursor.pos + 1 < len(text):
            chunk.append(text[cursor.pos : cursor.pos + 2])
            cursor.pos += 2
            continue
        if char == delimiter:
            cursor.pos += 1
            return "".join(chunk)
        chunk.append(char)
        cursor.pos += 1
    raise ScriptSyntaxError(f"unterminated {what}: missing closing '{delimiter}'")


def _compile(pattern: str, flags: int = 0) -> re.Pattern[str]:
    if pattern == "":
        raise ScriptSyntaxError("empty regular expression")
    try:
        return re.compile(pattern, flags)
    except re.error as e:
        raise ScriptSyntaxError(f"invalid regular expression {pattern!r}: {e}") from e


def _parse_sed_replacement(raw: str) -> tuple[ReplacementPart, ...]:
    """Tokenise a sed RHS: ``&`` and ``\\N`` are group references."""
    parts: list[ReplacementPart] = []
    literal: list[str] = []

    def flush() -> None:
        if literal:
            parts.append("".join(literal))
            literal.clear()

    i = 0
    while i < len(raw):
        char = raw[i]
        if char == "&":
            flush()
            parts.append(0)
        elif char == "\\" and i + 1 < len(raw):
            nxt = raw[i + 1]
            i += 1
            if nxt.isdigit():
                flush()
                parts.append(int(nxt))
            elif nxt == "n":
                literal.append("\n")
            elif nxt == "t":
                literal.append("\t")
            else:
                literal.append(nxt)
        else:
            literal.append(char)
        i += 1
    flush()
    return tuple(parts)


_PERL_GROUP = re.compile(r"\$(?:\{(\d+)\}|(\d+)|(&))")


def _parse_perl_replacement(raw: str) -> tuple[ReplacementPart, ...]:
    """Tokenise a perl RHS: ``$1``, ``${12}``, ``$&`` and ``\\1``."""
    parts: list[ReplacementPart] = []
    literal: list[str] = []

    def flush() -> None:
        if literal:
            parts.append("".join(literal))
            literal.clear()

    i = 0
    while i < len(raw):
        char = raw[i]
        if char == "$":
            match = _PERL_GROUP.match(raw, i)
            if match:
                flush()
                braced, single, whole = match.groups()
                parts.append(0 if whole else int(braced or single))
                i = match.end()
                continue
            literal.append(char)
        elif char == "\\" and i + 1 < len(raw):
            nxt = raw[i + 1]
            i += 1
            if nxt.isdigit():
                flush()
                parts.append(int(nxt))
            elif nxt == "n":
                literal.append("\n")
            elif nxt == "t":
                literal.append("\t")
            else:
                literal.append(nxt)
        else:
            literal.append(char)
        i += 1
    flush()
    return tuple(parts)


def _check_group_refs(pattern: re.Pattern[str], replacement: tuple[ReplacementPart, ...]) -> None:
    for part in replacement:
        if isinstance(part, int) and part > pattern.groups:
            raise ScriptSyntaxError(
                f"invalid reference \\{part} in replacement: pattern has {pattern.groups} group(s)"
            )


def _parse_address(cursor: _Cursor) -> Address | None:
    char = cursor.peek()
    if char.isdigit():
        start = cursor.pos
        while cursor.peek().isdigit():
            cursor.pos += 1
        line = int(cursor.text[start : cursor.pos])
        if line < 1:
            raise ScriptSyntaxError("invalid line address 0: line numbers start at 1")
        return Address(kind="line", line=line)
    if char == "$":
        cursor.pos += 1
        return Address(kind="last")
    if char == "/":
        cursor.pos += 1
        regex = _read_delimited(cursor, "/", "address regex")
        return Address(kind="regex", regex=_compile(regex))
    return None


def _parse_address_range(cursor: _Cursor) -> AddressRange | None:
    start = _parse_address(cursor)
    if start is None:
        return None
    end: Address | None = None
    if cursor.peek() == ",":
        cursor.pos += 1
        end = _parse_address(cursor)
        if end is None:
            raise ScriptSyntaxError("expected an address after ','")
    return AddressRange(start=start, end=end)


def _parse_substitution_body(
    cursor: _Cursor, dialect: Literal["sed", "perl"]
) -> tuple[str, str, str]:
    delimiter = cursor.peek()
    if delimiter == "" or delimiter in "\\\n":
        raise ScriptSyntaxError("missing delimiter after 's'")
    cursor.pos += 1
    pattern = _read_delimited(cursor, delimiter, "pattern")
    replacement = _read_delimited(cursor, delimiter, "replacement")
    flags = cursor.text[cursor.pos :].strip()
    if dialect == "sed":
        flags = flags.rstrip(";").strip()
    cursor.pos = len(cursor.text)
    return pattern, replacement, flags


# ============================================================================
# Public API
# ============================================================================


def parse_sed_script(script: str) -> SedCommand:
    """Parse a sed-style script into a SedCommand.

    Args:
        script: e.g. ``s/old/new/g``, ``1,5s/foo/bar/``, ``/pattern/d``,
            ``10a\\New line`` or ``$d``

    Returns:
        The parsed command

    Raises:
        ScriptSyntaxError: Empty script, unknown command, unterminated
            delimiter, bad flags or an invalid regular expression
    """
    if not script or not script.strip():
        raise ScriptSyntaxError("script is empty")

    cursor = _Cursor(script.strip())
    address = _parse_address_range(cursor)
    while cursor.peek() in (" ", "\t"):
        cursor.pos += 1

    command = cursor.peek()
    if command not in SED_COMMANDS:
        shown = command or "end of script"
        raise ScriptSyntaxError(f"unknown command: '{shown}'")
    cursor.pos += 1

    if command == "s":
        raw_pattern, raw_replacement, flags = _parse_substitution_body(cursor, "sed")
        if not _SED_FLAGS.match(flags):
            raise ScriptSyntaxError(f"unknown option to 's': {flags!r}")
        occurrences = [int(n) for n in re.findall(r"\d+", flags)]
        if len(occurrences) > 1:
            raise ScriptSyntaxError("multiple number options to 's'")
        occurrence = occurrences[0] if occurrences else 1
        if occurrence < 1:
            raise ScriptSyntaxError("number option to 's' may not be zero")
        re_flags = re.IGNORECASE if ("i" in flags or "I" in flags) else 0
        pattern = _compile(raw_pattern, re_flags)
        replacement = _parse_sed_replacement(raw_replacement)
        _check_group_refs(pattern, replacement)
        substitution = Substitution(
            pattern=pattern,
            replacement=replacement,
            global_="g" in flags or "G" in flags,
            occurrence=occurrence,
        )
        return SedCommand(command="s", address=address, substitution=substitution)

    rest = cursor.text[cursor.pos :]
    if command == "d":
        if rest.strip().rstrip(";").strip():
            raise ScriptSyntaxError(f"extra characters after command: {rest.strip()!r}")
        return SedCommand(command="d", address=address)

    # a, i, c: text follows a backslash or whitespace
    if rest.startswith("\\"):
        rest = rest[1:]
        if rest.startswith("\n"):
            rest = rest[1:]
    elif rest[:1] in (" ", "\t"):
        rest = rest.lstrip(" \t")
    else:
        raise ScriptSyntaxError(f"expected '\\' or whitespace after '{command}' command")
    if rest == "":
        raise ScriptSyntaxError(f"'{command}' command requires text")
    return SedCommand(command=command, address=address, text=rest)  # type: ignore[arg-type]


def parse_perl_script(script: str) -> Substitution:
    """Parse a perl-style ``s///`` expression applied to the whole text.

    Flags: ``g`` (all matches), ``i`` (IGNORECASE), ``m`` (MULTILINE),
    ``s`` (DOTALL), ``x`` (VERBOSE).

    Raises:
        ScriptSyntaxError: Not an ``s`` expression, unterminated, bad flags or
            an invalid regular expression
    """
    if not script or not script.strip():
        raise ScriptSyntaxError("script is empty")
    cursor = _Cursor(script.strip())
    if cursor.peek() != "s":
        raise ScriptSyntaxError(
            "perl scripts must be substitutions of the form s/pattern/replacement/flags"
        )
    cursor.pos += 1
    raw_pattern, raw_replacement, flags = _parse_substitution_body(cursor, "perl")
    unknown = set(flags) - _PERL_FLAGS
    if unknown:
        raise ScriptSyntaxError(f"unknown perl modifier(s): {''.join(sorted(unknown))}")

    re_flags = 0
    if "i" in flags:
        re_flags |= re.IGNORECASE
    if "m" in flags:
        re_flags |= re.MULTILINE
    if "s" in flags:
        re_flags |= re.DOTALL
    if "x" in flags:
        re_flags |= re.VERBOSE
    pattern = _compile(raw_pattern, re_flags)
    replacement = _parse_perl_replacement(raw_replacement)
    _check_group_refs(pattern, replacement)
    return Substitution(pattern=pattern, replacement=replacement, global_="g" in flags)


def literal_substitution(find: str, replace: str, replace_all: bool) -> Substitution:
    """Build a substitution that matches ``find`` verbatim and inserts ``replace`` verbatim."""
    if not find:
        raise ScriptSyntaxError("find string is empty")
    return Substitution(
        pattern=re.compile(re.escape(find)),
        replacement=(replace,) if replace else (),
        global_=replace_all,
    )
