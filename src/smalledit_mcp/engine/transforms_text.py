"""Regex-based transformers: sed/perl substitution and literal find/replace.

Literal replacement never hands the user's text to the regex engine as a
pattern: it is escaped first and then goes through the same Substitution
routine the sed transformer uses, with the replacement inserted verbatim.
"""

from __future__ import annotations

from typing import ClassVar

from pydantic import BaseModel

from .diff import count_changed_lines
from .lines import split_lines, split_text_block
from .models import EditMode, LiteralReplaceParams, SubstituteParams, TransformResult
from .sed_script import SedCommand, literal_substitution, parse_perl_script, parse_sed_script
from .transform_base import TextTransformer


class SubstituteTransformer(TextTransformer):
    """Applies a sed-style command line by line, or a perl-style ``s///`` to the whole text.

    ``lines_changed`` counts the lines the command acted on: lines where ``s``
    replaced something, lines deleted by ``d``, lines added by ``a``/``i`` and
    lines replaced by ``c``. Unmatched patterns and addresses past the end of
    the file are a no-op.
    """

    mode: ClassVar[EditMode] = EditMode.SUBSTITUTE
    params_type: ClassVar[type[BaseModel]] = SubstituteParams

    def transform(self, content: str, params: SubstituteParams) -> TransformResult:
        if params.dialect == "perl":
            substitution = parse_perl_script(params.script)
            new_content, replacements = substitution.apply(content)
            return TransformResult.ok(
                new_content, count_changed_lines(content, new_content), replacements
            )

        command = parse_sed_script(params.script)
        lines, layout = split_lines(content)
        output, lines_changed, replacements = self._run_command(command, lines)
        return TransformResult.ok(layout.join(output), lines_changed, replacements)

    def _run_command(self, command: SedCommand, lines: list[str]) -> tuple[list[str], int, int]:
        selected = command.select(lines)
        is_range = command.address is not None and command.address.end is not None
        text_lines = split_text_block(command.text) if command.text is not None else []

        output: list[str] = []
        lines_changed = 0
        replacements = 0

        for index, line in enumerate(lines):
            if not selected[index]:
                output.append(line)
                continue

            if command.command == "s":
                assert command.substitution is not None
                new_line, count = command.substitution.apply(line)
                # A "\n" in the replacement starts a new line in the output layout
                output.extend(new_line.split("\n"))
                if count:
                    lines_changed += 1
                    replacements += count
            elif command.command == "d":
                lines_changed += 1
            elif command.command == "a":
                output.append(line)
                output.extend(text_lines)
                lines_changed += len(text_lines)
            elif command.command == "i":
                output.extend(text_lines)
                output.append(line)
                lines_changed += len(text_lines)
            else:
                # c: a range is replaced by one copy of the text at its last line
                lines_changed += 1
                last_of_run = index + 1 >= len(lines) or not selected[index + 1]
                if not is_range or last_of_run:
                    output.extend(text_lines)

        return output, lines_changed, replacements


class LiteralReplaceTransformer(TextTransformer):
    """Replaces a literal string; no regex metacharacters are interpreted."""

    mode: ClassVar[EditMode] = EditMode.LITERAL_REPLACE
    params_type: ClassVar[type[BaseModel]] = LiteralReplaceParams

    def transform(self, content: str, params: LiteralReplaceParams) -> TransformResult:
        substitution = literal_substitution(params.find, params.replace, params.replace_all)
        new_content, replacements = substitution.apply(content)
        return TransformResult.ok(
            new_content, count_changed_lines(content, new_content), replacements
        )
