"""Line-numbered edits: replace, delete or insert around addressed lines."""

from __future__ import annotations

from typing import ClassVar

from pydantic import BaseModel

from .exceptions import EditError, ErrorKind
from .lines import split_lines, split_text_block
from .models import EditMode, LineEditParams, TransformResult
from .transform_base import TextTransformer
from .validation import parse_line_target


class LineEditTransformer(TextTransformer):
    """Edits lines by 1-based number.

    A range applies the action to every line in ``[start, end]`` individually:
    ``replace`` replaces each line with the content, ``insert_after`` adds the
    content after each line, and so on. A start line past the end of the file
    fails with LINE_OUT_OF_BOUNDS; a range end past the end is clamped.
    """

    mode: ClassVar[EditMode] = EditMode.LINE_EDIT
    params_type: ClassVar[type[BaseModel]] = LineEditParams

    def transform(self, content: str, params: LineEditParams) -> TransformResult:
        start, end = parse_line_target(params.target)
        lines, layout = split_lines(content)
        total = len(lines)

        if start > total:
            raise EditError(
                ErrorKind.LINE_OUT_OF_BOUNDS,
                f"line {start} is beyond the end of the file ({total} lines)",
            )
        last = start if end is None else min(end, total)

        if params.action != "delete" and params.content is None:
            raise EditError(ErrorKind.INVALID_RANGE, f"action '{params.action}' requires content")
        block = split_text_block(params.content) if params.content is not None else []

        output = lines[: start - 1]
        lines_changed = 0
        for line in lines[start - 1 : last]:
            if params.action == "delete":
                lines_changed += 1
            elif params.action == "replace":
                output.extend(block)
                if block != [line]:
                    lines_changed += 1
            elif params.action == "insert_after":
                output.append(line)
                output.extend(block)
                lines_changed += len(block)
            else:
                output.extend(block)
                output.append(line)
                lines_changed += len(block)
        output.extend(lines[last:])

        return TransformResult.ok(layout.join(output), lines_changed)
