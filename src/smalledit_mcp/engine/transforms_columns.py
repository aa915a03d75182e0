"""Column/field processing in the manner of simple awk programs.

Fields are 1-based. A single-space separator splits on runs of whitespace (awk's
default); any other separator splits literally. Numbers follow awk: for
aggregation a field contributes its leading numeric prefix (or 0), while a
filter only keeps lines whose field is entirely numeric.
"""

from __future__ import annotations

import math
import operator
import re
from collections.abc import Callable
from typing import ClassVar

from pydantic import BaseModel

from .diff import count_changed_lines
from .lines import split_lines
from .models import ColumnParams, EditMode, TransformResult
from .transform_base import TextTransformer
from .validation import ColumnExpression, parse_column_expression

_NUMBER = r"[+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?"
_NUMERIC_PREFIX = re.compile(rf"^\s*{_NUMBER}")
_STRICT_NUMBER = re.compile(rf"^\s*{_NUMBER}\s*$")

COMPARISONS: dict[str, Callable[[float, float], bool]] = {
    ">": operator.gt,
    ">=": operator.ge,
    "<": operator.lt,
    "<=": operator.le,
    "==": operator.eq,
    "!=": operator.ne,
}


def split_fields(line: str, separator: str) -> list[str]:
    if separator == " ":
        return line.split()
    return line.split(separator)


def get_field(fields: list[str], number: int) -> str:
    return fields[number - 1] if number <= len(fields) else ""


def awk_number(text: str) -> float:
    """Numeric value of ``text`` the way awk coerces it (leading prefix, else 0)."""
    match = _NUMERIC_PREFIX.match(text)
    return float(match.group()) if match else 0.0


def format_number(value: float) -> str:
    """Integers without a fraction, everything else like awk's ``%.6g``."""
    if math.isfinite(value) and value.is_integer() and abs(value) < 1e16:
        return str(int(value))
    return f"{value:.6g}"


class ColumnTransformer(TextTransformer):
    """Extracts fields, aggregates a field, or filters lines by a numeric comparison."""

    mode: ClassVar[EditMode] = EditMode.COLUMN_PROCESS
    params_type: ClassVar[type[BaseModel]] = ColumnParams

    def transform(self, content: str, params: ColumnParams) -> TransformResult:
        expression = parse_column_expression(params.expression)
        lines, layout = split_lines(content)

        if expression.kind == "extract":
            output = [self._extract(line, expression, params) for line in lines]
        elif expression.kind == "aggregate":
            output = [self._aggregate(lines, expression, params.separator)]
        else:
            output = [line for line in lines if self._keep(line, expression, params.separator)]

        new_content = layout.join(output)
        return TransformResult.ok(new_content, count_changed_lines(content, new_content))

    @staticmethod
    def _extract(line: str, expression: ColumnExpression, params: ColumnParams) -> str:
        fields = split_fields(line, params.separator)
        return params.output_separator.join(get_field(fields, n) for n in expression.fields)

    @staticmethod
    def _aggregate(lines: list[str], expression: ColumnExpression, separator: str) -> str:
        if expression.function == "count":
            return str(len(lines))

        number = expression.fields[0]
        values = [awk_number(get_field(split_fields(line, separator), number)) for line in lines]
        if not values:
            return "0"
        if expression.function == "sum":
            result = math.fsum(values)
        elif expression.function == "avg":
            result = math.fsum(values) / len(values)
        elif expression.function == "min":
            result = min(values)
        else:
            result = max(values)
        return format_number(result)

    @staticmethod
    def _keep(line: str, expression: ColumnExpression, separator: str) -> bool:
        text = get_field(split_fields(line, separator), expression.fields[0])
        if not _STRICT_NUMBER.match(text):
            return False
        assert expression.operator is not None and expression.operand is not None
        return COMPARISONS[expression.operator](float(text), expression.operand)
