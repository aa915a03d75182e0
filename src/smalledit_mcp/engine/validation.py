"""Static validation of edit parameters.

PatternValidator checks an operation's declared parameters before any file I/O
happens. It is pure and deterministic: the same input always yields the same
ValidationResult. The parsing helpers here (line targets, column expressions)
are shared with the transformers so both sides agree on the grammar.
"""

from __future__ import annotations

import re
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any, Literal

from pydantic import BaseModel, ValidationError

from .exceptions import EditError, EditStage, ErrorKind
from .models import (
    PARAMS_BY_MODE,
    ColumnParams,
    EditMode,
    LineEditParams,
    LiteralReplaceParams,
    SubstituteParams,
    ValidationResult,
)
from .sed_script import ScriptSyntaxError, parse_perl_script, parse_sed_script

# Error kind reported for structurally invalid parameters of each mode
MODE_ERROR_KINDS: dict[EditMode, ErrorKind] = {
    EditMode.SUBSTITUTE: ErrorKind.MALFORMED_PATTERN,
    EditMode.LINE_EDIT: ErrorKind.INVALID_RANGE,
    EditMode.COLUMN_PROCESS: ErrorKind.UNSUPPORTED_EXPRESSION,
    EditMode.LITERAL_REPLACE: ErrorKind.MALFORMED_PATTERN,
}


# ============================================================================
# Parameter coercion
# ============================================================================


def coerce_parameters(mode: EditMode, raw: Mapping[str, Any] | BaseModel | None) -> BaseModel:
    """Convert raw parameters into the mode's parameter model.

    Raises:
        EditError: Parameters missing or of the wrong shape, with the mode's
            error kind
    """
    params_type = PARAMS_BY_MODE[mode]
    if isinstance(raw, params_type):
        return raw
    if isinstance(raw, BaseModel):
        raw = raw.model_dump()
    if not isinstance(raw, Mapping):
        raise EditError(
            MODE_ERROR_KINDS[mode],
            f"{mode.value} parameters must be a mapping, got {type(raw).__name__}",
            stage=EditStage.VALIDATION,
        )
    try:
        return params_type.model_validate(dict(raw))
    except ValidationError as e:
        details = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'parameters'}: {err['msg']}"
            for err in e.errors()
        )
        raise EditError(
            MODE_ERROR_KINDS[mode],
            f"invalid {mode.value} parameters: {details}",
            stage=EditStage.VALIDATION,
        ) from e


# ============================================================================
# Line targets
# ============================================================================

_SINGLE_LINE = re.compile(r"^\s*(\d+)\s*$")
_LINE_RANGE = re.compile(r"^\s*(\d+)\s*,\s*(\d+)\s*$")


def parse_line_target(target: str) -> tuple[int, int | None]:
    """Parse ``"N"`` or ``"start,end"``.

    Returns:
        (start, end) where ``end`` is None for a single line

    Raises:
        EditError: INVALID_RANGE for anything else, zero, or ``start > end``
    """
    single = _SINGLE_LINE.match(target)
    if single:
        line = int(single.group(1))
        if line < 1:
            raise EditError(ErrorKind.INVALID_RANGE, f"line number must be positive: {target!r}")
        return line, None

    ranged = _LINE_RANGE.match(target)
    if not ranged:
        raise EditError(
            ErrorKind.INVALID_RANGE,
            f"expected a line number 'N' or a range 'start,end', got {target!r}",
        )
    start, end = int(ranged.group(1)), int(ranged.group(2))
    if start < 1 or end < 1:
        raise EditError(ErrorKind.INVALID_RANGE, f"line numbers must be positive: {target!r}")
    if start > end:
        raise EditError(ErrorKind.INVALID_RANGE, f"range start {start} is after end {end}")
    return start, end


# ============================================================================
# Column expressions
# ============================================================================

Aggregate = Literal["sum", "avg", "min", "max", "count"]


@dataclass(frozen=True)
class ColumnExpression:
    """A parsed column expression.

    - extract: ``fields`` lists the 1-based fields to emit
    - aggregate: ``function`` over ``fields[0]`` (``count`` has no field)
    - filter: keep lines where ``fields[0] <operator> operand``
    """

    kind: Literal["extract", "aggregate", "filter"]
    fields: tuple[int, ...] = ()
    function: Aggregate | None = None
    operator: str | None = None
    operand: float | None = None


_FIELD_LIST = r"\$\d+(?:\s*,\s*\$\d+)*"
_NUMBER = r"[+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?"

_EXTRACT = re.compile(rf"^(?:print\s+)?({_FIELD_LIST})$")
_EXTRACT_AWK = re.compile(rf"^\{{\s*print\s+({_FIELD_LIST})\s*;?\s*\}}$")
_AGGREGATE = re.compile(r"^(sum|avg|min|max)\s*\(?\s*\$(\d+)\s*\)?$")
_COUNT = re.compile(r"^count$")
_SUM_AWK = re.compile(
    r"^\{\s*(\w+)\s*\+=\s*\$(\d+)\s*;?\s*\}\s*END\s*\{\s*print\s+(\w+)\s*;?\s*\}$"
)
_FILTER = re.compile(rf"^\$(\d+)\s*(>=|<=|==|!=|>|<)\s*({_NUMBER})$")


def _field_numbers(field_list: str) -> tuple[int, ...]:
    fields = tuple(int(f) for f in re.findall(r"\$(\d+)", field_list))
    if any(f < 1 for f in fields):
        raise EditError(
            ErrorKind.UNSUPPORTED_EXPRESSION, "field numbers start at 1 ($0 is not supported)"
        )
    return fields


def parse_column_expression(expression: str) -> ColumnExpression:
    """Parse an expression from the fixed column vocabulary.

    Recognised forms::

        $2                  print $1, $3            {print $1}
        sum $1   avg $2   min $1   max $1   count
        {sum+=$1} END {print sum}
        $1 > 10   $2 <= 3.5   $1 == 0   $1 != 7

    Raises:
        EditError: UNSUPPORTED_EXPRESSION for anything else
    """
    text = expression.strip()

    match = _EXTRACT.match(text) or _EXTRACT_AWK.match(text)
    if match:
        return ColumnExpression(kind="extract", fields=_field_numbers(match.group(1)))

    match = _AGGREGATE.match(text)
    if match:
        fields = _field_numbers(f"${match.group(2)}")
        return ColumnExpression(
            kind="aggregate",
            fields=fields,
            function=match.group(1),  # type: ignore[arg-type]
        )

    if _COUNT.match(text):
        return ColumnExpression(kind="aggregate", function="count")

    match = _SUM_AWK.match(text)
    if match and match.group(1) == match.group(3):
        fields = _field_numbers(f"${match.group(2)}")
        return ColumnExpression(kind="aggregate", fields=fields, function="sum")

    match = _FILTER.match(text)
    if match:
        fields = _field_numbers(f"${match.group(1)}")
        return ColumnExpression(
            kind="filter",
            fields=fields,
            operator=match.group(2),
            operand=float(match.group(3)),
        )

    raise EditError(
        ErrorKind.UNSUPPORTED_EXPRESSION, f"unsupported column expression: {expression!r}"
    )


# ============================================================================
# Validator
# ============================================================================


class PatternValidator:
    """Checks edit parameters per mode without touching the filesystem.

    Usage:
        validator = PatternValidator()
        result = validator.validate(EditMode.SUBSTITUTE, {"script": "s/a/b/g"})
        if not result.valid:
            print(result.error_kind, result.message)
    """

    def __init__(self) -> None:
        self._rules: dict[EditMode, Callable[[Any], None]] = {
            EditMode.SUBSTITUTE: self._check_substitute,
            EditMode.LINE_EDIT: self._check_line_edit,
            EditMode.COLUMN_PROCESS: self._check_column,
            EditMode.LITERAL_REPLACE: self._check_literal,
        }

    def validate(
        self, mode: EditMode | str, raw_parameters: Mapping[str, Any] | BaseModel | None
    ) -> ValidationResult:
        """Validate ``raw_parameters`` for ``mode``.

        Returns:
            ValidationResult.ok() or a failure carrying the error kind and message
        """
        try:
            mode = EditMode(mode)
        except ValueError:
            return ValidationResult.failure(
                ErrorKind.UNSUPPORTED_EXPRESSION, f"unknown edit mode: {mode!r}"
            )
        try:
            params = coerce_parameters(mode, raw_parameters)
            self._rules[mode](params)
        except EditError as e:
            return ValidationResult.failure(e.kind, e.message)
        return ValidationResult.ok()

    def _check_substitute(self, params: SubstituteParams) -> None:
        try:
            if params.dialect == "perl":
                parse_perl_script(params.script)
            else:
                parse_sed_script(params.script)
        except ScriptSyntaxError as e:
            raise EditError(ErrorKind.MALFORMED_PATTERN, f"{params.script!r}: {e}") from e

    def _check_line_edit(self, params: LineEditParams) -> None:
        parse_line_target(params.target)
        if params.action != "delete" and params.content is None:
            raise EditError(ErrorKind.INVALID_RANGE, f"action '{params.action}' requires content")

    def _check_column(self, params: ColumnParams) -> None:
        if params.separator == "":
            raise EditError(ErrorKind.UNSUPPORTED_EXPRESSION, "field separator must not be empty")
        parse_column_expression(params.expression)

    def _check_literal(self, params: LiteralReplaceParams) -> None:
        if params.find == "":
            raise EditError(ErrorKind.MALFORMED_PATTERN, "find string must not be empty")
