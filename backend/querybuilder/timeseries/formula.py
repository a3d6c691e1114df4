"""
Formula Evaluator
=================

**Version**: 1.0.0
**Status**: Active

Evaluates user formulas ("A / B", "(A - B) * 100 / A") over query results,
bucket by bucket.

WHY THIS FILE EXISTS
--------------------
Users build derived series (error ratio, cache hit rate, ...) from the
queries they already have. The arithmetic is trivial; the policy around it
is not:

    MISSING IS NOT ZERO
        An operand with no row for a bucket (or a row with an empty series
        map) is MISSING. The bucket is skipped, never evaluated as 0.
        ONE aggregate warning covers all such buckets.

    GROUPED OPERANDS ARE SUMMED
        A query with a group by contributes the sum of its series per bucket.
        Values that are not finite numbers are ignored; a bucket with none
        left is missing.

    DIVISION BY ZERO SKIPS THE BUCKET
        A divisor that evaluates to 0 skips that bucket, with one warning per
        bucket naming its timestamp.

    FAILURES STAY LOCAL
        One formula failing never affects other formulas or the queries.

GRAMMAR
-------
    expression := term (("+" | "-") term)*
    term       := factor (("*" | "/") factor)*
    factor     := NUMBER | IDENTIFIER | "(" expression ")" | "-" factor

Identifiers are query names, matched case-insensitively. Expressions are
compiled once to reverse polish notation (shunting-yard) and evaluated per
bucket.

RELATED FILES
-------------
- querybuilder/timeseries/errors.py: FormulaError, FormulaFailureReason
- querybuilder/timeseries/merge.py: Merges formula results into chart rows
- querybuilder/timeseries/service.py: Calls build_formula_results()
"""

from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass, field as dataclass_field
from typing import Dict, List, Optional, Sequence

from querybuilder.timeseries.buckets import to_iso_bucket
from querybuilder.timeseries.errors import ErrorCode, FormulaError, FormulaFailureReason
from querybuilder.timeseries.model import BucketRow, FormulaDraft, QueryRunResult, as_finite_number

logger = logging.getLogger(__name__)

WARNING_BUCKET_SAMPLE_SIZE = 3
OPERATOR_PRECEDENCE = {"+": 1, "-": 1, "*": 2, "/": 2}

TOKEN_RE = re.compile(r"\s*([A-Za-z][A-Za-z0-9_]*|\d+(?:\.\d+)?|\.\d+|[()+\-*/])")

NO_VALID_BUCKETS = "Formula produced no valid buckets"
NO_VALID_BUCKETS_DIVISION = "Formula produced no valid buckets due to division by zero"


# =============================================================================
# COMPILATION
# =============================================================================

@dataclass(frozen=True)
class FormulaToken:
    """One lexical token: number, identifier, operator, lparen or rparen."""
    type: str
    value: object = None


@dataclass
class CompiledFormula:
    """
    A formula compiled to reverse polish notation.

    PARAMETERS:
        rpn: Tokens in evaluation order
        identifiers: Referenced query names (upper-cased, first-seen order)
    """
    rpn: List[FormulaToken]
    identifiers: List[str] = dataclass_field(default_factory=list)


def tokenize_formula(expression: str) -> List[FormulaToken]:
    """Split an expression into tokens, raising FormulaError on junk."""
    tokens: List[FormulaToken] = []
    index = 0

    while index < len(expression):
        match = TOKEN_RE.match(expression, index)
        if not match:
            remaining = expression[index:].strip()
            if not remaining:
                break
            raise FormulaError(f"Invalid token near: {remaining[:16]}")

        index = match.end()
        raw = match.group(1)

        if raw == "(":
            tokens.append(FormulaToken("lparen"))
        elif raw == ")":
            tokens.append(FormulaToken("rparen"))
        elif raw in OPERATOR_PRECEDENCE:
            tokens.append(FormulaToken("operator", raw))
        elif raw[0].isdigit() or raw.startswith("."):
            tokens.append(FormulaToken("number", float(raw)))
        else:
            tokens.append(FormulaToken("identifier", raw.upper()))

    return tokens


def _check_arity(rpn: Sequence[FormulaToken]) -> None:
    """Reject expressions that would not leave exactly one value."""
    depth = 0
    for token in rpn:
        if token.type == "operator":
            if depth < 2:
                raise FormulaError("Invalid formula expression")
            depth -= 1
        else:
            depth += 1

    if depth != 1:
        raise FormulaError("Invalid formula expression")


def compile_formula(expression: str) -> CompiledFormula:
    """
    Compile an expression to RPN using the shunting-yard algorithm.

    Unary minus is rewritten as "0 - x".

    RAISES:
        FormulaError: empty expression, invalid token, mismatched
            parentheses, or a malformed expression such as "A +"
    """
    trimmed = (expression or "").strip()
    if not trimmed:
        raise FormulaError("Formula expression is empty")

    output: List[FormulaToken] = []
    operator_stack: List[FormulaToken] = []
    identifiers: List[str] = []
    previous: Optional[FormulaToken] = None

    for token in tokenize_formula(trimmed):
        if token.type == "number":
            output.append(token)
        elif token.type == "identifier":
            if token.value not in identifiers:
                identifiers.append(token.value)
            output.append(token)
        elif token.type == "lparen":
            operator_stack.append(token)
        elif token.type == "rparen":
            while operator_stack and operator_stack[-1].type != "lparen":
                output.append(operator_stack.pop())
            if not operator_stack:
                raise FormulaError("Mismatched parentheses in formula")
            operator_stack.pop()
        else:
            if token.value == "-" and (previous is None or previous.type in ("operator", "lparen")):
                output.append(FormulaToken("number", 0.0))

            while (
                operator_stack
                and operator_stack[-1].type == "operator"
                and OPERATOR_PRECEDENCE[operator_stack[-1].value] >= OPERATOR_PRECEDENCE[token.value]
            ):
                output.append(operator_stack.pop())
            operator_stack.append(token)

        previous = token

    while operator_stack:
        top = operator_stack.pop()
        if top.type == "lparen":
            raise FormulaError("Mismatched parentheses in formula")
        output.append(top)

    _check_arity(output)
    return CompiledFormula(rpn=output, identifiers=identifiers)


def evaluate_compiled_formula(compiled: CompiledFormula, values: Dict[str, float]) -> float:
    """
    Evaluate a compiled formula with bound operand values.

    RAISES:
        FormulaError(reason=DIVISION_BY_ZERO): a divisor evaluated to 0
        FormulaError: unknown reference or non-finite result
    """
    stack: List[float] = []

    for token in compiled.rpn:
        if token.type == "number":
            stack.append(token.value)
            continue

        if token.type == "identifier":
            if token.value not in values:
                raise FormulaError(
                    f"Unknown reference: {token.value}",
                    code=ErrorCode.FORMULA_UNKNOWN_REFERENCE,
                )
            stack.append(values[token.value])
            continue

        right = stack.pop()
        left = stack.pop()

        if token.value == "+":
            stack.append(left + right)
        elif token.value == "-":
            stack.append(left - right)
        elif token.value == "*":
            stack.append(left * right)
        else:
            if right == 0:
                raise FormulaError(
                    "Division by zero in formula",
                    reason=FormulaFailureReason.DIVISION_BY_ZERO,
                    code=ErrorCode.FORMULA_DIVISION_BY_ZERO,
                )
            stack.append(left / right)

    value = stack[0]
    if not math.isfinite(value):
        raise FormulaError("Formula result is not finite")
    return value


# =============================================================================
# OPERAND BINDING
# =============================================================================

@dataclass
class OperandSeries:
    """
    Per-bucket scalar values of one bindable query.

    PARAMETERS:
        values: Normalized bucket -> value (missing buckets are absent)
    """
    values: Dict[str, float] = dataclass_field(default_factory=dict)


def _bind_operand(points: Sequence[BucketRow], labels: Dict[str, str]) -> OperandSeries:
    """
    Collect one scalar per bucket, recording bucket labels as first seen.

    Grouped rows are summed. Rows with an empty series map, or with no finite
    value in it, stay missing.
    """
    operand = OperandSeries()

    for point in points:
        key = to_iso_bucket(point.bucket)
        labels.setdefault(key, point.bucket)

        if not point.series:
            continue

        numbers = [number for number in map(as_finite_number, point.series.values()) if number is not None]
        if not numbers:
            continue
        operand.values[key] = sum(numbers)

    return operand


def _format_bucket_warning(reason: str, buckets: Sequence[str]) -> str:
    sample = list(buckets[:WARNING_BUCKET_SAMPLE_SIZE])
    if len(buckets) > WARNING_BUCKET_SAMPLE_SIZE:
        suffix = f" (examples: {', '.join(sample)}, +{len(buckets) - len(sample)} more)"
    else:
        suffix = f" (bucket{'' if len(sample) == 1 else 's'}: {', '.join(sample)})"

    noun = "bucket" if len(buckets) == 1 else "buckets"
    return f"Skipped {len(buckets)} {noun} due to {reason}{suffix}"


def _formula_error(
    formula: FormulaDraft,
    error: str,
    code: ErrorCode = ErrorCode.FORMULA_INVALID,
    warnings: Optional[List[str]] = None,
) -> QueryRunResult:
    return QueryRunResult(
        query_id=formula.id,
        query_name=formula.name,
        source="formula",
        status="error",
        error=error,
        error_code=code.value,
        warnings=warnings or [],
        data=[],
    )


# =============================================================================
# MAIN ENTRY POINT
# =============================================================================

def build_formula_results(
    formulas: Sequence[FormulaDraft],
    query_results: Sequence[QueryRunResult],
) -> List[QueryRunResult]:
    """
    Evaluate every formula over the query results.

    WHAT: One QueryRunResult (source="formula") per formula, in order.

    PARAMETERS:
        formulas: Formula drafts; expressions reference query names
        query_results: Results of the current period's queries

    RETURNS:
        Formula results. Successful formulas can be referenced by later
        formulas under their own name.

    EXAMPLE:
        A = [10 @ t1, 8 @ t2], B = [2 @ t1, 0 @ t2], formula "A / B" (legend "ratio")
        -> data [{t1, {"ratio": 5}}], warning "... t2 due to division by zero ..."
    """
    if not formulas:
        return []

    labels: Dict[str, str] = {}
    series_by_alias: Dict[str, OperandSeries] = {}

    for result in query_results:
        if not result.is_success():
            continue
        series_by_alias[result.query_name.upper()] = _bind_operand(result.data, labels)

    formula_results: List[QueryRunResult] = []

    for formula in formulas:
        try:
            compiled = compile_formula(formula.expression)
        except FormulaError as exc:
            logger.debug(f"[FORMULA] {formula.name}: {exc.message}")
            formula_results.append(_formula_error(formula, exc.message, exc.code))
            continue

        missing_identifiers = [name for name in compiled.identifiers if name not in series_by_alias]
        if missing_identifiers:
            formula_results.append(
                _formula_error(
                    formula,
                    f"Unknown references: {', '.join(missing_identifiers)}",
                    ErrorCode.FORMULA_UNKNOWN_REFERENCE,
                )
            )
            continue

        operands = {name: series_by_alias[name] for name in compiled.identifiers}
        if operands:
            candidate_buckets = sorted({key for operand in operands.values() for key in operand.values})
        else:
            candidate_buckets = sorted({key for operand in series_by_alias.values() for key in operand.values})
            if not candidate_buckets:
                formula_results.append(
                    _formula_error(formula, "No successful query data available for formula execution")
                )
                continue

        series_name = formula.series_name
        data: List[BucketRow] = []
        values_by_bucket: Dict[str, float] = {}
        warnings: List[str] = []
        missing_buckets: List[str] = []
        division_buckets: List[str] = []
        non_finite_buckets: List[str] = []

        for key in candidate_buckets:
            label = labels.get(key, key)
            if any(key not in operand.values for operand in operands.values()):
                missing_buckets.append(label)
                continue

            bound = {name: operand.values[key] for name, operand in operands.items()}
            try:
                value = evaluate_compiled_formula(compiled, bound)
            except FormulaError as exc:
                if exc.is_division_by_zero:
                    division_buckets.append(label)
                else:
                    non_finite_buckets.append(label)
                continue

            values_by_bucket[key] = value
            data.append(BucketRow(bucket=label, series={series_name: value}))

        if missing_buckets:
            warnings.append(_format_bucket_warning("missing values for formula operands", missing_buckets))
        for label in division_buckets:
            warnings.append(f"Skipped bucket {label} due to division by zero in formula")
        if non_finite_buckets:
            warnings.append(_format_bucket_warning("non-finite formula results", non_finite_buckets))

        if not data:
            if division_buckets:
                error, code = NO_VALID_BUCKETS_DIVISION, ErrorCode.FORMULA_DIVISION_BY_ZERO
            else:
                error, code = NO_VALID_BUCKETS, ErrorCode.FORMULA_INVALID
            logger.debug(f"[FORMULA] {formula.name}: {error}")
            formula_results.append(_formula_error(formula, error, code, warnings))
            continue

        formula_results.append(
            QueryRunResult(
                query_id=formula.id,
                query_name=formula.name,
                source="formula",
                status="success",
                error=None,
                warnings=warnings,
                data=data,
            )
        )
        series_by_alias[formula.name.upper()] = OperandSeries(values=values_by_bucket)

    return formula_results
