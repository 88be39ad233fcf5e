"""Boolean expressions over tag and category dimensions.

Grammar (atom values are case-sensitive, whitespace is ignored):

    expr    := or_expr
    or_expr := and_expr ("OR" and_expr)*
    and_expr:= not_expr ("AND" not_expr)*
    not_expr:= "NOT" not_expr | atom | "(" expr ")"
    atom    := ("tag" | "category") ":" identifier

Examples:
    "tag:javascript AND category:programming"
    "(tag:react OR tag:vue) AND NOT category:archive"

An expression is parsed once, at construction. It can be evaluated against a
note's tags/category, or compiled into a storage-agnostic predicate whose
leaves are edge conditions ("document has a `tagged` edge to node X"). Each
backend lowers that predicate into its own query form; `resolve_document_ids`
is the set-based lowering used by the in-memory store.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Iterable, Mapping
from dataclasses import dataclass
from typing import Literal, Union

from ..errors import ParseError

Dimension = Literal["tag", "category"]

_DIMENSIONS: tuple[Dimension, ...] = ("tag", "category")
_OPERATORS = ("AND", "OR", "NOT")

EDGE_TYPE_BY_DIMENSION: dict[str, str] = {"tag": "tagged", "category": "categorized"}


@dataclass(frozen=True)
class Atom:
    kind: Dimension
    value: str


@dataclass(frozen=True)
class EdgeCondition:
    """Leaf of a compiled predicate. `target_id` is None when the label is unknown."""

    edge_type: str
    label: str
    target_id: str | None


@dataclass(frozen=True)
class And:
    left: "Expr | Predicate"
    right: "Expr | Predicate"


@dataclass(frozen=True)
class Or:
    left: "Expr | Predicate"
    right: "Expr | Predicate"


@dataclass(frozen=True)
class Not:
    operand: "Expr | Predicate"


Expr = Union[Atom, And, Or, Not]
Predicate = Union[EdgeCondition, And, Or, Not]


@dataclass(frozen=True)
class Dimensions:
    tags: list[str]
    categories: list[str]


@dataclass(frozen=True)
class _Token:
    kind: Literal["op", "lparen", "rparen", "atom"]
    text: str
    position: int
    atom: Atom | None = None


def _tokenize(expression: str) -> list[_Token]:
    tokens: list[_Token] = []
    i = 0
    length = len(expression)

    while i < length:
        char = expression[i]
        if char.isspace():
            i += 1
            continue
        if char == "(":
            tokens.append(_Token("lparen", char, i))
            i += 1
            continue
        if char == ")":
            tokens.append(_Token("rparen", char, i))
            i += 1
            continue

        start = i
        while i < length and not expression[i].isspace() and expression[i] not in "()":
            i += 1
        word = expression[start:i]

        if word in _OPERATORS:
            tokens.append(_Token("op", word, start))
            continue

        dimension, sep, value = word.partition(":")
        if not sep:
            raise ParseError(f"Unexpected token at position {start}: {word}", expression, start)
        if dimension not in _DIMENSIONS:
            raise ParseError(
                f"Unknown dimension '{dimension}' at position {start} (expected tag: or category:)",
                expression,
                start,
            )
        if not value:
            raise ParseError(
                f"Invalid {dimension} expression: {word} (missing value after {dimension}:)",
                expression,
                start,
            )
        tokens.append(_Token("atom", word, start, Atom(dimension, value)))  # type: ignore[arg-type]

    return tokens


class _Parser:
    def __init__(self, expression: str, tokens: list[_Token]):
        self.expression = expression
        self.tokens = tokens
        self.pos = 0

    def _peek(self) -> _Token | None:
        return self.tokens[self.pos] if self.pos < len(self.tokens) else None

    def _error(self, message: str, token: _Token | None) -> ParseError:
        position = token.position if token else len(self.expression)
        return ParseError(message, self.expression, position)

    def parse(self) -> Expr:
        result = self._or()
        token = self._peek()
        if token is not None:
            if token.kind == "rparen":
                raise self._error(f"Unbalanced ')' at position {token.position}", token)
            raise self._error(
                f"Missing operator before '{token.text}' at position {token.position}", token
            )
        return result

    def _or(self) -> Expr:
        left = self._and()
        while (token := self._peek()) is not None and token.kind == "op" and token.text == "OR":
            self.pos += 1
            left = Or(left, self._and())
        return left

    def _and(self) -> Expr:
        left = self._not()
        while (token := self._peek()) is not None and token.kind == "op" and token.text == "AND":
            self.pos += 1
            left = And(left, self._not())
        return left

    def _not(self) -> Expr:
        token = self._peek()
        if token is None:
            raise self._error("Unexpected end of expression (dangling operator?)", None)

        if token.kind == "op" and token.text == "NOT":
            self.pos += 1
            return Not(self._not())

        if token.kind == "lparen":
            self.pos += 1
            inner = self._or()
            closing = self._peek()
            if closing is None or closing.kind != "rparen":
                raise self._error(f"Expected closing parenthesis for '(' at position {token.position}", closing)
            self.pos += 1
            return inner

        if token.kind == "atom" and token.atom is not None:
            self.pos += 1
            return token.atom

        if token.kind == "rparen":
            raise self._error(f"Empty operand before ')' at position {token.position}", token)
        raise self._error(f"Unexpected operator '{token.text}' at position {token.position}", token)


class BooleanExpression:
    """A parsed tag/category expression.

    Raises:
        ParseError: On construction, if the expression is malformed.
    """

    def __init__(self, expression: str):
        self.expression = expression
        if not expression or not expression.strip():
            raise ParseError("Empty expression", expression, 0)
        self.ast: Expr = _Parser(expression, _tokenize(expression)).parse()

    def __repr__(self) -> str:
        return f"BooleanExpression({self.expression!r})"

    def evaluate(self, tags: Iterable[str] | None = None, category: str | None = None) -> bool:
        """Evaluate against a note's tags and (single) category."""
        return _evaluate(self.ast, set(tags or ()), category)

    def extract_dimensions(self) -> Dimensions:
        """Every atom literal in the tree (including under NOT), deduplicated in first-seen order."""
        tags: list[str] = []
        categories: list[str] = []
        for atom in _iter_atoms(self.ast):
            bucket = tags if atom.kind == "tag" else categories
            if atom.value not in bucket:
                bucket.append(atom.value)
        return Dimensions(tags=tags, categories=categories)

    def build_predicate(
        self,
        tag_lookup: Mapping[str, str],
        category_lookup: Mapping[str, str],
    ) -> Predicate:
        """Compile into an edge-condition predicate, resolving labels to node ids."""
        return _compile(self.ast, tag_lookup, category_lookup)

    def has_negation(self) -> bool:
        """True when NOT appears anywhere in the expression."""
        return _has_not(self.ast)


def _has_not(expr: Expr) -> bool:
    if isinstance(expr, Not):
        return True
    if isinstance(expr, (And, Or)):
        return _has_not(expr.left) or _has_not(expr.right)
    return False


def _evaluate(expr: Expr, tags: set[str], category: str | None) -> bool:
    if isinstance(expr, Atom):
        if expr.kind == "tag":
            return expr.value in tags
        return category == expr.value
    if isinstance(expr, And):
        return _evaluate(expr.left, tags, category) and _evaluate(expr.right, tags, category)
    if isinstance(expr, Or):
        return _evaluate(expr.left, tags, category) or _evaluate(expr.right, tags, category)
    return not _evaluate(expr.operand, tags, category)


def _iter_atoms(expr: Expr) -> Iterable[Atom]:
    if isinstance(expr, Atom):
        yield expr
    elif isinstance(expr, (And, Or)):
        yield from _iter_atoms(expr.left)
        yield from _iter_atoms(expr.right)
    else:
        yield from _iter_atoms(expr.operand)


def _compile(
    expr: Expr,
    tag_lookup: Mapping[str, str],
    category_lookup: Mapping[str, str],
) -> Predicate:
    if isinstance(expr, Atom):
        lookup = tag_lookup if expr.kind == "tag" else category_lookup
        return EdgeCondition(
            edge_type=EDGE_TYPE_BY_DIMENSION[expr.kind],
            label=expr.value,
            target_id=lookup.get(expr.value),
        )
    if isinstance(expr, And):
        return And(_compile(expr.left, tag_lookup, category_lookup), _compile(expr.right, tag_lookup, category_lookup))
    if isinstance(expr, Or):
        return Or(_compile(expr.left, tag_lookup, category_lookup), _compile(expr.right, tag_lookup, category_lookup))
    return Not(_compile(expr.operand, tag_lookup, category_lookup))


async def resolve_document_ids(
    predicate: Predicate,
    docs_for_target: Callable[[str], Awaitable[list[str]]],
    all_documents: Callable[[], Awaitable[list[str]]],
) -> set[str]:
    """Lower a predicate to a set of document ids.

    Atoms become the documents connected to the target, AND intersects, OR
    unions, NOT takes the complement within all documents. The universe is
    only fetched when a NOT is present.
    """
    universe: set[str] | None = None

    async def get_universe() -> set[str]:
        nonlocal universe
        if universe is None:
            universe = set(await all_documents())
        return universe

    async def lower(node: Predicate) -> set[str]:
        if isinstance(node, EdgeCondition):
            if node.target_id is None:
                return set()
            return set(await docs_for_target(node.target_id))
        if isinstance(node, And):
            left = await lower(node.left)
            if not left:
                return set()
            return left & await lower(node.right)
        if isinstance(node, Or):
            return await lower(node.left) | await lower(node.right)
        return await get_universe() - await lower(node.operand)

    return await lower(predicate)
