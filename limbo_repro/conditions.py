"""
Blob tag condition expressions

The condition language used for tag-conditioned writes:

    "LocalId" < '123'
    "Status" = 'ready' AND ("Owner" = 'a' OR "Owner" = 'b')

Tag names are double-quoted (bare identifiers are accepted too), literals
are single-quoted. Supported operators are =, <>, <, <=, > and >=. AND
binds tighter than OR. Values compare as strings, so '99' > '123'. A tag
that is missing on an existing blob compares as the empty string.

Stores that evaluate conditions natively only need str(condition); the
in-memory and S3 stores call evaluate() themselves.
"""

import operator
import re
from dataclasses import dataclass
from typing import Callable, Dict, List, Mapping, Tuple, Union

from limbo_repro.errors import ReproError


class ConditionSyntaxError(ReproError, ValueError):
    """The condition text could not be parsed"""


OPERATORS: Dict[str, Callable[[str, str], bool]] = {
    "=": operator.eq,
    "<>": operator.ne,
    "<": operator.lt,
    "<=": operator.le,
    ">": operator.gt,
    ">=": operator.ge,
}


@dataclass(frozen=True)
class Comparison:
    """One ``"tag" op 'literal'`` clause"""

    tag: str
    op: str
    value: str

    def __post_init__(self):
        if self.op not in OPERATORS:
            raise ConditionSyntaxError(f"Unsupported operator {self.op!r}")
        if not self.tag or '"' in self.tag:
            raise ConditionSyntaxError(f"Invalid tag name {self.tag!r}")
        if "'" in self.value:
            raise ConditionSyntaxError(f"Invalid tag value {self.value!r}")

    def evaluate(self, tags: Mapping[str, str]) -> bool:
        return OPERATORS[self.op](tags.get(self.tag, ""), self.value)

    def __str__(self) -> str:
        return f"\"{self.tag}\" {self.op} '{self.value}'"


@dataclass(frozen=True)
class BoolOp:
    """Clauses joined by AND or OR"""

    op: str
    clauses: Tuple["Condition", ...]

    def evaluate(self, tags: Mapping[str, str]) -> bool:
        if self.op == "AND":
            return all(c.evaluate(tags) for c in self.clauses)
        return any(c.evaluate(tags) for c in self.clauses)

    def __str__(self) -> str:
        parts = []
        for clause in self.clauses:
            text = str(clause)
            if self.op == "AND" and isinstance(clause, BoolOp) and clause.op == "OR":
                text = f"({text})"
            parts.append(text)
        return f" {self.op} ".join(parts)


Condition = Union[Comparison, BoolOp]


def tag_less_than(tag: str, value) -> Comparison:
    """``"tag" < 'value'``: only overwrite blobs carrying an older value"""
    return Comparison(tag, "<", str(value))


def all_of(*conditions: Condition) -> Condition:
    if len(conditions) == 1:
        return conditions[0]
    return BoolOp("AND", tuple(conditions))


def any_of(*conditions: Condition) -> Condition:
    if len(conditions) == 1:
        return conditions[0]
    return BoolOp("OR", tuple(conditions))


# --------------------------------------------------------------------------------------
# Parser
# --------------------------------------------------------------------------------------

_TOKEN_RE = re.compile(
    r"""
    \s*(?:
        (?P<quoted_tag>"[^"]*")
      | (?P<literal>'[^']*')
      | (?P<op><>|<=|>=|=|<|>)
      | (?P<paren>[()])
      | (?P<word>[A-Za-z_][A-Za-z0-9_.\-]*)
    )""",
    re.VERBOSE,
)


def _tokenize(text: str) -> List[Tuple[str, str]]:
    tokens = []
    pos = 0
    text = text.rstrip()
    while pos < len(text):
        match = _TOKEN_RE.match(text, pos)
        if not match or match.end() == pos:
            raise ConditionSyntaxError(
                f"Unexpected character at position {pos} in {text!r}"
            )
        kind = match.lastgroup
        value = match.group(kind)
        if kind == "word" and value.upper() in ("AND", "OR"):
            kind, value = "keyword", value.upper()
        tokens.append((kind, value))
        pos = match.end()
    return tokens


class _Parser:
    def __init__(self, text: str):
        self.text = text
        self.tokens = _tokenize(text)
        self.pos = 0

    def peek(self):
        if self.pos < len(self.tokens):
            return self.tokens[self.pos]
        return (None, None)

    def take(self):
        token = self.peek()
        if token[0] is None:
            raise ConditionSyntaxError(f"Unexpected end of condition {self.text!r}")
        self.pos += 1
        return token

    def parse(self) -> Condition:
        if not self.tokens:
            raise ConditionSyntaxError("Empty condition")
        condition = self.parse_or()
        if self.peek()[0] is not None:
            raise ConditionSyntaxError(
                f"Unexpected token {self.peek()[1]!r} in {self.text!r}"
            )
        return condition

    def parse_or(self) -> Condition:
        clauses = [self.parse_and()]
        while self.peek() == ("keyword", "OR"):
            self.take()
            clauses.append(self.parse_and())
        return any_of(*clauses)

    def parse_and(self) -> Condition:
        clauses = [self.parse_primary()]
        while self.peek() == ("keyword", "AND"):
            self.take()
            clauses.append(self.parse_primary())
        return all_of(*clauses)

    def parse_primary(self) -> Condition:
        kind, value = self.take()
        if (kind, value) == ("paren", "("):
            inner = self.parse_or()
            if self.take() != ("paren", ")"):
                raise ConditionSyntaxError(f"Unbalanced parentheses in {self.text!r}")
            return inner
        if kind == "quoted_tag":
            tag = value[1:-1]
        elif kind == "word":
            tag = value
        else:
            raise ConditionSyntaxError(f"Expected a tag name, got {value!r}")

        op_kind, op = self.take()
        if op_kind != "op":
            raise ConditionSyntaxError(f"Expected an operator after {tag!r}, got {op!r}")
        lit_kind, literal = self.take()
        if lit_kind != "literal":
            raise ConditionSyntaxError(
                f"Expected a quoted literal after {op!r}, got {literal!r}"
            )
        return Comparison(tag, op, literal[1:-1])


def parse(text: str) -> Condition:
    """Parse condition text into a Condition tree"""
    return _Parser(text).parse()


def coerce(condition: Union[str, Condition, None]):
    """Accept either condition text or an already built Condition"""
    if condition is None or isinstance(condition, (Comparison, BoolOp)):
        return condition
    return parse(condition)
