"""Arithmetic expression front end: lexer, recursive-descent parser, AST printers and evaluator."""

from __future__ import annotations

import argparse
import logging
import math
import sys
import time
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum, auto
from pathlib import Path
from typing import Callable, Dict, Iterable, Iterator, List, Optional, TypeVar, Union

logger = logging.getLogger(__name__)

__version__ = "0.1.0"

# Parentheses and unary minus are the only recursive rules; each level costs the parser several frames.
# Operator chains are built in a loop and every tree walk below uses an explicit stack.
NESTING_LIMIT_DEFAULT = 100

EXIT_OK = 0
EXIT_SYNTAX_ERROR = 1
EXIT_RUNTIME_ERROR = 3
EXIT_FILE_ERROR = 4


# ---------------------------------------------------------------------------
# Diagnostic infrastructure


@dataclass(frozen=True)
class Position:
	line: int
	column: int
	index: int


@dataclass(frozen=True)
class Span:
	start: Position
	end: Position

	@property
	def length(self) -> int:
		return self.end.index - self.start.index


def combine_span(a: Optional[Span], b: Optional[Span]) -> Optional[Span]:
	if a is None or b is None:
		return a or b
	return Span(start=a.start, end=b.end)


class TreeParserError(Exception):
	"""Base class for every error the expression pipeline reports."""

	label = "Error"

	def __init__(self, message: str, span: Optional[Span] = None, *, hint: Optional[str] = None) -> None:
		super().__init__(message)
		self.message = message
		self.span = span
		self.hint = hint

	def _location(self) -> str:
		if self.span is None:
			return ""
		return f" at line {self.span.start.line}, column {self.span.start.column}"


class ParseError(TreeParserError):
	"""Raised by the lexer or the parser; the whole parse is aborted."""

	label = "SyntaxError"

	def __init__(
		self,
		message: str,
		span: Optional[Span] = None,
		*,
		found: Optional[str] = None,
		hint: Optional[str] = None,
	) -> None:
		super().__init__(message, span, hint=hint)
		self.found = found

	def __str__(self) -> str:
		found = f", found {self.found}" if self.found else ""
		return f"{self.message}{found}{self._location()}"


class EvalErrorKind(Enum):
	DIVISION_BY_ZERO = "division by zero"
	MODULO_BY_ZERO = "modulo by zero"
	OVERFLOW = "numeric overflow"
	UNSUPPORTED_OPERATOR = "unsupported operator"


class EvalError(TreeParserError):
	"""Raised by the evaluator on a fully formed tree."""

	label = "RuntimeError"

	def __init__(self, kind: EvalErrorKind, operator: str, span: Optional[Span] = None) -> None:
		super().__init__(kind.value, span)
		self.kind = kind
		self.operator = operator

	def __str__(self) -> str:
		return f"{self.message} in '{self.operator}'{self._location()}"


def format_diagnostic(error: TreeParserError, source: str) -> str:
	"""Render an error with its source line and a caret under the offending span."""
	# Line numbers come from the lexer, which only breaks lines on "\n".
	lines = source.split("\n")
	loc = ""
	frame = ""
	if error.span and 1 <= error.span.start.line <= len(lines):
		line_no = error.span.start.line
		col = max(1, error.span.start.column)
		text_line = lines[line_no - 1]
		if text_line.endswith("\r"):
			text_line = text_line[:-1]
		width = max(1, min(error.span.length, len(text_line) - col + 1))
		caret = " " * (col - 1) + "^" * width
		loc = f"Location: line {line_no}, col {col}\n"
		frame = f"\n{text_line}\n{caret}\n"
	elif error.span:
		loc = f"Location: line {error.span.start.line}, col {error.span.start.column}\n"
	hint = f"\nHint: {error.hint}\n" if error.hint else ""
	return f"[{error.label}] {error}\n{loc}{frame}{hint}"


# ---------------------------------------------------------------------------
# Lexer


class TokenKind(Enum):
	NUMBER = auto()
	PLUS = auto()
	MINUS = auto()
	STAR = auto()
	SLASH = auto()
	PERCENT = auto()
	LPAREN = auto()
	RPAREN = auto()
	EOF = auto()


SYMBOLS: Dict[str, TokenKind] = {
	"+": TokenKind.PLUS,
	"-": TokenKind.MINUS,
	"*": TokenKind.STAR,
	"/": TokenKind.SLASH,
	"%": TokenKind.PERCENT,
	"(": TokenKind.LPAREN,
	")": TokenKind.RPAREN,
}

DIGITS = frozenset("0123456789")


@dataclass(frozen=True)
class Token:
	kind: TokenKind
	lexeme: str
	span: Span
	value: Optional[float] = None


def describe_token(token: Token) -> str:
	if token.kind == TokenKind.EOF:
		return "end of input"
	if token.kind == TokenKind.NUMBER:
		return f"number {token.lexeme}"
	return f"'{token.lexeme}'"


class Lexer:
	def __init__(self, source: str) -> None:
		self.source = source
		self.length = len(source)
		self.index = 0
		self.line = 1
		self.column = 1

	def tokens(self) -> Iterator[Token]:
		while not self._is_eof():
			ch = self._peek()
			if ch in " \t\r":
				self._advance()
			elif ch == "\n":
				self._advance()
				self.line += 1
				self.column = 1
			elif ch in DIGITS:
				yield self._consume_number()
			else:
				yield self._consume_symbol()
		yield self._make_token(TokenKind.EOF, "", self._current_position())

	def _consume_number(self) -> Token:
		start = self._current_position()
		self._consume_while(lambda c: c in DIGITS)
		# A fraction needs at least one digit after the point; "1." leaves the '.' unlexed.
		if self._peek() == "." and self._peek_next() in DIGITS:
			self._advance()
			self._consume_while(lambda c: c in DIGITS)
		lexeme = self.source[start.index : self.index]
		value = float(lexeme)
		if not math.isfinite(value):
			raise ParseError("numeric literal out of range", Span(start, self._current_position()))
		return self._make_token(TokenKind.NUMBER, lexeme, start, value)

	def _consume_symbol(self) -> Token:
		start = self._current_position()
		ch = self._advance()
		kind = SYMBOLS.get(ch)
		if kind is None:
			raise ParseError("unexpected character", Span(start, self._current_position()), found=repr(ch))
		return self._make_token(kind, ch, start)

	def _consume_while(self, predicate: Callable[[str], bool]) -> str:
		start_index = self.index
		while not self._is_eof() and predicate(self._peek()):
			self._advance()
		return self.source[start_index:self.index]

	def _current_position(self) -> Position:
		return Position(self.line, self.column, self.index)

	def _make_token(self, kind: TokenKind, lexeme: str, start: Position, value: Optional[float] = None) -> Token:
		return Token(kind, lexeme, Span(start, self._current_position()), value)

	def _advance(self) -> str:
		ch = self.source[self.index]
		self.index += 1
		self.column += 1
		return ch

	def _peek(self) -> str:
		if self._is_eof():
			return ""
		return self.source[self.index]

	def _peek_next(self) -> str:
		if self.index + 1 >= self.length:
			return ""
		return self.source[self.index + 1]

	def _is_eof(self) -> bool:
		return self.index >= self.length


def tokenize(source: str) -> Iterator[Token]:
	"""Lazily tokenize `source`; a fresh lexer is used on every call."""
	return Lexer(source).tokens()


# ---------------------------------------------------------------------------
# AST definitions


class BinaryOperator(Enum):
	ADD = "+"
	SUB = "-"
	MUL = "*"
	DIV = "/"
	MOD = "%"


class UnaryOperator(Enum):
	NEGATE = "-"


@dataclass(frozen=True)
class Expr:
	# Spans and depth never take part in equality: trees compare by shape and values.
	span: Optional[Span] = field(default=None, compare=False, repr=False, kw_only=True)
	depth: int = field(default=1, init=False, compare=False, repr=False)

	def __post_init__(self) -> None:
		object.__setattr__(self, "depth", 1 + max((child.depth for child in _children(self)), default=0))


@dataclass(frozen=True)
class Literal(Expr):
	value: float


@dataclass(frozen=True)
class BinaryOp(Expr):
	operator: BinaryOperator
	left: Expr
	right: Expr


@dataclass(frozen=True)
class UnaryOp(Expr):
	operator: UnaryOperator
	operand: Expr


def _children(node: Expr) -> List[Expr]:
	if isinstance(node, BinaryOp):
		return [node.left, node.right]
	if isinstance(node, UnaryOp):
		return [node.operand]
	return []


T = TypeVar("T")


def fold(
	node: Expr,
	on_literal: Callable[[Literal], T],
	on_binary: Callable[[BinaryOp, T, T], T],
	on_unary: Callable[[UnaryOp, T], T],
) -> T:
	"""
	Post-order traversal: children are reduced left to right before their parent.

	An exception raised by a callback stops the walk, so nothing to the right
	of a failing subtree is visited. The walk keeps its own stack, so trees of
	any depth can be folded.
	"""
	results: List[T] = []
	# (node, children_done): a node is pushed once to expand it and once more to reduce it.
	stack: List[tuple] = [(node, False)]
	while stack:
		current, children_done = stack.pop()
		if isinstance(current, Literal):
			results.append(on_literal(current))
		elif isinstance(current, BinaryOp):
			if children_done:
				right = results.pop()
				left = results.pop()
				results.append(on_binary(current, left, right))
			else:
				stack.append((current, True))
				stack.append((current.right, False))
				stack.append((current.left, False))
		elif isinstance(current, UnaryOp):
			if children_done:
				results.append(on_unary(current, results.pop()))
			else:
				stack.append((current, True))
				stack.append((current.operand, False))
		else:
			raise TypeError(f"Unsupported node: {current.__class__.__name__}")
	return results.pop()


# ---------------------------------------------------------------------------
# Parser


ADDITIVE: Dict[TokenKind, BinaryOperator] = {
	TokenKind.PLUS: BinaryOperator.ADD,
	TokenKind.MINUS: BinaryOperator.SUB,
}

MULTIPLICATIVE: Dict[TokenKind, BinaryOperator] = {
	TokenKind.STAR: BinaryOperator.MUL,
	TokenKind.SLASH: BinaryOperator.DIV,
	TokenKind.PERCENT: BinaryOperator.MOD,
}


class Parser:
	"""
	Recursive descent over a token stream with one token of lookahead.

	  expression := term (("+"|"-") term)*
	  term       := factor (("*"|"/"|"%") factor)*
	  factor     := NUMBER | "(" expression ")" | "-" factor
	"""

	def __init__(
		self,
		tokens: Iterable[Token],
		*,
		max_nesting: int = NESTING_LIMIT_DEFAULT,
	) -> None:
		self._tokens = iter(tokens)
		self._current: Optional[Token] = None
		self._last_end = Position(1, 1, 0)
		self._nesting = 0
		self.max_nesting = max_nesting

	def parse(self) -> Expr:
		expr = self._parse_expression()
		token = self._peek()
		if token.kind != TokenKind.EOF:
			raise self._error("unexpected trailing input", token)
		return expr

	def _parse_expression(self) -> Expr:
		return self._parse_binary(self._parse_term, ADDITIVE)

	def _parse_term(self) -> Expr:
		return self._parse_binary(self._parse_factor, MULTIPLICATIVE)

	def _parse_binary(self, operand: Callable[[], Expr], operators: Dict[TokenKind, BinaryOperator]) -> Expr:
		expr = operand()
		while self._peek().kind in operators:
			operator = self._advance_token()
			right = operand()
			# The tree built so far always becomes the left child: left associativity.
			expr = BinaryOp(operators[operator.kind], expr, right, span=combine_span(expr.span, right.span))
		return expr

	def _parse_factor(self) -> Expr:
		token = self._peek()
		if token.kind == TokenKind.MINUS:
			self._advance_token()
			self._enter(token)
			operand = self._parse_factor()
			self._nesting -= 1
			return UnaryOp(UnaryOperator.NEGATE, operand, span=combine_span(token.span, operand.span))
		if token.kind == TokenKind.NUMBER:
			self._advance_token()
			return Literal(token.value, span=token.span)
		if token.kind == TokenKind.LPAREN:
			self._advance_token()
			self._enter(token)
			expr = self._parse_expression()
			self._expect_close(token)
			self._nesting -= 1
			return expr
		raise self._error("expected expression", token)

	# Utility parsing helpers -------------------------------------------------

	def _expect_close(self, opener: Token) -> Token:
		token = self._peek()
		if token.kind != TokenKind.RPAREN:
			start = opener.span.start
			raise self._error("expected ')'", token, hint=f"unmatched '(' at line {start.line}, column {start.column}")
		return self._advance_token()

	def _enter(self, token: Token) -> None:
		self._nesting += 1
		if self._nesting > self.max_nesting:
			raise self._error("expression nested too deeply", token, hint=f"the nesting limit is {self.max_nesting}")

	def _peek(self) -> Token:
		if self._current is None:
			try:
				self._current = next(self._tokens)
			except StopIteration:
				# Token streams built by hand may omit the end marker.
				self._current = Token(TokenKind.EOF, "", Span(self._last_end, self._last_end))
			self._last_end = self._current.span.end
		return self._current

	def _advance_token(self) -> Token:
		token = self._peek()
		if token.kind != TokenKind.EOF:
			self._current = None
		return token

	def _error(self, message: str, token: Token, hint: Optional[str] = None) -> ParseError:
		return ParseError(message, token.span, found=describe_token(token), hint=hint)


def parse_tokens(tokens: Iterable[Token], *, max_nesting: int = NESTING_LIMIT_DEFAULT) -> Expr:
	return Parser(tokens, max_nesting=max_nesting).parse()


def parse(source: str, *, max_nesting: int = NESTING_LIMIT_DEFAULT) -> Expr:
	"""Parse `source` into an AST, raising `ParseError` on malformed input."""
	return parse_tokens(tokenize(source), max_nesting=max_nesting)


# ---------------------------------------------------------------------------
# Printers


def format_number(value: float) -> str:
	"""Render a number without exponent notation so it can be lexed again."""
	value = float(value)
	if value == 0:
		return "0"
	if value.is_integer():
		return str(int(value))
	return format(Decimal(repr(value)), "f")


def to_infix(node: Expr) -> str:
	"""Fully parenthesized infix form, e.g. `(1 + (2 * 3))`."""
	return fold(
		node,
		lambda lit: format_number(lit.value),
		lambda op, left, right: f"({left} {op.operator.value} {right})",
		lambda op, operand: f"({op.operator.value}{operand})",
	)


def _node_label(node: Expr) -> str:
	if isinstance(node, Literal):
		return format_number(node.value)
	if isinstance(node, BinaryOp):
		return node.operator.value
	if isinstance(node, UnaryOp):
		return "neg"
	raise TypeError(f"Unsupported node: {node.__class__.__name__}")


def _tree_lines(root: Expr) -> List[str]:
	out: List[str] = []
	stack = [(root, "", True)]
	while stack:
		node, prefix, is_last = stack.pop()
		connector = "└── " if is_last else "├── "
		out.append(f"{prefix}{connector}{_node_label(node)}")
		children = _children(node)
		child_prefix = prefix + ("    " if is_last else "│   ")
		# Pushed in reverse so the first child is printed first.
		for i in reversed(range(len(children))):
			stack.append((children[i], child_prefix, i == len(children) - 1))
	return out


def format_tree(node: Expr) -> str:
	lines = [f"Expression: {to_infix(node)}", ""]
	lines.extend(_tree_lines(node))
	return "\n".join(lines)


# ---------------------------------------------------------------------------
# Evaluator


def _finite(value: float, operator: str, span: Optional[Span]) -> float:
	if not math.isfinite(value):
		raise EvalError(EvalErrorKind.OVERFLOW, operator, span)
	return value


def _eval_literal(node: Literal) -> float:
	return float(node.value)


def _eval_binary(node: BinaryOp, left: float, right: float) -> float:
	op = node.operator
	if op == BinaryOperator.ADD:
		return _finite(left + right, op.value, node.span)
	if op == BinaryOperator.SUB:
		return _finite(left - right, op.value, node.span)
	if op == BinaryOperator.MUL:
		return _finite(left * right, op.value, node.span)
	if op == BinaryOperator.DIV:
		if right == 0:
			raise EvalError(EvalErrorKind.DIVISION_BY_ZERO, op.value, node.span)
		return _finite(left / right, op.value, node.span)
	if op == BinaryOperator.MOD:
		if right == 0:
			raise EvalError(EvalErrorKind.MODULO_BY_ZERO, op.value, node.span)
		return _finite(left % right, op.value, node.span)
	raise EvalError(EvalErrorKind.UNSUPPORTED_OPERATOR, str(getattr(op, "value", op)), node.span)


def _eval_unary(node: UnaryOp, operand: float) -> float:
	if node.operator == UnaryOperator.NEGATE:
		return -operand
	raise EvalError(EvalErrorKind.UNSUPPORTED_OPERATOR, str(getattr(node.operator, "value", node.operator)), node.span)


def evaluate(node: Expr) -> float:
	"""Reduce the tree to a float, raising `EvalError` on the first failing operation."""
	return fold(node, _eval_literal, _eval_binary, _eval_unary)


# ---------------------------------------------------------------------------
# Pipeline


@dataclass
class ParseResult:
	source: str
	tokens: List[Token]
	ast: Optional[Expr]
	error: Optional[ParseError]
	duration_ms: float

	@property
	def ok(self) -> bool:
		return self.error is None


@dataclass
class EvalResult:
	source: str
	ast: Optional[Expr]
	value: Optional[float]
	error: Optional[Union[ParseError, EvalError]]
	duration_ms: float

	@property
	def ok(self) -> bool:
		return self.error is None


class ExpressionEngine:
	"""Runs the pipeline and hands every stage failure back as part of the result."""

	def __init__(self, *, max_nesting: int = NESTING_LIMIT_DEFAULT) -> None:
		self.max_nesting = max_nesting

	def parse(self, source: str) -> ParseResult:
		tokens: List[Token] = []

		def recording() -> Iterator[Token]:
			for token in tokenize(source):
				tokens.append(token)
				yield token

		start = time.perf_counter()
		ast: Optional[Expr] = None
		error: Optional[ParseError] = None
		try:
			ast = parse_tokens(recording(), max_nesting=self.max_nesting)
		except ParseError as exc:
			error = exc
		duration_ms = (time.perf_counter() - start) * 1000
		if error is not None:
			logger.debug("parse failed after %d tokens: %s", len(tokens), error)
		else:
			logger.debug("parsed %d tokens in %.3f ms", len(tokens), duration_ms)
		return ParseResult(source=source, tokens=tokens, ast=ast, error=error, duration_ms=duration_ms)

	def eval(self, source: str) -> EvalResult:
		start = time.perf_counter()
		parsed = self.parse(source)
		if parsed.ast is None:
			return EvalResult(
				source=source,
				ast=None,
				value=None,
				error=parsed.error,
				duration_ms=(time.perf_counter() - start) * 1000,
			)
		value: Optional[float] = None
		error: Optional[EvalError] = None
		try:
			value = evaluate(parsed.ast)
		except EvalError as exc:
			error = exc
			logger.debug("evaluation failed: %s", exc)
		duration_ms = (time.perf_counter() - start) * 1000
		return EvalResult(source=source, ast=parsed.ast, value=value, error=error, duration_ms=duration_ms)


def parse_source(source: str, *, max_nesting: int = NESTING_LIMIT_DEFAULT) -> ParseResult:
	return ExpressionEngine(max_nesting=max_nesting).parse(source)


def eval_source(source: str, *, max_nesting: int = NESTING_LIMIT_DEFAULT) -> EvalResult:
	return ExpressionEngine(max_nesting=max_nesting).eval(source)


# ---------------------------------------------------------------------------
# Command line


HELP_TEXT = """Tree Parser CLI

Usage:
  tree-parser parse <file>    Read an expression from a file and print its AST
  tree-parser eval <file>     Read an expression from a file and print its value
  tree-parser help            Show this help
  tree-parser about           Show information about the project

Use '-' as <file> to read standard input, or -e/--expr to pass the expression inline.
"""

ABOUT_TEXT = f"""Tree Parser {__version__}: arithmetic expression parser and evaluator
Supports + - * / % with parentheses and unary minus over decimal numbers."""


def build_arg_parser() -> argparse.ArgumentParser:
	ap = argparse.ArgumentParser(prog="tree-parser", description="Parse and evaluate arithmetic expressions")
	ap.add_argument("-v", "--verbose", action="store_true", help="enable debug logging")
	sub = ap.add_subparsers(dest="command")

	for name, help_text in (("parse", "print the AST of an expression"), ("eval", "print the value of an expression")):
		cmd = sub.add_parser(name, help=help_text)
		cmd.add_argument("file", nargs="?", help="file holding the expression ('-' for stdin)")
		cmd.add_argument("-e", "--expr", help="expression text instead of a file")
		cmd.add_argument("--max-nesting", type=int, default=NESTING_LIMIT_DEFAULT, help="largest allowed parenthesis/unary nesting")
		if name == "parse":
			cmd.add_argument("--tokens", action="store_true", help="dump the token stream instead of the tree")

	sub.add_parser("help", help="show usage")
	sub.add_parser("about", help="show project information")
	return ap


def _read_source(args: argparse.Namespace) -> str:
	if args.expr is not None:
		return args.expr
	if args.file == "-":
		return sys.stdin.read()
	return Path(args.file).read_text(encoding="utf-8")


def _dump_tokens(source: str) -> int:
	try:
		for token in tokenize(source):
			start = token.span.start
			print(f"{token.kind.name:<8} {token.lexeme!r:<12} {start.line}:{start.column}")
	except ParseError as exc:
		print(format_diagnostic(exc, source), file=sys.stderr, end="")
		return EXIT_SYNTAX_ERROR
	return EXIT_OK


def main(argv: Optional[List[str]] = None) -> int:
	ap = build_arg_parser()
	args = ap.parse_args(argv)
	if args.verbose:
		logging.basicConfig(level=logging.DEBUG, format="%(levelname)s %(name)s: %(message)s")

	if args.command in (None, "help"):
		print(HELP_TEXT, end="")
		return EXIT_OK
	if args.command == "about":
		print(ABOUT_TEXT)
		return EXIT_OK

	if args.expr is None and args.file is None:
		ap.error(f"{args.command}: a file or --expr is required")
	if args.expr is not None and args.file is not None:
		ap.error(f"{args.command}: give either a file or --expr, not both")
	try:
		source = _read_source(args)
	except (OSError, UnicodeDecodeError) as exc:
		print(f"Cannot read file '{args.file}': {getattr(exc, 'strerror', None) or exc}", file=sys.stderr)
		return EXIT_FILE_ERROR

	engine = ExpressionEngine(max_nesting=args.max_nesting)
	if args.command == "parse":
		if args.tokens:
			return _dump_tokens(source)
		parsed = engine.parse(source)
		if parsed.error is not None:
			print(format_diagnostic(parsed.error, source), file=sys.stderr, end="")
			return EXIT_SYNTAX_ERROR
		print(format_tree(parsed.ast))
		return EXIT_OK

	result = engine.eval(source)
	if result.error is not None:
		print(format_diagnostic(result.error, source), file=sys.stderr, end="")
		return EXIT_SYNTAX_ERROR if isinstance(result.error, ParseError) else EXIT_RUNTIME_ERROR
	print(f"Result: {format_number(result.value)}")
	return EXIT_OK


if __name__ == "__main__":
	sys.exit(main())
