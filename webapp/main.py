from __future__ import annotations

import logging
from dataclasses import fields, is_dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import HTMLResponse
from pydantic import BaseModel, Field

from tree_parser import (
	NESTING_LIMIT_DEFAULT,
	EvalError,
	ExpressionEngine,
	ParseError,
	TokenKind,
	TreeParserError,
	__version__,
	format_number,
	format_tree,
	to_infix,
)

logger = logging.getLogger(__name__)

MAX_SOURCE_LENGTH = 10_000
# Deeper AST levels are replaced by a marker; the response encoder recurses once per level.
JSON_DEPTH_LIMIT = 64

app = FastAPI(title="Tree Parser", version=__version__)

app.add_middleware(
	CORSMiddleware,
	allow_origins=["*"],
	allow_credentials=True,
	allow_methods=["*"],
	allow_headers=["*"],
)


class ExpressionRequest(BaseModel):
	# Example: "3 + 5 * (2 - 8) / 4"
	source: str = Field(..., max_length=MAX_SOURCE_LENGTH)
	max_nesting: int = Field(NESTING_LIMIT_DEFAULT, ge=1, le=NESTING_LIMIT_DEFAULT)


def _to_json(obj: Any, *, max_depth: int = JSON_DEPTH_LIMIT) -> Any:
	"""Convert AST nodes, spans and tokens to JSON-safe structures."""
	root: Dict[str, Any] = {}
	# (value, container, key, depth): each value is written into its slot in the parent container.
	stack: List[Tuple[Any, Any, Any, int]] = [(obj, root, "value", 0)]
	while stack:
		value, target, key, depth = stack.pop()
		if depth > max_depth:
			target[key] = {"_truncated": True}
		elif isinstance(value, Enum):
			target[key] = value.name
		elif value is None or isinstance(value, (str, int, float, bool)):
			target[key] = value
		elif isinstance(value, list):
			items: List[Any] = [None] * len(value)
			target[key] = items
			stack.extend((x, items, i, depth + 1) for i, x in enumerate(value))
		elif isinstance(value, dict):
			mapping: Dict[str, Any] = {}
			target[key] = mapping
			for k, v in value.items():
				mapping[str(k)] = None
				stack.append((v, mapping, str(k), depth + 1))
		elif is_dataclass(value):
			data: Dict[str, Any] = {"_type": value.__class__.__name__}
			target[key] = data
			for f in fields(value):
				data[f.name] = None
				stack.append((getattr(value, f.name), data, f.name, depth + 1))
		else:
			target[key] = str(value)
	return root["value"]


def _error_json(error: Optional[TreeParserError]) -> Optional[Dict[str, Any]]:
	if error is None:
		return None
	data: Dict[str, Any] = {
		"stage": "parse" if isinstance(error, ParseError) else "eval",
		"message": error.message,
		"detail": str(error),
		"hint": error.hint,
		"span": _to_json(error.span),
	}
	if isinstance(error, ParseError):
		data["found"] = error.found
	if isinstance(error, EvalError):
		data["kind"] = error.kind.name
		data["operator"] = error.operator
	return data


@app.get("/", response_class=HTMLResponse)
def index() -> HTMLResponse:
	return HTMLResponse(
		"<h2>Tree Parser API</h2>"
		"<p>POST <code>/api/parse</code> or <code>/api/eval</code> with JSON: <code>{\"source\": \"2 + 3 * 4\"}</code></p>"
	)


@app.get("/health")
def health() -> Dict[str, str]:
	return {"status": "ok"}


@app.post("/api/parse")
def parse_expression(req: ExpressionRequest) -> Dict[str, Any]:
	engine = ExpressionEngine(max_nesting=req.max_nesting)
	art = engine.parse(req.source)
	logger.debug("parse request: ok=%s tokens=%d", art.ok, len(art.tokens))
	return {
		"ok": art.ok,
		"duration_ms": art.duration_ms,
		"token_count": len(art.tokens),
		"tokens": [
			{
				"kind": t.kind.name,
				"lexeme": t.lexeme,
				"value": t.value,
				"span": _to_json(t.span),
			}
			for t in art.tokens
			if t.kind != TokenKind.EOF
		],
		"ast": _to_json(art.ast),
		"infix": to_infix(art.ast) if art.ast is not None else None,
		"tree": format_tree(art.ast) if art.ast is not None else None,
		"error": _error_json(art.error),
	}


@app.post("/api/eval")
def eval_expression(req: ExpressionRequest) -> Dict[str, Any]:
	engine = ExpressionEngine(max_nesting=req.max_nesting)
	art = engine.eval(req.source)
	logger.debug("eval request: ok=%s", art.ok)
	return {
		"ok": art.ok,
		"duration_ms": art.duration_ms,
		"value": art.value,
		"text": format_number(art.value) if art.value is not None else None,
		"ast": _to_json(art.ast),
		"error": _error_json(art.error),
	}
