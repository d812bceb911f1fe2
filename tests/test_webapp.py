import pytest
from fastapi.testclient import TestClient

from webapp.main import JSON_DEPTH_LIMIT, MAX_SOURCE_LENGTH, app


@pytest.fixture
def client():
	return TestClient(app)


def test_health(client):
	resp = client.get("/health")
	assert resp.status_code == 200
	assert resp.json() == {"status": "ok"}


def test_index(client):
	resp = client.get("/")
	assert resp.status_code == 200
	assert "/api/eval" in resp.text


def test_parse(client):
	body = client.post("/api/parse", json={"source": "2 + 3"}).json()
	assert body["ok"] is True
	assert body["error"] is None
	assert body["infix"] == "(2 + 3)"
	assert body["tree"].startswith("Expression: (2 + 3)")
	assert body["token_count"] == 4
	assert [t["kind"] for t in body["tokens"]] == ["NUMBER", "PLUS", "NUMBER"]
	ast = body["ast"]
	assert ast["_type"] == "BinaryOp"
	assert ast["operator"] == "ADD"
	assert ast["left"] == {
		"_type": "Literal",
		"span": ast["left"]["span"],
		"depth": 1,
		"value": 2.0,
	}


def test_parse_error(client):
	body = client.post("/api/parse", json={"source": "(1 + 2"}).json()
	assert body["ok"] is False
	assert body["ast"] is None
	assert body["tree"] is None
	err = body["error"]
	assert err["stage"] == "parse"
	assert err["message"] == "expected ')'"
	assert err["found"] == "end of input"
	assert err["span"]["start"]["column"] == 7


def test_eval(client):
	body = client.post("/api/eval", json={"source": "10 - 3 - 2"}).json()
	assert body["ok"] is True
	assert body["value"] == 5.0
	assert body["text"] == "5"


def test_eval_runtime_error(client):
	body = client.post("/api/eval", json={"source": "5 / 0"}).json()
	assert body["ok"] is False
	assert body["value"] is None
	assert body["ast"]["_type"] == "BinaryOp"
	err = body["error"]
	assert err["stage"] == "eval"
	assert err["kind"] == "DIVISION_BY_ZERO"
	assert err["operator"] == "/"


def test_eval_syntax_error(client):
	body = client.post("/api/eval", json={"source": "1 + 2 3"}).json()
	assert body["error"]["stage"] == "parse"
	assert body["error"]["message"] == "unexpected trailing input"


def test_nesting_limit_from_request(client):
	body = client.post("/api/eval", json={"source": "((1))", "max_nesting": 1}).json()
	assert body["error"]["message"] == "expression nested too deeply"


def test_every_node_has_the_same_keys(client):
	ast = client.post("/api/parse", json={"source": "-1 + 2"}).json()["ast"]
	unary, literal = ast["left"], ast["right"]
	assert set(literal) == {"_type", "span", "depth", "value"}
	assert set(unary) == {"_type", "span", "depth", "operator", "operand"}
	assert set(ast) == {"_type", "span", "depth", "operator", "left", "right"}
	assert unary["operand"]["depth"] == 1
	assert ast["depth"] == 3


def test_long_sum(client):
	source = "+".join(["1"] * 5000)
	body = client.post("/api/eval", json={"source": source}).json()
	assert body["ok"] is True
	assert body["value"] == 5000.0
	node = body["ast"]
	levels = 0
	while "_truncated" not in node:
		node = node["left"]
		levels += 1
	assert levels == JSON_DEPTH_LIMIT + 1


@pytest.mark.parametrize(
	"payload",
	[
		{},
		{"source": "1", "max_nesting": 10_000},
		{"source": "1" * (MAX_SOURCE_LENGTH + 1)},
	],
)
def test_invalid_requests(client, payload):
	assert client.post("/api/eval", json=payload).status_code == 422
