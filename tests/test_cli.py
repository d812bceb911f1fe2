import io

import pytest

from tree_parser import EXIT_FILE_ERROR, EXIT_OK, EXIT_RUNTIME_ERROR, EXIT_SYNTAX_ERROR, main


def test_eval_inline(capsys):
	assert main(["eval", "-e", "2 + 3 * 4"]) == EXIT_OK
	assert capsys.readouterr().out == "Result: 14\n"


def test_eval_file(tmp_path, capsys):
	path = tmp_path / "example.txt"
	path.write_text("3 + 5 * (2 - 8) / 4\n", encoding="utf-8")
	assert main(["eval", str(path)]) == EXIT_OK
	assert capsys.readouterr().out == "Result: -4.5\n"


def test_eval_stdin(monkeypatch, capsys):
	monkeypatch.setattr("sys.stdin", io.StringIO("10 - 3 - 2"))
	assert main(["eval", "-"]) == EXIT_OK
	assert capsys.readouterr().out == "Result: 5\n"


def test_parse_prints_tree(tmp_path, capsys):
	path = tmp_path / "example.txt"
	path.write_text("2 + 3", encoding="utf-8")
	assert main(["parse", str(path)]) == EXIT_OK
	out = capsys.readouterr().out
	assert out.startswith("Expression: (2 + 3)\n")
	assert "└── +" in out
	assert "    ├── 2" in out


def test_parse_tokens_dump(capsys):
	assert main(["parse", "--tokens", "-e", "1 + 2"]) == EXIT_OK
	lines = capsys.readouterr().out.splitlines()
	assert len(lines) == 4
	assert lines[0].startswith("NUMBER")
	assert lines[1].startswith("PLUS")
	assert lines[-1].startswith("EOF")


def test_parse_tokens_dump_stops_at_bad_character(capsys):
	assert main(["parse", "--tokens", "-e", "1 $"]) == EXIT_SYNTAX_ERROR
	captured = capsys.readouterr()
	assert captured.out.startswith("NUMBER")
	assert "[SyntaxError] unexpected character" in captured.err


def test_syntax_error_exit_code(capsys):
	assert main(["parse", "-e", "(1 + 2"]) == EXIT_SYNTAX_ERROR
	assert "[SyntaxError] expected ')'" in capsys.readouterr().err
	assert main(["eval", "-e", "1 + 2 3"]) == EXIT_SYNTAX_ERROR
	assert "unexpected trailing input" in capsys.readouterr().err


def test_runtime_error_exit_code(capsys):
	assert main(["eval", "-e", "5 / 0"]) == EXIT_RUNTIME_ERROR
	captured = capsys.readouterr()
	assert captured.out == ""
	assert "[RuntimeError] division by zero" in captured.err


def test_missing_file(tmp_path, capsys):
	missing = tmp_path / "nope.txt"
	assert main(["eval", str(missing)]) == EXIT_FILE_ERROR
	assert "Cannot read file" in capsys.readouterr().err


def test_file_that_is_not_utf8(tmp_path, capsys):
	path = tmp_path / "latin1.txt"
	path.write_bytes(b"1 + \xff")
	assert main(["eval", str(path)]) == EXIT_FILE_ERROR
	err = capsys.readouterr().err
	assert "Cannot read file" in err
	assert "utf-8" in err


def test_stdin_that_is_not_utf8(monkeypatch, capsys):
	raw = io.TextIOWrapper(io.BytesIO(b"\xff"), encoding="utf-8")
	monkeypatch.setattr("sys.stdin", raw)
	assert main(["eval", "-"]) == EXIT_FILE_ERROR
	assert "Cannot read file '-'" in capsys.readouterr().err


def test_max_nesting_flag(capsys):
	assert main(["eval", "--max-nesting", "1", "-e", "((1))"]) == EXIT_SYNTAX_ERROR
	assert "nested too deeply" in capsys.readouterr().err


def test_file_or_expression_required():
	with pytest.raises(SystemExit) as ei:
		main(["eval"])
	assert ei.value.code == 2


def test_file_and_expression_together_are_rejected(tmp_path, capsys):
	path = tmp_path / "example.txt"
	path.write_text("1 + 1", encoding="utf-8")
	with pytest.raises(SystemExit) as ei:
		main(["eval", str(path), "-e", "2 + 2"])
	assert ei.value.code == 2
	assert "not both" in capsys.readouterr().err


def test_long_sum_from_file(tmp_path, capsys):
	path = tmp_path / "sum.txt"
	path.write_text(" + ".join(["1"] * 5000), encoding="utf-8")
	assert main(["eval", str(path)]) == EXIT_OK
	assert capsys.readouterr().out == "Result: 5000\n"


@pytest.mark.parametrize("argv", [[], ["help"]])
def test_help(argv, capsys):
	assert main(argv) == EXIT_OK
	assert "Usage:" in capsys.readouterr().out


def test_about(capsys):
	assert main(["about"]) == EXIT_OK
	assert capsys.readouterr().out.startswith("Tree Parser")
