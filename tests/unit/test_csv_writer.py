from __future__ import annotations

from recordport.csvio.parser import parse_csv
from recordport.csvio.writer import render_csv


def test_render_with_headers():
    text = render_csv(["Name", "City"], [["Acme", "Austin"], ["Globex", "Boston"]])
    assert text == "Name,City\nAcme,Austin\nGlobex,Boston\n"


def test_render_without_headers():
    text = render_csv(["Name"], [["Acme"]], include_headers=False)
    assert text == "Acme\n"


def test_minimal_quoting():
    text = render_csv(["Name", "Notes"], [["Acme, Inc.", 'say "hi"'], ["Plain", "two\nlines"]])
    lines = text.split("\n")
    assert lines[1] == '"Acme, Inc.","say ""hi"""'
    assert text.endswith('"two\nlines"\n')


def test_custom_delimiter_quotes_only_that_delimiter():
    text = render_csv(["A", "B"], [["1,5", "x;y"]], delimiter=";")
    assert text == 'A;B\n1,5;"x;y"\n'


def test_empty_rows_with_headers_emit_header_line():
    assert render_csv(["Name", "City"], []) == "Name,City\n"


def test_empty_rows_without_headers_is_empty():
    assert render_csv(["Name"], [], include_headers=False) == ""


def test_carriage_return_is_quoted():
    text = render_csv(["Name", "SKU"], [["a\rb", "S1"], ["plain", "S2"]])
    assert text == 'Name,SKU\n"a\rb",S1\nplain,S2\n'


def test_output_parses_back_to_same_values():
    rows = [
        ["Acme, Inc.", 'a "quoted" word'],
        ["x", "multi\nline"],
        ["a\rb", "windows\r\nbreak"],
        ["Initech", "trailing\r"],
    ]
    parsed = parse_csv(render_csv(["Name", "Notes"], rows))
    assert [[r.get("Name"), r.get("Notes")] for r in parsed.rows] == rows
