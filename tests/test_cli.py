import json

import pytest

from msl import cli

SCRIPT = '''open "https://x/a"
click ".link"
  set id = attr("href").split("/")[-1]
  media image where src ~ "cdn" extensions png
  save to "./out/{id}"
'''


@pytest.fixture
def script_file(tmp_path):
    path = tmp_path / "gallery.msl"
    path.write_text(SCRIPT, encoding="utf-8")
    return path


def test_parse_prints_canonical_script(script_file, capsys):
    assert cli.main(["parse", str(script_file)]) == cli.EXIT_OK
    out = capsys.readouterr().out
    assert out.splitlines() == [
        'open "https://x/a"',
        'click ".link"',
        '  set id = attr("href").split("/")[-1]',
        "  media",
        "    image",
        '      where src ~ "cdn"',
        "      extensions png",
        '  save to "./out/{id}"',
    ]


def test_parse_json(script_file, capsys):
    assert cli.main(["parse", "--json", str(script_file)]) == cli.EXIT_OK
    data = json.loads(capsys.readouterr().out)
    assert [s["type"] for s in data["statements"]] == ["Open", "Click"]


def test_parse_reports_syntax_error(tmp_path, capsys):
    path = tmp_path / "bad.msl"
    path.write_text('open "https://x"\nextensions png\n', encoding="utf-8")

    assert cli.main(["parse", str(path)]) == cli.EXIT_USAGE
    err = capsys.readouterr().err
    assert f"{path}:2:1: syntax error:" in err


def test_parse_missing_file(tmp_path, capsys):
    assert cli.main(["parse", str(tmp_path / "nope.msl")]) == cli.EXIT_USAGE
    assert "Cannot read" in capsys.readouterr().err


def test_run_dry_run(script_file, gallery_pages, make_fetcher, monkeypatch, capsys):
    fetcher = make_fetcher(gallery_pages)
    monkeypatch.setattr(cli, "HttpFetcher", lambda **kwargs: fetcher)

    code = cli.main(["run", "--dry-run", "--max-concurrency", "2", str(script_file)])

    captured = capsys.readouterr()
    assert code == cli.EXIT_OK
    assert sorted(captured.out.splitlines()) == [
        "https://cdn.example.com/p1.png\t./out/1",
        "https://cdn.example.com/p2.png\t./out/2",
    ]
    assert "RUN SUMMARY" in captured.err
    assert "No errors encountered." in captured.err


def test_run_reports_failed_branches(script_file, gallery_pages, make_fetcher, monkeypatch, capsys):
    del gallery_pages["https://x/users/2"]
    fetcher = make_fetcher(gallery_pages)
    monkeypatch.setattr(cli, "HttpFetcher", lambda **kwargs: fetcher)

    assert cli.main(["run", "--dry-run", str(script_file)]) == cli.EXIT_PARTIAL
    err = capsys.readouterr().err
    assert "FetchFailed: 1" in err
    assert "https://x/a > .link > https://x/users/2" in err


def test_run_rejects_bad_concurrency(script_file, capsys):
    assert cli.main(["run", "--max-concurrency", "0", str(script_file)]) == cli.EXIT_USAGE
    assert "Configuration error" in capsys.readouterr().err
