import asyncio
import json

import pytest

from screenshooter import build_parser, main_async


def test_defaults():
    args = build_parser().parse_args(["-o", "shots"])
    assert args.output_dir == "shots"
    assert args.urls == []
    assert args.url_files == []
    assert args.num_concurrent == 5
    assert args.timeout_ms == 3800
    assert args.retry_delay_ms == 5000
    assert args.blank_threshold == 15
    assert not args.no_json


def test_url_arguments():
    args = build_parser().parse_args(
        ["-o", "shots", "-u", "http://a.example", "http://b.example", "-U", "list.txt", "-n", "2"]
    )
    assert args.urls == ["http://a.example", "http://b.example"]
    assert args.url_files == ["list.txt"]
    assert args.num_concurrent == 2


def test_output_dir_is_required():
    with pytest.raises(SystemExit):
        build_parser().parse_args(["-u", "http://a.example"])


@pytest.mark.parametrize("value", ["0", "-3", "many"])
def test_concurrency_must_be_positive(value):
    with pytest.raises(SystemExit):
        build_parser().parse_args(["-o", "shots", "-n", value])


def test_empty_run_prints_empty_json(tmp_path, capsys):
    url_file = tmp_path / "urls.txt"
    url_file.write_text("\n   \n", encoding="utf-8")
    args = build_parser().parse_args(["-o", str(tmp_path / "shots"), "-U", str(url_file)])

    asyncio.run(main_async(args))

    assert json.loads(capsys.readouterr().out) == []
    assert (tmp_path / "shots").is_dir()


def test_no_json_flag(tmp_path, capsys):
    args = build_parser().parse_args(["-o", str(tmp_path), "--no-json", "--results-file", str(tmp_path / "r.json")])

    asyncio.run(main_async(args))

    assert capsys.readouterr().out == ""
    assert json.loads((tmp_path / "r.json").read_text(encoding="utf-8")) == []


def test_missing_url_file_is_fatal(tmp_path):
    args = build_parser().parse_args(["-o", str(tmp_path), "-U", str(tmp_path / "missing.txt")])
    with pytest.raises(FileNotFoundError):
        asyncio.run(main_async(args))
