import json

import pytest

from cli.cli import COMMANDS, create_parser, load_records


def test_load_records_accepts_list_and_wrapper(tmp_path):
    plain = tmp_path / "plain.json"
    plain.write_text(json.dumps([{"CNPJ": "12345678000190"}, "junk"]), encoding="utf-8")
    wrapped = tmp_path / "wrapped.json"
    wrapped.write_text(json.dumps({"leads": [{"tax_id": "98765432000110"}]}), encoding="utf-8")

    assert load_records(plain) == [{"CNPJ": "12345678000190"}]
    assert load_records(wrapped) == [{"tax_id": "98765432000110"}]


def test_load_records_rejects_scalars(tmp_path):
    path = tmp_path / "bad.json"
    path.write_text("42", encoding="utf-8")

    with pytest.raises(ValueError):
        load_records(path)


def test_parser_knows_every_command():
    parser = create_parser()

    args = parser.parse_args(["worker", "--max-jobs", "3"])
    assert args.command == "worker"
    assert args.max_jobs == 3

    args = parser.parse_args(["cleanup-jobs", "--days", "14"])
    assert args.days == 14

    assert set(COMMANDS) == {
        "ingest",
        "worker",
        "recalculate",
        "stats",
        "rate-limit",
        "cleanup-jobs",
        "recover-stalled",
    }
