import argparse

import pytest

from slump_simulator import main, parse_payout


def test_cli_prints_summary(capsys):
    main(["--seed", "42", "--spins", "3000"])
    out = capsys.readouterr().out
    assert "【通常RUSH + LT】" in out
    assert "初当たり回数" in out
    assert "理論期待値" in out


def test_cli_detail_and_graph(capsys):
    main(["--seed", "7", "--spins", "2000", "--odds", "50", "--detail", "--graph"])
    out = capsys.readouterr().out
    assert "【当たり履歴】" in out
    assert "▶ 当たり1" in out
    assert "差玉収支スランプグラフ" in out
    assert "█" in out


def test_cli_lt_only_ignores_normal_table(capsys):
    main(["--mode", "lt_only", "--payout", "1500:50", "--upper-payout", "3000:100",
          "--seed", "1", "--spins", "500"])
    assert "【LT直行・LTのみ】" in capsys.readouterr().out


def test_cli_rejects_payout_table_not_totalling_100(capsys):
    with pytest.raises(SystemExit) as excinfo:
        main(["--payout", "1500:60", "--payout", "300:30"])
    assert excinfo.value.code == 2
    assert "通常RUSHの振り分けを100%にしてください" in capsys.readouterr().err


def test_cli_rejects_malformed_payout(capsys):
    with pytest.raises(SystemExit) as excinfo:
        main(["--payout", "1500"])
    assert excinfo.value.code == 2
    assert "出玉:率" in capsys.readouterr().err


@pytest.mark.parametrize("spins", ["0", "-100"])
def test_cli_rejects_non_positive_spins(spins, capsys):
    with pytest.raises(SystemExit) as excinfo:
        main(["--spins", spins])
    assert excinfo.value.code == 2
    assert "総回転数は1以上" in capsys.readouterr().err


def test_graph_marks_empty_cells(capsys):
    main(["--seed", "3", "--spins", "1000", "--graph"])
    graph = capsys.readouterr().out.split("差玉収支スランプグラフ")[1]
    assert "·" in graph
    assert "█" in graph


def test_parse_payout():
    assert parse_payout("1500:100") == (1500.0, 100.0)
    with pytest.raises(argparse.ArgumentTypeError):
        parse_payout("abc:def")
