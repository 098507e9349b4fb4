from src.jobs.stats_parser import StatRule, StatsParser, parse_design_stats


FLOW_LOG = """\
[1/4] Synthesis
  Cells: 255
  Area: 1234.5 um2
[3/4] Timing
  WNS: -0.12 ns
  Instances: 301
Flow completed in 42s
Duration: 42s
"""


def test_parse_extracts_known_fields():
    stats = parse_design_stats(FLOW_LOG)
    assert stats["cells"] == "255"
    assert stats["area"] == "1234.5 um2"
    assert stats["wns"] == "-0.12 ns"
    assert stats["instances"] == "301"
    assert stats["duration"] == "42s"
    assert stats["status"] == "completed"


def test_missing_lines_mean_missing_keys():
    stats = parse_design_stats("Synthesis started\nsomething odd happened\n")
    assert stats == {}


def test_empty_and_none_logs():
    assert parse_design_stats("") == {}
    assert parse_design_stats(None) == {}


def test_last_match_wins():
    stats = parse_design_stats("Cells: 10\nCells: 12\n")
    assert stats["cells"] == "12"


def test_prefix_must_start_the_trimmed_line():
    stats = parse_design_stats("Total Cells: 99\n   Cells: 7   \n")
    assert stats == {"cells": "7"}


def test_no_completion_marker_means_no_status():
    stats = parse_design_stats("Cells: 3\n")
    assert "status" not in stats


def test_custom_rules():
    parser = StatsParser(rules=[StatRule("LUTs:", "luts")])
    assert parser.parse("LUTs: 120\nCells: 5\n") == {"luts": "120"}
