"""Tests for report grouping and ordering"""
import random
from pathlib import Path

from git_compare.core import RepoInfo, ReportGroup, StatusFlags, aggregate_report


CLEAN = StatusFlags.CLEAN_AND_UP_TO_DATE
UNCOMMITTED = StatusFlags.UNCOMMITTED_CHANGES
INCOMING = StatusFlags.INCOMING_CHANGES
OUTGOING = StatusFlags.OUTGOING_CHANGES


def repo(name, status, branch="main"):
    return RepoInfo(Path("/src") / name, name, branch, status)


def test_groups_by_status_most_severe_first():
    groups = aggregate_report([repo("c", CLEAN), repo("b", UNCOMMITTED), repo("a", CLEAN)])

    assert len(groups) == 2
    assert [g.status for g in groups] == [UNCOMMITTED, CLEAN]
    assert [r.name for r in groups[0].repos] == ["b"]
    assert [r.name for r in groups[1].repos] == ["a", "c"]


def test_sorted_by_branch_then_name():
    repos = [
        repo("zeta", OUTGOING, branch="develop"),
        repo("beta", OUTGOING, branch="main"),
        repo("alpha", OUTGOING, branch="main"),
        repo("gamma", OUTGOING, branch="feature/x"),
    ]

    (group,) = aggregate_report(repos)

    assert [(r.branch, r.name) for r in group.repos] == [
        ("develop", "zeta"),
        ("feature/x", "gamma"),
        ("main", "alpha"),
        ("main", "beta"),
    ]


def test_ordinal_comparison():
    # Uppercase sorts before lowercase in code point order
    (group,) = aggregate_report([repo("b", CLEAN), repo("B", CLEAN), repo("a", CLEAN)])

    assert [r.name for r in group.repos] == ["B", "a", "b"]


def test_total_order_over_all_combinations():
    repos = [repo(f"r{value}", StatusFlags(value)) for value in range(8)]
    random.Random(7).shuffle(repos)

    groups = aggregate_report(repos)

    assert [int(g.status) for g in groups] == [7, 6, 5, 4, 3, 2, 1, 0]
    assert groups[0].label == "Uncommitted changes, incoming changes, outgoing changes"
    assert groups[-1].label == "Clean and up to date"


def test_any_uncommitted_combination_ranks_above_remote_only_states():
    groups = aggregate_report(
        [
            repo("both-remote", INCOMING | OUTGOING),
            repo("dirty-ahead", UNCOMMITTED | OUTGOING),
            repo("dirty", UNCOMMITTED),
        ]
    )

    assert [g.repos[0].name for g in groups] == ["dirty-ahead", "dirty", "both-remote"]


def test_deterministic_regardless_of_input_order(sample_repos):
    expected = aggregate_report(sample_repos)

    for seed in range(5):
        shuffled = list(sample_repos)
        random.Random(seed).shuffle(shuffled)
        assert aggregate_report(shuffled) == expected


def test_every_repository_appears_once(sample_repos):
    groups = aggregate_report(sample_repos)

    names = [r.name for g in groups for r in g.repos]
    assert sorted(names) == sorted(r.name for r in sample_repos)


def test_empty_input():
    assert aggregate_report([]) == []


def test_group_to_dict():
    group = ReportGroup(OUTGOING, (repo("a", OUTGOING),))

    assert group.to_dict() == {
        "status": 1,
        "label": "Outgoing changes",
        "repositories": [{"path": str(Path("/src/a")), "name": "a", "branch": "main"}],
    }
