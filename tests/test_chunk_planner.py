from __future__ import annotations

import pytest

from assistant.analysis.models import FileEntry, RawFile
from assistant.analysis.planner import (
    PACKING_NEXT_FIT,
    SKIP_REASON_OVERSIZE,
    ChunkPlanner,
    analyze_basic_structure,
    build_file_entries,
    detect_technologies,
    estimate_tokens,
    file_priority,
    filter_relevant_files,
)
from assistant.errors import InvalidRequestError


def _entry(path: str, tokens: int) -> FileEntry:
    return FileEntry(path=path, content="x", size_bytes=1, estimated_tokens=tokens, priority=file_priority(path))


def test_estimate_tokens_rounds_up() -> None:
    assert estimate_tokens("") == 0
    assert estimate_tokens(None) == 0
    assert estimate_tokens("abc") == 1
    assert estimate_tokens("a" * 7) == 2
    assert estimate_tokens("a" * 8) == 3


def test_priority_ranks_manifests_over_sources_over_docs() -> None:
    assert file_priority("package.json") == 100
    assert file_priority("Dockerfile") == 95
    assert file_priority("docker-compose.yml") == 90
    assert file_priority("src/index.ts") == 75
    assert file_priority("src/app.py") == 70
    assert file_priority("src/util.ts") == 50
    assert file_priority("src/util.py") == 45
    assert file_priority("README.md") == 25
    assert file_priority("docs/guide.md") == 20
    assert file_priority("data/fixtures.json") == 15
    assert file_priority("scripts/run.sh") == 10


def test_mixed_priorities_fill_first_chunk_then_spill() -> None:
    """package.json + README share chunk 0; index.ts (exactly the budget) is alone in chunk 1."""
    planner = ChunkPlanner(reserve_tokens=1000)
    files = [_entry("README.md", 200), _entry("index.ts", 4000), _entry("package.json", 50)]

    plan = planner.plan(files, max_tokens_per_chunk=5000)

    assert plan.effective_budget == 4000
    assert [[f.path for f in c.files] for c in plan.chunks] == [["package.json", "README.md"], ["index.ts"]]
    assert [c.estimated_tokens for c in plan.chunks] == [250, 4000]
    assert plan.skipped == []


def test_next_fit_closes_chunk_on_first_miss() -> None:
    planner = ChunkPlanner(reserve_tokens=1000, packing=PACKING_NEXT_FIT)
    files = [_entry("package.json", 50), _entry("index.ts", 4000), _entry("README.md", 200)]

    plan = planner.plan(files, max_tokens_per_chunk=5000)

    assert [[f.path for f in c.files] for c in plan.chunks] == [["package.json"], ["index.ts"], ["README.md"]]



def test_packing_strategy_comes_from_env(monkeypatch) -> None:
    from assistant.analysis.config import load_analysis_config

    files = [_entry("package.json", 50), _entry("index.ts", 4000), _entry("README.md", 200)]
    monkeypatch.setenv("ANALYSIS_RESERVE_TOKENS", "1000")

    monkeypatch.setenv("ANALYSIS_PACKING", "next_fit")
    assert len(ChunkPlanner.from_config(load_analysis_config()).plan(files, 5000).chunks) == 3

    monkeypatch.setenv("ANALYSIS_PACKING", "best_fit")
    planner = ChunkPlanner.from_config(load_analysis_config())
    assert planner.packing == "first_fit"
    assert len(planner.plan(files, 5000).chunks) == 2

def test_every_file_is_placed_once_or_skipped_and_chunks_fit_budget() -> None:
    planner = ChunkPlanner(reserve_tokens=100, chunk_overhead_tokens=50)
    sizes = [300, 120, 900, 40, 450, 600, 2000, 75, 330, 10]
    files = [_entry(f"src/m{i}.py", n) for i, n in enumerate(sizes)]

    plan = planner.plan(files, max_tokens_per_chunk=1000)

    placed = [f.path for c in plan.chunks for f in c.files]
    skipped = [s.path for s in plan.skipped]
    assert sorted(placed + skipped) == sorted(f.path for f in files)
    assert len(set(placed)) == len(placed)
    for c in plan.chunks:
        assert c.files
        assert c.estimated_tokens <= plan.effective_budget
        assert c.estimated_tokens == sum(f.estimated_tokens for f in c.files) + 50
    assert [c.index for c in plan.chunks] == list(range(len(plan.chunks)))


def test_oversized_file_is_skipped_not_placed() -> None:
    planner = ChunkPlanner(reserve_tokens=0)
    plan = planner.plan([_entry("big.py", 1001), _entry("small.py", 10)], max_tokens_per_chunk=1000)

    assert [s.path for s in plan.skipped] == ["big.py"]
    assert plan.skipped[0].reason == SKIP_REASON_OVERSIZE
    assert [f.path for c in plan.chunks for f in c.files] == ["small.py"]


def test_plan_is_deterministic_for_same_input() -> None:
    planner = ChunkPlanner(reserve_tokens=0)
    files = [_entry(f"src/f{i}.ts", 100 + (i * 37) % 300) for i in range(25)]

    a = planner.plan(files, max_tokens_per_chunk=1000)
    b = planner.plan(list(reversed(files)), max_tokens_per_chunk=1000)

    assert a.model_dump() == b.model_dump()


def test_max_files_per_chunk_caps_chunk_size() -> None:
    planner = ChunkPlanner(reserve_tokens=0, max_files_per_chunk=2)
    plan = planner.plan([_entry(f"f{i}.py", 1) for i in range(5)], max_tokens_per_chunk=1000)

    assert [len(c.files) for c in plan.chunks] == [2, 2, 1]


def test_budget_without_room_is_rejected() -> None:
    with pytest.raises(InvalidRequestError):
        ChunkPlanner(reserve_tokens=20_000).plan([_entry("a.py", 1)], max_tokens_per_chunk=20_000)


def test_empty_input_yields_no_chunks() -> None:
    plan = ChunkPlanner(reserve_tokens=0).plan([], max_tokens_per_chunk=1000)
    assert plan.chunks == []
    assert plan.skipped == []


def test_filter_drops_excluded_empty_and_binary_files() -> None:
    files = [
        RawFile(path="src/app.py", content="print(1)"),
        RawFile(path="node_modules/lib/index.js", content="x"),
        RawFile(path="dist/bundle.js", content="x"),
        RawFile(path="assets/logo.png", content="\x89PNG"),
        RawFile(path="src/empty.ts", content=""),
        RawFile(path="src/missing.ts", content=None),
        RawFile(path="Dockerfile", content="FROM python:3.12"),
        RawFile(path="Makefile", content="all:"),
    ]

    kept = [f.path for f in filter_relevant_files(files)]

    assert kept == ["src/app.py", "Dockerfile", "Makefile"]


def test_filter_honours_custom_exclude_patterns() -> None:
    files = [RawFile(path="legacy/old.py", content="x"), RawFile(path="node_modules/a.js", content="x")]

    kept = [f.path for f in filter_relevant_files(files, ["legacy"])]

    assert kept == ["node_modules/a.js"]


def test_build_file_entries_adds_per_file_overhead() -> None:
    [entry] = build_file_entries([RawFile(path="a.py", content="a" * 35)], file_overhead_tokens=200)
    assert entry.estimated_tokens == 10 + 200
    assert entry.size_bytes == 35
    assert entry.priority == 45


def test_detect_technologies_and_structure() -> None:
    paths = [
        "package.json",
        "src/index.ts",
        "src/auth/login.ts",
        "tests/app.test.js",
        ".github/workflows/ci.yml",
        "Dockerfile",
        "README.md",
    ]

    assert detect_technologies(paths) == ["Node.js", "TypeScript", "JavaScript", "Docker"]

    s = analyze_basic_structure(paths)
    assert s.has_tests is True
    assert s.has_documentation is True
    assert s.has_security_files is True
    assert s.has_cicd is True
    assert s.main_directories[:3] == ["package.json", "src", "tests"]
    dumped = s.model_dump(by_alias=True)
    assert dumped["hasCICD"] is True
    assert "mainDirectories" in dumped
