"""Tests for top-K process ranking."""

import pytest

from bar_stats.ranker import TOP_K, BoundedBuffer, ProcessSample, rank, serialize


def _rank(table: dict[int, tuple[str | None, int | None]], k: int = TOP_K) -> list[ProcessSample]:
    return rank(
        table.keys(),
        metric_fn=lambda pid: table[pid][1],
        name_fn=lambda pid: table[pid][0],
        k=k,
    )


class TestRank:
    """Filtering, ordering and truncation."""

    def test_orders_and_excludes_zero(self) -> None:
        samples = _rank({1: ("A", 50), 2: ("B", 200), 3: ("C", 0), 4: ("D", 75)})
        assert [(s.name, s.metric) for s in samples] == [("B", 200), ("D", 75), ("A", 50)]

    def test_drops_unreadable(self) -> None:
        samples = _rank({1: ("A", None), 2: (None, 10), 3: ("", 10), 4: ("E", 5)})
        assert [s.name for s in samples] == ["E"]

    def test_drops_nan_and_negative_metrics(self) -> None:
        samples = _rank({1: ("A", float("nan")), 2: ("B", -3.0), 3: ("C", 2.5)})
        assert [s.name for s in samples] == ["C"]

    def test_drops_non_positive_pids(self) -> None:
        samples = _rank({0: ("kernel", 500), -1: ("bogus", 400), 7: ("real", 1)})
        assert [s.pid for s in samples] == [7]

    def test_truncates_to_k(self) -> None:
        table = {pid: (f"p{pid}", pid * 10) for pid in range(1, 16)}
        samples = _rank(table)
        assert len(samples) == TOP_K
        assert samples[0].metric == 150
        assert samples[-1].metric == 60

    def test_custom_k(self) -> None:
        table = {pid: (f"p{pid}", pid) for pid in range(1, 6)}
        assert [s.pid for s in _rank(table, k=2)] == [5, 4]

    def test_os_error_counts_as_unreadable(self) -> None:
        def metric(pid: int) -> int:
            if pid == 2:
                raise ProcessLookupError(pid)
            return 10

        samples = rank([1, 2, 3], metric, lambda pid: f"p{pid}")
        assert sorted(s.pid for s in samples) == [1, 3]

    def test_other_exceptions_propagate(self) -> None:
        def name(pid: int) -> str:
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError):
            rank([1], lambda pid: 1, name)

    def test_empty_population(self) -> None:
        assert rank([], lambda pid: 1, lambda pid: "x") == []


class TestBoundedBuffer:
    """Capacity-checked joining."""

    def test_joins_with_separator(self) -> None:
        buffer = BoundedBuffer(100, ",")
        assert buffer.extend(["1", "22", "333"]) == 3
        assert str(buffer) == "1,22,333"
        assert len(buffer) == 8

    def test_rejects_whole_item(self) -> None:
        buffer = BoundedBuffer(8, ";")
        assert buffer.append("abcd")
        assert not buffer.append("efgh")
        assert str(buffer) == "abcd"
        assert buffer.full

    def test_closed_after_first_rejection(self) -> None:
        buffer = BoundedBuffer(6, ";")
        buffer.append("abc")
        assert not buffer.append("toolong")
        assert not buffer.append("x")
        assert str(buffer) == "abc"

    def test_exact_fit(self) -> None:
        buffer = BoundedBuffer(7, ";")
        assert buffer.extend(["abc", "def"]) == 2
        assert str(buffer) == "abc;def"
        assert not buffer.full

    def test_counts_utf8_bytes(self) -> None:
        buffer = BoundedBuffer(3, ";")
        assert not buffer.append("éé")
        assert str(buffer) == ""


class TestSerialize:
    """name:metric pairs in a bounded buffer."""

    def test_pairs(self) -> None:
        samples = _rank({1: ("A", 50), 2: ("B", 200), 4: ("D", 75)})
        assert serialize(samples) == "B:200;D:75;A:50"

    def test_empty(self) -> None:
        assert serialize([]) == ""

    def test_stops_before_overflow(self) -> None:
        samples = [ProcessSample(metric=1, name="x" * 20, pid=i) for i in range(1, 4)]
        result = serialize(samples, capacity=50)
        assert result == ";".join(["x" * 20 + ":1"] * 2)

    def test_never_exceeds_capacity(self) -> None:
        samples = [
            ProcessSample(metric=10**15 + i, name="n" * 300, pid=i) for i in range(1, TOP_K + 1)
        ]
        result = serialize(samples)
        assert 0 < len(result.encode()) <= 2048
        # 317-byte pairs: six fit, the seventh would overflow
        pairs = result.split(";")
        assert len(pairs) == 6
        assert all(pair.startswith("n" * 300 + ":") for pair in pairs)

    def test_float_metric(self) -> None:
        assert ProcessSample(metric=1.5, name="a", pid=1).pair() == "a:1.50"
        assert ProcessSample(metric=3.0, name="a", pid=1).pair() == "a:3"
