# tests/pipeline/test_aggregate.py
from sheetflow.parallel.types import WorkerResult
from sheetflow.pipeline.aggregate import ResultAggregator, lost_worker_warning


def test_totals_sum_collected_results():
    agg = ResultAggregator(3)
    agg.collect(0, WorkerResult(4, 4, 0))
    agg.collect(2, WorkerResult(3, 2, 1))
    assert agg.pending == [1]
    agg.collect(1, WorkerResult(3, 3, 0))

    assert agg.complete
    assert agg.totals() == WorkerResult(10, 9, 1)


def test_lost_worker_contributes_zero_and_a_warning():
    agg = ResultAggregator(2)
    agg.collect(0, WorkerResult(5, 5, 0))
    agg.collect(1, None, "exit code 3")
    agg.collect(1, WorkerResult(9, 9, 0))  # late result ignored

    report = agg.report(1.5, ["extra"])
    assert (report.total_rows, report.success_rows, report.failed_rows) == (5, 5, 0)
    assert report.warnings == [lost_worker_warning(1, "exit code 3"), "extra"]
    assert report.duration == 1.5


def test_report_carries_skipped_and_lowest_invalid_row():
    agg = ResultAggregator(3)
    agg.collect(0, WorkerResult(4, 3, 0, skipped=1))
    agg.collect(1, WorkerResult(2, 1, 0, invalid_row=9, invalid_errors=("late",)))
    agg.collect(2, WorkerResult(2, 1, 0, invalid_row=4, invalid_errors=("early",)))

    totals = agg.totals()
    assert (totals.invalid_row, totals.invalid_errors) == (4, ("early",))
    assert agg.report(0.1).skipped_rows == 1
