import pytest

from orderqueue.v1.orders.completion import (
    classify_completion,
    has_progress,
    ledger_status,
    parse_progress,
)


def counters(total, completed=0, failed=0, remaining=0):
    return {
        "total": total,
        "completed": completed,
        "failed": failed,
        "remaining": remaining,
        "percent": round(100 * completed / total) if total else 0,
    }


@pytest.mark.parametrize("status", ["failed", "canceled"])
def test_failed_or_canceled_orders_are_complete(status):
    verdict = classify_completion({"status": status, "progress": {}})

    assert verdict.is_complete is True
    assert verdict.actual_status == status


@pytest.mark.parametrize("status", ["pending", "processing", None])
def test_orders_not_marked_completed_are_processing(status):
    verdict = classify_completion({"status": status})

    assert verdict.is_complete is False
    assert verdict.actual_status == "processing"


def test_completed_without_progress_trusts_upstream():
    verdict = classify_completion({"status": "completed"})

    assert verdict.is_complete is True
    assert verdict.actual_status == "completed"
    assert verdict.details == {"warning": "No progress data available"}


def test_completed_with_full_success():
    verdict = classify_completion(
        {
            "status": "completed",
            "progress": {
                "like": counters(10, completed=10),
                "save": counters(5, completed=5),
            },
        }
    )

    assert verdict.is_complete is True
    assert verdict.actual_status == "completed"
    assert set(verdict.details) == {"like", "save"}
    assert verdict.details["like"]["completed"] == 10


def test_completed_flag_with_remaining_work_is_still_processing():
    verdict = classify_completion(
        {
            "status": "completed",
            "progress": {
                "like": counters(10, completed=10),
                "comment": counters(4, completed=2, remaining=2),
            },
        }
    )

    assert verdict.is_complete is False
    assert verdict.actual_status == "processing"
    assert verdict.details["comment"]["remaining"] == 2


def test_nothing_delivered_yet_is_processing():
    verdict = classify_completion(
        {"status": "completed", "progress": {"like": counters(10, remaining=10)}}
    )

    assert verdict.is_complete is False
    assert verdict.actual_status == "processing"


def test_nothing_succeeded_means_failed():
    verdict = classify_completion(
        {
            "status": "completed",
            "progress": {
                "like": counters(10, failed=10),
                "save": counters(5, failed=5),
            },
        }
    )

    assert verdict.is_complete is True
    assert verdict.actual_status == "failed"


def test_mixed_outcome_is_completed_with_errors():
    verdict = classify_completion(
        {
            "status": "completed",
            "progress": {
                "like": counters(10, completed=10),
                "save": counters(5, failed=5),
            },
        }
    )

    assert verdict.is_complete is True
    assert verdict.actual_status == "completed_with_errors"


def test_mixed_outcome_within_one_category():
    verdict = classify_completion(
        {"status": "completed", "progress": {"like": counters(10, completed=7, failed=3)}}
    )

    assert verdict.actual_status == "completed_with_errors"


def test_categories_without_requests_are_ignored():
    verdict = classify_completion(
        {
            "status": "completed",
            "progress": {
                "like": counters(10, completed=10),
                "comment": counters(0),
            },
        }
    )

    assert verdict.actual_status == "completed"
    assert "comment" not in verdict.details


def test_inconclusive_counters_fall_back_to_upstream_status():
    # 8 of 10 delivered, nothing failed, nothing remaining
    verdict = classify_completion(
        {"status": "completed", "progress": {"like": counters(10, completed=8)}}
    )

    assert verdict.is_complete is True
    assert verdict.actual_status == "completed"


def test_empty_progress_object_counts_as_completed():
    verdict = classify_completion({"status": "completed", "progress": {}})

    assert verdict.is_complete is True
    assert verdict.actual_status == "completed"
    assert verdict.details == {}


def test_malformed_progress_raises_value_error():
    with pytest.raises(ValueError):
        classify_completion(
            {"status": "completed", "progress": {"like": {"total": -1}}}
        )

    with pytest.raises(ValueError):
        parse_progress(["like"])


def test_has_progress():
    assert has_progress(None) is False
    assert has_progress({}) is False
    assert has_progress({"like": counters(10)}) is False
    assert has_progress({"like": counters(10, completed=1, remaining=9)}) is True
    assert has_progress({"save": counters(5, failed=1, remaining=4)}) is True


def test_ledger_status_collapses_partial_success():
    assert ledger_status("completed_with_errors") == "completed"
    assert ledger_status("completed") == "completed"
    assert ledger_status("failed") == "failed"
    assert ledger_status("processing") == "processing"
