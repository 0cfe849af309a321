from datetime import date
from decimal import Decimal

from backend.tuition_module import aggregation
from backend.tuition_module.aggregation import AttendanceStats


def test_attendance_rate_is_zero_without_rows():
    assert aggregation.attendance_rate(0, 0) == 0


def test_attendance_rate_three_of_four():
    assert aggregation.attendance_rate(3, 4) == 75


def test_percentage_rounds_half_up():
    assert aggregation.percentage(1, 8) == 13
    assert aggregation.percentage(1, 3) == 33
    assert aggregation.percentage(2, 3) == 67
    assert aggregation.percentage(5, 0) == 0


def test_summarize_attendance_counts_per_student():
    students = [{"id": 1, "name": "Asha", "grade": "5"}, {"id": 2, "name": "Bikash", "grade": "5"}]
    records = [
        {"student_id": 1, "date": date(2025, 11, 4), "status": "Absent"},
        {"student_id": 1, "date": date(2025, 11, 3), "status": "Present"},
        {"student_id": 1, "date": date(2025, 11, 2), "status": "Absent"},
        {"student_id": 1, "date": date(2025, 11, 5), "status": "Late"},
        {"student_id": 99, "date": date(2025, 11, 5), "status": "Present"},
    ]

    stats = aggregation.summarize_attendance(records, students)

    assert [entry.student_id for entry in stats] == [1, 2]
    asha, bikash = stats
    assert (asha.present, asha.absent, asha.total) == (1, 2, 3)
    assert asha.percentage == 33
    assert asha.absent_dates == ["2025-11-02", "2025-11-04"]
    assert bikash.total == 0
    assert bikash.percentage == 0


def test_summarize_attendance_without_roster_keeps_first_seen_order():
    records = [
        {"student_id": 7, "status": "Present"},
        {"student_id": 3, "status": "absent"},
        {"student_id": 7, "status": "Present"},
    ]

    stats = aggregation.summarize_attendance(records)

    assert [entry.student_id for entry in stats] == [7, 3]
    assert stats[1].absent == 1


def test_rank_absentees_is_stable_on_ties():
    a = AttendanceStats(student_id="A", present=5, absent=5)
    b = AttendanceStats(student_id="B", present=2, absent=8)
    c = AttendanceStats(student_id="C", present=8, absent=8)

    ranking = aggregation.rank_absentees([a, b, c])

    assert [entry.student_id for entry in ranking] == ["B", "A", "C"]
    assert [entry.absence_rate for entry in ranking] == [80, 50, 50]


def test_fee_totals_empty_is_zero():
    totals = aggregation.fee_totals([])

    assert totals.total_amount == 0
    assert totals.paid_amount == 0
    assert totals.record_count == 0
    assert aggregation.fee_payment_rate([]) == 0


def test_fee_totals_sums_decimals_by_status():
    fees = [
        {"amount": Decimal("1500.50"), "payment_status": "Paid"},
        {"amount": Decimal("1200.25"), "payment_status": "Unpaid"},
        {"amount": "800", "payment_status": "Pending"},
        {"amount": Decimal("100.10"), "payment_status": "Paid"},
    ]

    totals = aggregation.fee_totals(fees)

    assert totals.total_amount == Decimal("3600.85")
    assert totals.paid_amount == Decimal("1600.60")
    assert totals.outstanding_amount == Decimal("2000.25")
    assert (totals.paid_count, totals.unpaid_count, totals.pending_count) == (2, 1, 1)
    assert aggregation.fee_payment_rate(fees) == 50


def test_chapter_completion_filters_before_counting():
    chapters = [
        {"id": 1, "subject": "Math", "grade": "5"},
        {"id": 2, "subject": "Math", "grade": "5"},
        {"id": 3, "subject": "Math", "grade": "6"},
        {"id": 4, "subject": "Science", "grade": "5"},
        {"id": 5, "subject": "Science", "grade": "5"},
    ]
    completed = [1, 4, 5]

    overall = aggregation.chapter_completion(chapters, completed)
    math = aggregation.chapter_completion(chapters, completed, subject="Math")
    math_grade_5 = aggregation.chapter_completion(chapters, completed, subject="Math", grade="5")

    assert (overall.completed_chapters, overall.total_chapters, overall.percentage) == (3, 5, 60)
    assert (math.completed_chapters, math.total_chapters, math.percentage) == (1, 3, 33)
    assert math_grade_5.percentage == 50
    assert aggregation.chapter_completion([], completed).percentage == 0


def test_summarize_results_weights_by_max_marks():
    results = [
        {"marks_obtained": Decimal("45"), "total_marks": 50},
        {"marks_obtained": Decimal("30"), "total_marks": 100},
    ]

    summary = aggregation.summarize_results(results)

    assert summary.total_tests == 2
    assert summary.average_percentage == 50
    assert aggregation.summarize_results([]).average_percentage == 0
    assert aggregation.result_percentage(Decimal("45"), 50) == 90


def test_daily_snapshot_rate_uses_students_in_scope():
    records = [{"status": "Present"}, {"status": "Present"}, {"status": "Present"}, {"status": "Absent"}]

    snapshot = aggregation.daily_snapshot(5, records)

    assert (snapshot.present, snapshot.absent) == (3, 1)
    assert snapshot.attendance_rate == 60
    assert aggregation.daily_snapshot(0, []).attendance_rate == 0


def test_monthly_counts_are_sorted_by_month():
    attendance = [
        {"date": date(2025, 12, 1)},
        {"date": date(2025, 11, 3)},
        {"date": date(2025, 11, 4)},
    ]
    fees = [
        {"month": "2025-12", "payment_status": "Paid"},
        {"month": "2025-11", "payment_status": "Pending"},
        {"month": "2025-11", "payment_status": "Paid"},
    ]

    assert aggregation.monthly_attendance_counts(attendance) == [
        {"month": "2025-11", "attendance": 2},
        {"month": "2025-12", "attendance": 1},
    ]
    assert aggregation.monthly_fee_counts(fees) == [
        {"month": "2025-11", "paid": 1, "pending": 1},
        {"month": "2025-12", "paid": 1, "pending": 0},
    ]
