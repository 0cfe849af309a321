"""Derived statistics over attendance, fee, test and chapter rows.

Every function here is pure: it takes rows that have already been scoped to
the caller's tenant and returns plain values. Rows may be ORM objects or
mappings. Empty input always yields zero-valued statistics.
"""
import math
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any

from .models import AttendanceStatus, PaymentStatus


def _get(row: Any, name: str, default: Any = None) -> Any:
    if isinstance(row, Mapping):
        return row.get(name, default)
    return getattr(row, name, default)


def _normalize_status(value: Any) -> str:
    if isinstance(value, (AttendanceStatus, PaymentStatus)):
        return value.value
    return str(value or "").strip().title()


def _to_decimal(value: Any) -> Decimal:
    if value is None:
        return Decimal("0")
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def percentage(part: float, whole: float) -> int:
    """Integer percent rounded half up; a zero denominator gives 0."""
    if not whole:
        return 0
    return int(math.floor(float(part) * 100 / float(whole) + 0.5))


def attendance_rate(present_count: int, total_rows: int) -> int:
    return percentage(present_count, total_rows)


@dataclass
class AttendanceStats:
    student_id: Any
    student_name: str = "Unknown"
    grade: str | None = None
    present: int = 0
    absent: int = 0
    absent_dates: list[str] = field(default_factory=list)

    @property
    def total(self) -> int:
        return self.present + self.absent

    @property
    def percentage(self) -> int:
        return attendance_rate(self.present, self.total)

    @property
    def absence_rate(self) -> int:
        return percentage(self.absent, self.total)

    def as_dict(self) -> dict[str, Any]:
        return {
            "student_id": self.student_id,
            "student_name": self.student_name,
            "grade": self.grade,
            "present": self.present,
            "absent": self.absent,
            "total": self.total,
            "percentage": self.percentage,
            "absence_rate": self.absence_rate,
            "absent_dates": list(self.absent_dates),
        }


def summarize_attendance(
    records: Iterable[Any],
    students: Sequence[Any] | None = None,
) -> list[AttendanceStats]:
    """Per-student present/absent counts.

    With ``students`` the result has one entry per student in that order,
    including students without any rows. Without it, entries appear in the
    order their first row was seen.
    """
    stats: dict[Any, AttendanceStats] = {}
    if students is not None:
        for student in students:
            student_id = _get(student, "id")
            stats[student_id] = AttendanceStats(
                student_id=student_id,
                student_name=_get(student, "name", "Unknown"),
                grade=_get(student, "grade"),
            )

    for record in records:
        student_id = _get(record, "student_id")
        entry = stats.get(student_id)
        if entry is None:
            if students is not None:
                continue
            entry = stats[student_id] = AttendanceStats(student_id=student_id)
        status = _normalize_status(_get(record, "status"))
        if status == AttendanceStatus.PRESENT.value:
            entry.present += 1
        elif status == AttendanceStatus.ABSENT.value:
            entry.absent += 1
            record_date = _get(record, "date")
            if record_date is not None:
                entry.absent_dates.append(str(record_date))

    for entry in stats.values():
        entry.absent_dates.sort()
    return list(stats.values())


def rank_absentees(stats: Sequence[AttendanceStats]) -> list[AttendanceStats]:
    # sorted() is stable, so equal rates keep their input order.
    return sorted(stats, key=lambda entry: entry.absence_rate, reverse=True)


@dataclass
class FeeTotals:
    total_amount: Decimal = Decimal("0")
    paid_amount: Decimal = Decimal("0")
    paid_count: int = 0
    unpaid_count: int = 0
    pending_count: int = 0

    @property
    def record_count(self) -> int:
        return self.paid_count + self.unpaid_count + self.pending_count

    @property
    def outstanding_amount(self) -> Decimal:
        return self.total_amount - self.paid_amount

    def as_dict(self) -> dict[str, Any]:
        return {
            "total_amount": self.total_amount,
            "paid_amount": self.paid_amount,
            "outstanding_amount": self.outstanding_amount,
            "paid_count": self.paid_count,
            "unpaid_count": self.unpaid_count,
            "pending_count": self.pending_count,
        }


def fee_totals(fees: Iterable[Any]) -> FeeTotals:
    totals = FeeTotals()
    for fee in fees:
        amount = _to_decimal(_get(fee, "amount"))
        status = _normalize_status(_get(fee, "payment_status"))
        totals.total_amount += amount
        if status == PaymentStatus.PAID.value:
            totals.paid_amount += amount
            totals.paid_count += 1
        elif status == PaymentStatus.PENDING.value:
            totals.pending_count += 1
        else:
            totals.unpaid_count += 1
    return totals


@dataclass
class ChapterCompletion:
    total_chapters: int = 0
    completed_chapters: int = 0

    @property
    def percentage(self) -> int:
        return percentage(self.completed_chapters, self.total_chapters)

    def as_dict(self) -> dict[str, Any]:
        return {
            "total_chapters": self.total_chapters,
            "completed_chapters": self.completed_chapters,
            "percentage": self.percentage,
        }


def chapter_completion(
    chapters: Iterable[Any],
    completed_chapter_ids: Iterable[Any],
    subject: str | None = None,
    grade: str | None = None,
) -> ChapterCompletion:
    """Completion over the chapters left after the subject/grade filter.

    The denominator is the filtered population, and only completions of
    chapters inside it are counted.
    """
    in_scope = {
        _get(chapter, "id")
        for chapter in chapters
        if (subject is None or _get(chapter, "subject") == subject)
        and (grade is None or _get(chapter, "grade") == grade)
    }
    completed = in_scope.intersection(completed_chapter_ids)
    return ChapterCompletion(total_chapters=len(in_scope), completed_chapters=len(completed))


def result_percentage(marks_obtained: Any, total_marks: Any) -> int:
    return percentage(_to_decimal(marks_obtained), _to_decimal(total_marks))


@dataclass
class ScoreSummary:
    total_tests: int = 0
    marks_obtained: Decimal = Decimal("0")
    max_marks: Decimal = Decimal("0")

    @property
    def average_percentage(self) -> int:
        return percentage(self.marks_obtained, self.max_marks)

    def as_dict(self) -> dict[str, Any]:
        return {
            "total_tests": self.total_tests,
            "marks_obtained": self.marks_obtained,
            "max_marks": self.max_marks,
            "average_percentage": self.average_percentage,
        }


def summarize_results(results: Iterable[Any]) -> ScoreSummary:
    """Totals over results; each row carries ``marks_obtained`` and ``total_marks``."""
    performance = ScoreSummary()
    for result in results:
        performance.total_tests += 1
        performance.marks_obtained += _to_decimal(_get(result, "marks_obtained"))
        performance.max_marks += _to_decimal(_get(result, "total_marks"))
    return performance


@dataclass
class DailySnapshot:
    total_students: int = 0
    present: int = 0
    absent: int = 0

    @property
    def attendance_rate(self) -> int:
        return percentage(self.present, self.total_students)

    def as_dict(self) -> dict[str, Any]:
        return {
            "total_students": self.total_students,
            "present": self.present,
            "absent": self.absent,
            "attendance_rate": self.attendance_rate,
        }


def daily_snapshot(total_students: int, records: Iterable[Any]) -> DailySnapshot:
    snapshot = DailySnapshot(total_students=total_students)
    for record in records:
        status = _normalize_status(_get(record, "status"))
        if status == AttendanceStatus.PRESENT.value:
            snapshot.present += 1
        elif status == AttendanceStatus.ABSENT.value:
            snapshot.absent += 1
    return snapshot


def presence_rate(records: Iterable[Any]) -> int:
    """Share of rows marked Present, the per-center rate used by analytics."""
    stats = daily_snapshot(0, records)
    return percentage(stats.present, stats.present + stats.absent)


def fee_payment_rate(fees: Iterable[Any]) -> int:
    totals = fee_totals(fees)
    return percentage(totals.paid_count, totals.record_count)


def monthly_attendance_counts(records: Iterable[Any]) -> list[dict[str, Any]]:
    buckets: dict[str, int] = {}
    for record in records:
        month = str(_get(record, "date") or "")[:7]
        if len(month) != 7:
            continue
        buckets[month] = buckets.get(month, 0) + 1
    return [{"month": month, "attendance": count} for month, count in sorted(buckets.items())]


def monthly_fee_counts(fees: Iterable[Any]) -> list[dict[str, Any]]:
    buckets: dict[str, dict[str, Any]] = {}
    for fee in fees:
        month = str(_get(fee, "month") or "")[:7]
        if len(month) != 7:
            continue
        bucket = buckets.setdefault(month, {"month": month, "paid": 0, "pending": 0})
        status = _normalize_status(_get(fee, "payment_status"))
        if status == PaymentStatus.PAID.value:
            bucket["paid"] += 1
        else:
            bucket["pending"] += 1
    return [buckets[month] for month in sorted(buckets)]
