from datetime import date, datetime
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from .models import AttendanceStatus, PaymentStatus, UserRole


MONTH_PATTERN = r"^\d{4}-(0[1-9]|1[0-2])$"


# Function payloads keep their fields optional so the services can report
# missing values with their own messages.
class AuthLoginRequest(BaseModel):
    username: str | None = None
    password: str | None = None


class ChangePasswordRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    current_password: str | None = Field(default=None, alias="currentPassword")
    new_password: str | None = Field(default=None, alias="newPassword")
    user_id: int | str | None = Field(default=None, alias="userId")


class CreateParentAccountRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    username: str | None = None
    password: str | None = None
    student_id: int | None = Field(default=None, alias="studentId")


class UserOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    username: str
    role: UserRole
    center_id: int | None = None
    student_id: int | None = None
    is_active: bool
    last_login: datetime | None = None
    created_at: datetime


class StudentCreateRequest(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    grade: str = Field(min_length=1, max_length=32)
    school_name: str = Field(min_length=1, max_length=255)
    parent_name: str = Field(min_length=1, max_length=255)
    contact_number: str = Field(pattern=r"^\d{10}$")
    center_id: int | None = None


class StudentUpdateRequest(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=255)
    grade: str | None = Field(default=None, min_length=1, max_length=32)
    school_name: str | None = Field(default=None, min_length=1, max_length=255)
    parent_name: str | None = Field(default=None, min_length=1, max_length=255)
    contact_number: str | None = Field(default=None, pattern=r"^\d{10}$")


class StudentBulkRequest(BaseModel):
    rows: list[dict[str, Any]]
    center_id: int | None = None
    dry_run: bool = False


class StudentOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    grade: str
    school_name: str
    parent_name: str
    contact_number: str
    center_id: int | None = None
    created_at: datetime


class AttendanceEntry(BaseModel):
    student_id: int
    status: AttendanceStatus
    time_in: str | None = Field(default=None, max_length=16)
    time_out: str | None = Field(default=None, max_length=16)


class AttendanceSetRequest(BaseModel):
    entries: list[AttendanceEntry] = Field(min_length=1)


class FeeUpsertRequest(BaseModel):
    student_id: int
    month: str = Field(pattern=MONTH_PATTERN)
    amount: Decimal = Field(ge=0, max_digits=10, decimal_places=2)
    due_date: int = Field(default=1, ge=1, le=30)
    payment_status: PaymentStatus = PaymentStatus.UNPAID
    remarks: str | None = None


class TestCreateRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str = Field(min_length=1, max_length=255)
    subject: str = Field(min_length=1, max_length=120)
    test_date: date = Field(alias="date")
    total_marks: int = Field(gt=0)
    grade: str | None = Field(default=None, max_length=32)
    uploaded_file_url: str | None = None
    extracted_text: str | None = None
    center_id: int | None = None


class TestResultCreateRequest(BaseModel):
    student_id: int
    marks_obtained: Decimal = Field(ge=0, max_digits=8, decimal_places=2)
    date_taken: date
    notes: str | None = None


class BulkMarkEntry(BaseModel):
    student_id: int
    marks_obtained: Decimal = Field(ge=0, max_digits=8, decimal_places=2)
    notes: str | None = None


class BulkMarksRequest(BaseModel):
    date_taken: date
    results: list[BulkMarkEntry] = Field(min_length=1)


class ChapterRecordRequest(BaseModel):
    subject: str = Field(min_length=1, max_length=120)
    chapter_name: str = Field(min_length=1, max_length=255)
    grade: str | None = Field(default=None, max_length=32)
    date_taught: date
    notes: str | None = None
    student_ids: list[int] = Field(min_length=1)
    center_id: int | None = None


class FeatureToggleUpdateRequest(BaseModel):
    enabled: bool


class FeatureToggleOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    feature_name: str
    enabled: bool
    description: str | None = None
    updated_at: datetime


class CenterCreateRequest(BaseModel):
    center_name: str = Field(min_length=2, max_length=255)
    address: str | None = Field(default=None, max_length=255)
    contact_number: str | None = Field(default=None, max_length=32)
    username: str = Field(min_length=3, max_length=255)
    password: str = Field(min_length=1)


class CenterUpdateRequest(BaseModel):
    center_name: str | None = Field(default=None, min_length=2, max_length=255)
    address: str | None = Field(default=None, max_length=255)
    contact_number: str | None = Field(default=None, max_length=32)


class CenterOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    center_name: str
    address: str | None = None
    contact_number: str | None = None
    created_at: datetime
    users: list[UserOut] = []


class UserActiveRequest(BaseModel):
    is_active: bool
