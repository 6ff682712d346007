from __future__ import annotations

from datetime import UTC, datetime
from typing import Annotated, Any, Generic, TypeVar
from uuid import uuid4

from pydantic import AfterValidator, AliasChoices, BaseModel, BeforeValidator, ConfigDict
from pydantic import Field as PydanticField
from pydantic.alias_generators import to_camel
from pydantic_core import PydanticCustomError
from sqlalchemy import JSON, Column, Index, String, UniqueConstraint, text
from sqlmodel import Field, SQLModel

from artl_lims.domain.state_machine import (
    ServiceRequestStatus,
    TaskPriority,
    TaskStatus,
    TestbedStatus,
)
from artl_lims.infra.clock import as_utc


def now_utc() -> datetime:
    return datetime.now(UTC)


class EventRecord(SQLModel, table=True):
    __tablename__ = "events"

    event_id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    event_type: str = Field(index=True)
    ts: datetime = Field(default_factory=now_utc, index=True)
    actor_id: str | None = Field(default=None, index=True)
    payload: dict[str, Any] = Field(
        default_factory=dict,
        sa_column=Column(JSON, nullable=False),
    )


class Company(SQLModel, table=True):
    __tablename__ = "companies"

    id: int | None = Field(default=None, primary_key=True)
    name: str = Field(index=True)
    address: str | None = None
    phone: str | None = None
    email: str | None = None
    remarks: str | None = None
    created_at: datetime = Field(default_factory=now_utc, index=True)


class ContactPerson(SQLModel, table=True):
    __tablename__ = "contact_persons"

    id: int | None = Field(default=None, primary_key=True)
    company_id: int = Field(foreign_key="companies.id", index=True)
    name: str
    designation: str | None = None
    phone: str | None = None
    email: str
    created_at: datetime = Field(default_factory=now_utc, index=True)


class Employee(SQLModel, table=True):
    __tablename__ = "employees"
    __table_args__ = (UniqueConstraint("employee_code", name="uq_employees_employee_code"),)

    id: int | None = Field(default=None, primary_key=True)
    name: str = Field(index=True)
    designation: str | None = None
    email: str
    phone: str | None = None
    department: str | None = None
    employee_code: str | None = Field(default=None, index=True)
    created_at: datetime = Field(default_factory=now_utc, index=True)


class TestBed(SQLModel, table=True):
    __tablename__ = "test_beds"

    id: int | None = Field(default=None, primary_key=True)
    name: str = Field(index=True)
    description: str | None = None
    location: str | None = None
    # Kept in step with task state by the synchronizer; never recomputed on read.
    status: TestbedStatus = Field(default=TestbedStatus.AVAILABLE, sa_type=String(length=20), index=True)
    created_at: datetime = Field(default_factory=now_utc, index=True)
    updated_at: datetime = Field(default_factory=now_utc)


class ServiceRequest(SQLModel, table=True):
    __tablename__ = "service_requests"
    __table_args__ = (UniqueConstraint("job_card_number", name="uq_service_requests_job_card_number"),)

    id: int | None = Field(default=None, primary_key=True)
    job_card_number: str = Field(index=True)
    company_id: int = Field(foreign_key="companies.id", index=True)
    contact_person_id: int | None = Field(default=None, foreign_key="contact_persons.id", index=True)
    product_name: str
    product_description: str | None = None
    quantity: int | None = None
    test_type: str | None = None
    special_requirements: str | None = None
    status: ServiceRequestStatus = Field(
        default=ServiceRequestStatus.REQUESTED,
        sa_type=String(length=30),
        index=True,
    )
    requested_date: datetime | None = None
    agreed_date: datetime | None = None
    material_received_date: datetime | None = None
    testing_start_date: datetime | None = None
    testing_end_date: datetime | None = None
    completion_date: datetime | None = None
    assigned_employee_id: int | None = Field(default=None, foreign_key="employees.id", index=True)
    assigned_testbed_id: int | None = Field(default=None, foreign_key="test_beds.id", index=True)
    dc_number: str | None = None
    dc_verified: bool = Field(default=False)
    notes: str | None = None
    created_at: datetime = Field(default_factory=now_utc, index=True)
    updated_at: datetime = Field(default_factory=now_utc)


class TestbedTask(SQLModel, table=True):
    __tablename__ = "testbed_tasks"
    __table_args__ = (
        Index("ix_testbed_tasks_testbed_status", "testbed_id", "status"),
        Index(
            "uq_testbed_tasks_one_in_progress",
            "testbed_id",
            unique=True,
            sqlite_where=text("status = 'in_progress'"),
            postgresql_where=text("status = 'in_progress'"),
        ),
    )

    id: int | None = Field(default=None, primary_key=True)
    service_request_id: int = Field(foreign_key="service_requests.id", index=True)
    testbed_id: int = Field(foreign_key="test_beds.id", index=True)
    assigned_employee_id: int | None = Field(default=None, foreign_key="employees.id", index=True)
    status: TaskStatus = Field(default=TaskStatus.QUEUED, sa_type=String(length=20), index=True)
    priority: TaskPriority = Field(default=TaskPriority.NORMAL, sa_type=String(length=10), index=True)
    scheduled_start_date: datetime | None = Field(default=None, index=True)
    scheduled_end_date: datetime | None = Field(default=None, index=True)
    actual_start_date: datetime | None = None
    actual_end_date: datetime | None = None
    queue_position: int = Field(default=0)
    notes: str | None = None
    created_at: datetime = Field(default_factory=now_utc, index=True)
    updated_at: datetime = Field(default_factory=now_utc)


class TestbedTaskTransfer(SQLModel, table=True):
    """Immutable transfer record; outlives the task and both beds."""

    __tablename__ = "testbed_task_transfers"

    id: int | None = Field(default=None, primary_key=True)
    task_id: int = Field(index=True)
    from_testbed_id: int = Field(index=True)
    to_testbed_id: int = Field(index=True)
    reason: str
    transferred_by: str | None = None
    transferred_at: datetime = Field(default_factory=now_utc, index=True)
    notes: str | None = None


class StatusHistory(SQLModel, table=True):
    __tablename__ = "status_history"

    id: int | None = Field(default=None, primary_key=True)
    service_request_id: int = Field(foreign_key="service_requests.id", ondelete="CASCADE", index=True)
    status: str = Field(max_length=30, index=True)
    notes: str | None = None
    changed_by: str | None = None
    changed_at: datetime = Field(default_factory=now_utc, index=True)


class ActivityLog(SQLModel, table=True):
    __tablename__ = "activity_logs"
    __table_args__ = (Index("ix_activity_logs_entity", "entity_type", "entity_id"),)

    id: int | None = Field(default=None, primary_key=True)
    entity_type: str = Field(index=True)
    entity_id: int = Field(index=True)
    action: str = Field(index=True)
    field_name: str | None = None
    old_value: str | None = None
    new_value: str | None = None
    reason: str | None = None
    performed_by: str | None = None
    timestamp: datetime = Field(default_factory=now_utc, index=True)
    # "metadata" is reserved on declarative classes.
    meta: dict[str, Any] | None = Field(
        default=None,
        sa_column=Column("metadata", JSON, nullable=True),
    )


class EventEnvelope(BaseModel):
    event_id: str = PydanticField(default_factory=lambda: str(uuid4()))
    event_type: str
    ts: datetime = PydanticField(default_factory=now_utc)
    actor_id: str | None = None
    payload: dict[str, Any]


def blank_as_missing(value: Any) -> Any:
    if isinstance(value, str) and not value.strip():
        raise PydanticCustomError("missing", "Field required")
    return value


UtcDatetime = Annotated[datetime, AfterValidator(as_utc)]
RequiredStatus = Annotated[ServiceRequestStatus, BeforeValidator(blank_as_missing)]
ReadT = TypeVar("ReadT")


class ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ORMReadModel(ApiModel):
    model_config = ConfigDict(from_attributes=True)


class DeleteResult(ApiModel, Generic[ReadT]):
    message: str
    deleted_record: ReadT


class CompanyCreate(ApiModel):
    name: str
    address: str | None = None
    phone: str | None = None
    email: str | None = None
    remarks: str | None = None


class CompanyUpdate(ApiModel):
    name: str | None = None
    address: str | None = None
    phone: str | None = None
    email: str | None = None
    remarks: str | None = None


class CompanyRead(ORMReadModel):
    id: int
    name: str
    address: str | None
    phone: str | None
    email: str | None
    remarks: str | None
    created_at: UtcDatetime


class ContactPersonCreate(ApiModel):
    company_id: int
    name: str
    email: str
    designation: str | None = None
    phone: str | None = None


class ContactPersonUpdate(ApiModel):
    company_id: int | None = None
    name: str | None = None
    email: str | None = None
    designation: str | None = None
    phone: str | None = None


class ContactPersonRead(ORMReadModel):
    id: int
    company_id: int
    name: str
    designation: str | None
    phone: str | None
    email: str
    created_at: UtcDatetime


class EmployeeCreate(ApiModel):
    name: str
    email: str
    designation: str | None = None
    phone: str | None = None
    department: str | None = None
    employee_code: str | None = None


class EmployeeUpdate(ApiModel):
    name: str | None = None
    email: str | None = None
    designation: str | None = None
    phone: str | None = None
    department: str | None = None
    employee_code: str | None = None


class EmployeeRead(ORMReadModel):
    id: int
    name: str
    designation: str | None
    email: str
    phone: str | None
    department: str | None
    employee_code: str | None
    created_at: UtcDatetime


class TestBedCreate(ApiModel):
    name: str
    description: str | None = None
    location: str | None = None
    status: TestbedStatus = TestbedStatus.AVAILABLE


class TestBedUpdate(ApiModel):
    name: str | None = None
    description: str | None = None
    location: str | None = None
    status: TestbedStatus | None = None


class TestBedRead(ORMReadModel):
    id: int
    name: str
    description: str | None
    location: str | None
    status: TestbedStatus
    created_at: UtcDatetime
    updated_at: UtcDatetime


class TestbedTaskCreate(ApiModel):
    service_request_id: int
    testbed_id: int
    assigned_employee_id: int | None = None
    priority: TaskPriority = TaskPriority.NORMAL
    scheduled_start_date: UtcDatetime | None = None
    scheduled_end_date: UtcDatetime | None = None
    notes: str | None = None


class TestbedTaskUpdate(ApiModel):
    assigned_employee_id: int | None = None
    priority: TaskPriority | None = None
    scheduled_start_date: UtcDatetime | None = None
    scheduled_end_date: UtcDatetime | None = None
    queue_position: int | None = PydanticField(default=None, ge=1)
    notes: str | None = None
    status: TaskStatus | None = None


class TestbedTaskRead(ORMReadModel):
    id: int
    service_request_id: int
    testbed_id: int
    assigned_employee_id: int | None
    status: TaskStatus
    priority: TaskPriority
    scheduled_start_date: UtcDatetime | None
    scheduled_end_date: UtcDatetime | None
    actual_start_date: UtcDatetime | None
    actual_end_date: UtcDatetime | None
    queue_position: int
    notes: str | None
    created_at: UtcDatetime
    updated_at: UtcDatetime
    job_card_number: str | None = None


class TaskTransferRequest(ApiModel):
    to_testbed_id: int
    reason: str
    transferred_by: str | None = None
    notes: str | None = None


class TestbedTaskTransferRead(ORMReadModel):
    id: int
    task_id: int
    from_testbed_id: int
    to_testbed_id: int
    reason: str
    transferred_by: str | None
    transferred_at: UtcDatetime
    notes: str | None


class TaskTransferResult(TestbedTaskRead):
    transfer_details: TestbedTaskTransferRead


class TaskDeleteResult(ApiModel):
    message: str
    task: TestbedTaskRead


class ConflictCheckRequest(ApiModel):
    testbed_id: int
    scheduled_start_date: UtcDatetime
    scheduled_end_date: UtcDatetime
    employee_id: int | None = None
    exclude_task_id: int | None = None


class ConflictingTask(ORMReadModel):
    id: int
    service_request_id: int
    testbed_id: int
    assigned_employee_id: int | None
    status: TaskStatus
    priority: TaskPriority
    scheduled_start_date: UtcDatetime | None
    scheduled_end_date: UtcDatetime | None
    notes: str | None
    job_card_number: str | None = None


class ConflictCheckResult(ApiModel):
    conflicts: bool
    testbed_conflicts: list[ConflictingTask]
    employee_conflicts: list[ConflictingTask]
    message: str


class ServiceRequestCreate(ApiModel):
    job_card_number: str
    company_id: int
    product_name: str
    contact_person_id: int | None = None
    product_description: str | None = None
    quantity: int | None = None
    test_type: str | None = None
    special_requirements: str | None = None
    status: ServiceRequestStatus = ServiceRequestStatus.REQUESTED
    requested_date: UtcDatetime | None = None
    agreed_date: UtcDatetime | None = None
    material_received_date: UtcDatetime | None = None
    testing_start_date: UtcDatetime | None = None
    testing_end_date: UtcDatetime | None = None
    completion_date: UtcDatetime | None = None
    assigned_employee_id: int | None = None
    assigned_testbed_id: int | None = None
    dc_number: str | None = None
    dc_verified: bool = False
    notes: str | None = None


class ServiceRequestUpdate(ApiModel):
    job_card_number: str | None = None
    company_id: int | None = None
    product_name: str | None = None
    contact_person_id: int | None = None
    product_description: str | None = None
    quantity: int | None = None
    test_type: str | None = None
    special_requirements: str | None = None
    status: ServiceRequestStatus | None = None
    requested_date: UtcDatetime | None = None
    agreed_date: UtcDatetime | None = None
    material_received_date: UtcDatetime | None = None
    testing_start_date: UtcDatetime | None = None
    testing_end_date: UtcDatetime | None = None
    completion_date: UtcDatetime | None = None
    assigned_employee_id: int | None = None
    assigned_testbed_id: int | None = None
    dc_number: str | None = None
    dc_verified: bool | None = None
    notes: str | None = None


class ServiceRequestRead(ORMReadModel):
    id: int
    job_card_number: str
    company_id: int
    contact_person_id: int | None
    product_name: str
    product_description: str | None
    quantity: int | None
    test_type: str | None
    special_requirements: str | None
    status: ServiceRequestStatus
    requested_date: UtcDatetime | None
    agreed_date: UtcDatetime | None
    material_received_date: UtcDatetime | None
    testing_start_date: UtcDatetime | None
    testing_end_date: UtcDatetime | None
    completion_date: UtcDatetime | None
    assigned_employee_id: int | None
    assigned_testbed_id: int | None
    dc_number: str | None
    dc_verified: bool
    notes: str | None
    created_at: UtcDatetime
    updated_at: UtcDatetime


class ServiceRequestStatusChange(ApiModel):
    status: RequiredStatus
    notes: str | None = None
    changed_by: str | None = None


class StatusHistoryCreate(ApiModel):
    service_request_id: int
    status: str
    notes: str | None = None
    changed_by: str | None = None


class StatusHistoryUpdate(ApiModel):
    status: str | None = None
    notes: str | None = None
    changed_by: str | None = None


class StatusHistoryRead(ORMReadModel):
    id: int
    service_request_id: int
    status: str
    notes: str | None
    changed_by: str | None
    changed_at: UtcDatetime


class ActivityLogCreate(ApiModel):
    entity_type: str
    entity_id: int
    action: str
    field_name: str | None = None
    old_value: str | None = None
    new_value: str | None = None
    reason: str | None = None
    performed_by: str | None = None
    meta: dict[str, Any] | None = PydanticField(
        default=None,
        validation_alias=AliasChoices("metadata", "meta"),
    )


class ActivityLogRead(ORMReadModel):
    id: int
    entity_type: str
    entity_id: int
    action: str
    field_name: str | None
    old_value: str | None
    new_value: str | None
    reason: str | None
    performed_by: str | None
    timestamp: UtcDatetime
    meta: dict[str, Any] | None = PydanticField(
        default=None,
        validation_alias=AliasChoices("meta", "metadata"),
        serialization_alias="metadata",
    )


class JobCardNumberRead(ApiModel):
    next_job_card_number: str
    date: str
    sequence_number: int
