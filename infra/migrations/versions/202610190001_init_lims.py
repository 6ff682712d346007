"""init lims tables

Revision ID: 202610190001
Revises:
Create Date: 2026-10-19
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "202610190001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "events",
        sa.Column("event_id", sa.String(), nullable=False),
        sa.Column("event_type", sa.String(), nullable=False),
        sa.Column("ts", sa.DateTime(timezone=True), nullable=False),
        sa.Column("actor_id", sa.String(), nullable=True),
        sa.Column("payload", sa.JSON(), nullable=False),
        sa.PrimaryKeyConstraint("event_id"),
    )
    op.create_index("ix_events_event_type", "events", ["event_type"])
    op.create_index("ix_events_ts", "events", ["ts"])
    op.create_index("ix_events_actor_id", "events", ["actor_id"])

    op.create_table(
        "companies",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("address", sa.String(), nullable=True),
        sa.Column("phone", sa.String(), nullable=True),
        sa.Column("email", sa.String(), nullable=True),
        sa.Column("remarks", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_companies_name", "companies", ["name"])
    op.create_index("ix_companies_created_at", "companies", ["created_at"])

    op.create_table(
        "contact_persons",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("company_id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("designation", sa.String(), nullable=True),
        sa.Column("phone", sa.String(), nullable=True),
        sa.Column("email", sa.String(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["company_id"], ["companies.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_contact_persons_company_id", "contact_persons", ["company_id"])
    op.create_index("ix_contact_persons_created_at", "contact_persons", ["created_at"])

    op.create_table(
        "employees",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("designation", sa.String(), nullable=True),
        sa.Column("email", sa.String(), nullable=False),
        sa.Column("phone", sa.String(), nullable=True),
        sa.Column("department", sa.String(), nullable=True),
        sa.Column("employee_code", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("employee_code", name="uq_employees_employee_code"),
    )
    op.create_index("ix_employees_name", "employees", ["name"])
    op.create_index("ix_employees_employee_code", "employees", ["employee_code"])
    op.create_index("ix_employees_created_at", "employees", ["created_at"])

    op.create_table(
        "test_beds",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("description", sa.String(), nullable=True),
        sa.Column("location", sa.String(), nullable=True),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_test_beds_name", "test_beds", ["name"])
    op.create_index("ix_test_beds_status", "test_beds", ["status"])
    op.create_index("ix_test_beds_created_at", "test_beds", ["created_at"])

    op.create_table(
        "service_requests",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("job_card_number", sa.String(), nullable=False),
        sa.Column("company_id", sa.Integer(), nullable=False),
        sa.Column("contact_person_id", sa.Integer(), nullable=True),
        sa.Column("product_name", sa.String(), nullable=False),
        sa.Column("product_description", sa.String(), nullable=True),
        sa.Column("quantity", sa.Integer(), nullable=True),
        sa.Column("test_type", sa.String(), nullable=True),
        sa.Column("special_requirements", sa.String(), nullable=True),
        sa.Column("status", sa.String(length=30), nullable=False),
        sa.Column("requested_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("agreed_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("material_received_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("testing_start_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("testing_end_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completion_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("assigned_employee_id", sa.Integer(), nullable=True),
        sa.Column("assigned_testbed_id", sa.Integer(), nullable=True),
        sa.Column("dc_number", sa.String(), nullable=True),
        sa.Column("dc_verified", sa.Boolean(), nullable=False),
        sa.Column("notes", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["company_id"], ["companies.id"]),
        sa.ForeignKeyConstraint(["contact_person_id"], ["contact_persons.id"]),
        sa.ForeignKeyConstraint(["assigned_employee_id"], ["employees.id"]),
        sa.ForeignKeyConstraint(["assigned_testbed_id"], ["test_beds.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("job_card_number", name="uq_service_requests_job_card_number"),
    )
    op.create_index("ix_service_requests_job_card_number", "service_requests", ["job_card_number"])
    op.create_index("ix_service_requests_company_id", "service_requests", ["company_id"])
    op.create_index("ix_service_requests_contact_person_id", "service_requests", ["contact_person_id"])
    op.create_index("ix_service_requests_status", "service_requests", ["status"])
    op.create_index("ix_service_requests_assigned_employee_id", "service_requests", ["assigned_employee_id"])
    op.create_index("ix_service_requests_assigned_testbed_id", "service_requests", ["assigned_testbed_id"])
    op.create_index("ix_service_requests_created_at", "service_requests", ["created_at"])

    op.create_table(
        "testbed_tasks",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("service_request_id", sa.Integer(), nullable=False),
        sa.Column("testbed_id", sa.Integer(), nullable=False),
        sa.Column("assigned_employee_id", sa.Integer(), nullable=True),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("priority", sa.String(length=10), nullable=False),
        sa.Column("scheduled_start_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("scheduled_end_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("actual_start_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("actual_end_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("queue_position", sa.Integer(), nullable=False),
        sa.Column("notes", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["service_request_id"], ["service_requests.id"]),
        sa.ForeignKeyConstraint(["testbed_id"], ["test_beds.id"]),
        sa.ForeignKeyConstraint(["assigned_employee_id"], ["employees.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_testbed_tasks_service_request_id", "testbed_tasks", ["service_request_id"])
    op.create_index("ix_testbed_tasks_testbed_id", "testbed_tasks", ["testbed_id"])
    op.create_index("ix_testbed_tasks_assigned_employee_id", "testbed_tasks", ["assigned_employee_id"])
    op.create_index("ix_testbed_tasks_status", "testbed_tasks", ["status"])
    op.create_index("ix_testbed_tasks_priority", "testbed_tasks", ["priority"])
    op.create_index("ix_testbed_tasks_scheduled_start_date", "testbed_tasks", ["scheduled_start_date"])
    op.create_index("ix_testbed_tasks_scheduled_end_date", "testbed_tasks", ["scheduled_end_date"])
    op.create_index("ix_testbed_tasks_created_at", "testbed_tasks", ["created_at"])
    op.create_index("ix_testbed_tasks_testbed_status", "testbed_tasks", ["testbed_id", "status"])
    op.create_index(
        "uq_testbed_tasks_one_in_progress",
        "testbed_tasks",
        ["testbed_id"],
        unique=True,
        sqlite_where=sa.text("status = 'in_progress'"),
        postgresql_where=sa.text("status = 'in_progress'"),
    )

    op.create_table(
        "testbed_task_transfers",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("task_id", sa.Integer(), nullable=False),
        sa.Column("from_testbed_id", sa.Integer(), nullable=False),
        sa.Column("to_testbed_id", sa.Integer(), nullable=False),
        sa.Column("reason", sa.String(), nullable=False),
        sa.Column("transferred_by", sa.String(), nullable=True),
        sa.Column("transferred_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("notes", sa.String(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_testbed_task_transfers_task_id", "testbed_task_transfers", ["task_id"])
    op.create_index("ix_testbed_task_transfers_from_testbed_id", "testbed_task_transfers", ["from_testbed_id"])
    op.create_index("ix_testbed_task_transfers_to_testbed_id", "testbed_task_transfers", ["to_testbed_id"])
    op.create_index("ix_testbed_task_transfers_transferred_at", "testbed_task_transfers", ["transferred_at"])

    op.create_table(
        "status_history",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("service_request_id", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(length=30), nullable=False),
        sa.Column("notes", sa.String(), nullable=True),
        sa.Column("changed_by", sa.String(), nullable=True),
        sa.Column("changed_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["service_request_id"], ["service_requests.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_status_history_service_request_id", "status_history", ["service_request_id"])
    op.create_index("ix_status_history_status", "status_history", ["status"])
    op.create_index("ix_status_history_changed_at", "status_history", ["changed_at"])

    op.create_table(
        "activity_logs",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("entity_type", sa.String(), nullable=False),
        sa.Column("entity_id", sa.Integer(), nullable=False),
        sa.Column("action", sa.String(), nullable=False),
        sa.Column("field_name", sa.String(), nullable=True),
        sa.Column("old_value", sa.String(), nullable=True),
        sa.Column("new_value", sa.String(), nullable=True),
        sa.Column("reason", sa.String(), nullable=True),
        sa.Column("performed_by", sa.String(), nullable=True),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
        sa.Column("metadata", sa.JSON(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_activity_logs_entity_type", "activity_logs", ["entity_type"])
    op.create_index("ix_activity_logs_entity_id", "activity_logs", ["entity_id"])
    op.create_index("ix_activity_logs_action", "activity_logs", ["action"])
    op.create_index("ix_activity_logs_timestamp", "activity_logs", ["timestamp"])
    op.create_index("ix_activity_logs_entity", "activity_logs", ["entity_type", "entity_id"])


def downgrade() -> None:
    op.drop_table("activity_logs")
    op.drop_table("status_history")
    op.drop_table("testbed_task_transfers")
    op.drop_index("uq_testbed_tasks_one_in_progress", table_name="testbed_tasks")
    op.drop_table("testbed_tasks")
    op.drop_table("service_requests")
    op.drop_table("test_beds")
    op.drop_table("employees")
    op.drop_table("contact_persons")
    op.drop_table("companies")
    op.drop_table("events")
