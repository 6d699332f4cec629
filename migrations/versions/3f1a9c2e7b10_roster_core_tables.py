"""roster core tables (patterns, crew time windows, periods, slots, reconciliation)

Revision ID: 3f1a9c2e7b10
Revises:
Create Date: 2026-10-12 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '3f1a9c2e7b10'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _audit_columns():
    return [
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.Column('created_by', sa.String(length=64), nullable=False),
        sa.Column('updated_by', sa.String(length=64), nullable=True),
    ]


def _review_columns():
    return [
        sa.Column('reviewed_by', sa.String(length=64), nullable=True),
        sa.Column('reviewed_at', sa.DateTime(), nullable=True),
        sa.Column('review_note', sa.Text(), nullable=True),
    ]


def upgrade() -> None:
    # --- pattern catalog ---
    op.create_table(
        'schedule_patterns',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('name', sa.String(length=80), nullable=False),
        sa.Column('mode', sa.String(length=20), nullable=False),
        sa.Column('cycle_length', sa.SmallInteger(), nullable=True),
        sa.Column('weeks_in_cycle', sa.SmallInteger(), nullable=True),
        sa.Column('required_headcount', sa.SmallInteger(), nullable=False),
        sa.Column('active', sa.Boolean(), nullable=False),
        sa.Column('notes', sa.Text(), nullable=True),
        *_audit_columns(),
        sa.CheckConstraint('required_headcount >= 1', name='ck_pattern_headcount'),
        sa.UniqueConstraint('name'),
    )
    op.create_table(
        'schedule_pattern_positions',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('pattern_id', sa.Integer(), sa.ForeignKey('schedule_patterns.id', ondelete='CASCADE'), nullable=False),
        sa.Column('position', sa.SmallInteger(), nullable=False),
        sa.Column('status', sa.String(length=4), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('created_by', sa.String(length=64), nullable=False),
        sa.UniqueConstraint('pattern_id', 'position', name='uq_pattern_position'),
    )
    op.create_index('ix_schedule_pattern_positions_pattern_id', 'schedule_pattern_positions', ['pattern_id'])
    op.create_table(
        'schedule_pattern_week_masks',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('pattern_id', sa.Integer(), sa.ForeignKey('schedule_patterns.id', ondelete='CASCADE'), nullable=False),
        sa.Column('week_index', sa.SmallInteger(), nullable=False),
        sa.Column('weekday', sa.String(length=3), nullable=False),
        sa.Column('status', sa.String(length=4), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('created_by', sa.String(length=64), nullable=False),
        sa.UniqueConstraint('pattern_id', 'week_index', 'weekday', name='uq_pattern_week_cell'),
    )
    op.create_index('ix_schedule_pattern_week_masks_pattern_id', 'schedule_pattern_week_masks', ['pattern_id'])

    # --- crew shift times ---
    op.create_table(
        'crew_time_windows',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('crew_id', sa.Integer(), nullable=False),
        sa.Column('start_time', sa.Time(), nullable=False),
        sa.Column('duration_hours', sa.Numeric(5, 2), nullable=False),
        sa.Column('valid_from', sa.Date(), nullable=False),
        sa.Column('valid_to', sa.Date(), nullable=True),
        sa.Column('retired_at', sa.DateTime(), nullable=True),
        sa.Column('retired_by', sa.String(length=64), nullable=True),
        *_audit_columns(),
    )
    op.create_index('ix_crew_time_windows_crew_id', 'crew_time_windows', ['crew_id'])
    op.create_index('ix_crew_time_windows_valid_from', 'crew_time_windows', ['valid_from'])
    op.create_index('ix_crew_time_windows_valid_to', 'crew_time_windows', ['valid_to'])
    op.create_index('ix_crew_time_range', 'crew_time_windows', ['crew_id', 'valid_from', 'valid_to'])

    # --- field shifts (written by the sync side, read here) ---
    op.create_table(
        'field_shifts',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('crew_id', sa.Integer(), nullable=False),
        sa.Column('opened_at', sa.DateTime(), nullable=False),
        sa.Column('closed_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_field_shifts_crew_id', 'field_shifts', ['crew_id'])
    op.create_index('ix_field_shifts_opened_at', 'field_shifts', ['opened_at'])
    op.create_table(
        'field_shift_members',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('shift_id', sa.Integer(), sa.ForeignKey('field_shifts.id', ondelete='CASCADE'), nullable=False),
        sa.Column('electrician_id', sa.Integer(), nullable=False),
        sa.UniqueConstraint('shift_id', 'electrician_id', name='uq_field_shift_member'),
    )
    op.create_index('ix_field_shift_members_shift_id', 'field_shift_members', ['shift_id'])
    op.create_index('ix_field_shift_members_electrician_id', 'field_shift_members', ['electrician_id'])

    # --- schedule periods ---
    op.create_table(
        'schedule_periods',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('crew_id', sa.Integer(), nullable=False),
        sa.Column('pattern_id', sa.Integer(), sa.ForeignKey('schedule_patterns.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('period_start', sa.Date(), nullable=False),
        sa.Column('period_end', sa.Date(), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('version', sa.Integer(), nullable=False),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('published_at', sa.DateTime(), nullable=True),
        sa.Column('archived_at', sa.DateTime(), nullable=True),
        *_audit_columns(),
        sa.CheckConstraint('period_start <= period_end', name='ck_period_range'),
    )
    op.create_index('ix_schedule_periods_crew_id', 'schedule_periods', ['crew_id'])
    op.create_index('ix_schedule_periods_pattern_id', 'schedule_periods', ['pattern_id'])
    op.create_index('ix_schedule_period_crew_range', 'schedule_periods', ['crew_id', 'period_start', 'period_end'])
    op.create_index('ix_schedule_period_status', 'schedule_periods', ['status'])

    op.create_table(
        'schedule_period_allocations',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('period_id', sa.Integer(), sa.ForeignKey('schedule_periods.id', ondelete='CASCADE'), nullable=False),
        sa.Column('electrician_id', sa.Integer(), nullable=False),
        sa.Column('next_day_off', sa.Date(), nullable=False),
        sa.Column('phase_anchor', sa.Date(), nullable=False),
        sa.Column('phase_offset', sa.Integer(), nullable=False),
        *_audit_columns(),
        sa.UniqueConstraint('period_id', 'electrician_id', name='uq_period_allocation'),
    )
    op.create_index('ix_schedule_period_allocations_period_id', 'schedule_period_allocations', ['period_id'])
    op.create_index('ix_schedule_period_allocations_electrician_id', 'schedule_period_allocations', ['electrician_id'])

    op.create_table(
        'schedule_slots',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('period_id', sa.Integer(), sa.ForeignKey('schedule_periods.id', ondelete='CASCADE'), nullable=False),
        sa.Column('day', sa.Date(), nullable=False),
        sa.Column('electrician_id', sa.Integer(), nullable=False),
        sa.Column('state', sa.String(length=10), nullable=False),
        sa.Column('predicted_start', sa.Time(), nullable=True),
        sa.Column('predicted_duration_hours', sa.Numeric(5, 2), nullable=True),
        sa.Column('origin', sa.String(length=12), nullable=False),
        sa.Column('day_note', sa.Text(), nullable=True),
        *_audit_columns(),
        sa.UniqueConstraint('period_id', 'day', 'electrician_id', name='uq_slot_period_day_electrician'),
    )
    op.create_index('ix_schedule_slots_period_id', 'schedule_slots', ['period_id'])
    op.create_index('ix_schedule_slots_day', 'schedule_slots', ['day'])
    op.create_index('ix_schedule_slots_electrician_id', 'schedule_slots', ['electrician_id'])
    op.create_index('ix_slot_day_state', 'schedule_slots', ['day', 'state'])

    op.create_table(
        'schedule_coverage_events',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('slot_id', sa.Integer(), sa.ForeignKey('schedule_slots.id', ondelete='CASCADE'), nullable=False),
        sa.Column('kind', sa.String(length=10), nullable=False),
        sa.Column('outcome', sa.String(length=10), nullable=False),
        sa.Column('covering_electrician_id', sa.Integer(), nullable=True),
        sa.Column('justification', sa.Text(), nullable=True),
        sa.Column('registered_at', sa.DateTime(), nullable=False),
        sa.Column('created_by', sa.String(length=64), nullable=False),
    )
    op.create_index('ix_schedule_coverage_events_slot_id', 'schedule_coverage_events', ['slot_id'])

    # --- reconciliation records ---
    op.create_table(
        'reconciliation_absences',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('electrician_id', sa.Integer(), nullable=False),
        sa.Column('reference_date', sa.Date(), nullable=False),
        sa.Column('crew_id', sa.Integer(), nullable=False),
        sa.Column('slot_id', sa.Integer(), sa.ForeignKey('schedule_slots.id', ondelete='SET NULL'), nullable=True),
        sa.Column('reason', sa.String(length=30), nullable=False),
        sa.Column('status', sa.String(length=10), nullable=False),
        *_audit_columns(),
        *_review_columns(),
        sa.UniqueConstraint('electrician_id', 'reference_date', name='uq_absence_electrician_day'),
    )
    op.create_index('ix_reconciliation_absences_electrician_id', 'reconciliation_absences', ['electrician_id'])
    op.create_index('ix_reconciliation_absences_reference_date', 'reconciliation_absences', ['reference_date'])
    op.create_index('ix_reconciliation_absences_crew_id', 'reconciliation_absences', ['crew_id'])

    op.create_table(
        'reconciliation_deviations',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('electrician_id', sa.Integer(), nullable=False),
        sa.Column('reference_date', sa.Date(), nullable=False),
        sa.Column('expected_crew_id', sa.Integer(), nullable=False),
        sa.Column('actual_crew_id', sa.Integer(), nullable=False),
        sa.Column('kind', sa.String(length=20), nullable=False),
        sa.Column('detail', sa.Text(), nullable=True),
        *_audit_columns(),
        sa.UniqueConstraint('electrician_id', 'reference_date', name='uq_deviation_electrician_day'),
    )
    op.create_index('ix_reconciliation_deviations_electrician_id', 'reconciliation_deviations', ['electrician_id'])
    op.create_index('ix_reconciliation_deviations_reference_date', 'reconciliation_deviations', ['reference_date'])

    op.create_table(
        'reconciliation_overtime',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('electrician_id', sa.Integer(), nullable=False),
        sa.Column('reference_date', sa.Date(), nullable=False),
        sa.Column('crew_id', sa.Integer(), nullable=False),
        sa.Column('kind', sa.String(length=20), nullable=False),
        sa.Column('field_shift_id', sa.Integer(), sa.ForeignKey('field_shifts.id', ondelete='SET NULL'), nullable=True),
        sa.Column('slot_id', sa.Integer(), sa.ForeignKey('schedule_slots.id', ondelete='SET NULL'), nullable=True),
        sa.Column('predicted_hours', sa.Numeric(6, 2), nullable=False),
        sa.Column('worked_hours', sa.Numeric(6, 2), nullable=False),
        sa.Column('difference_hours', sa.Numeric(6, 2), nullable=False),
        sa.Column('status', sa.String(length=10), nullable=False),
        sa.Column('notes', sa.Text(), nullable=True),
        *_audit_columns(),
        *_review_columns(),
        sa.UniqueConstraint('electrician_id', 'reference_date', name='uq_overtime_electrician_day'),
    )
    op.create_index('ix_reconciliation_overtime_electrician_id', 'reconciliation_overtime', ['electrician_id'])
    op.create_index('ix_reconciliation_overtime_reference_date', 'reconciliation_overtime', ['reference_date'])

    op.create_table(
        'reconciliation_runs',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('run_id', sa.String(length=40), nullable=False),
        sa.Column('mode', sa.String(length=10), nullable=False),
        sa.Column('triggered_by', sa.String(length=64), nullable=False),
        sa.Column('date_from', sa.Date(), nullable=False),
        sa.Column('date_to', sa.Date(), nullable=False),
        sa.Column('crew_id', sa.Integer(), nullable=True),
        sa.Column('absences_created', sa.Integer(), nullable=False),
        sa.Column('deviations_created', sa.Integer(), nullable=False),
        sa.Column('overtime_created', sa.Integer(), nullable=False),
        sa.Column('already_reconciled', sa.Integer(), nullable=False),
        sa.Column('deferred', sa.Integer(), nullable=False),
        sa.Column('dates_processed', sa.Integer(), nullable=False),
        sa.Column('errors', sa.JSON(), nullable=True),
        sa.Column('outcome', sa.String(length=20), nullable=False),
        sa.Column('started_at', sa.DateTime(), nullable=False),
        sa.Column('finished_at', sa.DateTime(), nullable=True),
        sa.UniqueConstraint('run_id'),
    )


def downgrade() -> None:
    for table in (
        'reconciliation_runs',
        'reconciliation_overtime',
        'reconciliation_deviations',
        'reconciliation_absences',
        'schedule_coverage_events',
        'schedule_slots',
        'schedule_period_allocations',
        'schedule_periods',
        'field_shift_members',
        'field_shifts',
        'crew_time_windows',
        'schedule_pattern_week_masks',
        'schedule_pattern_positions',
        'schedule_patterns',
    ):
        op.drop_table(table)
