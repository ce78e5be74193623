"""initial dispute schema: bookings, disputes, negotiation, mediation, decisions, evidence, timeline

Revision ID: a1f0c2d3e4b5
Revises:
Create Date: 2026-10-19 09:00:00.000000
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = 'a1f0c2d3e4b5'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'bookings',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('customer_id', sa.Uuid(), nullable=False),
        sa.Column('vendor_id', sa.Uuid(), nullable=False),
        sa.Column('service_title', sa.String(255), nullable=True),
        sa.Column('status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('currency', sa.String(3), nullable=False, server_default='CHF'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index('ix_bookings_customer_id', 'bookings', ['customer_id'])
    op.create_index('ix_bookings_vendor_id', 'bookings', ['vendor_id'])

    op.create_table(
        'disputes',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('booking_id', sa.Uuid(), sa.ForeignKey('bookings.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('customer_id', sa.Uuid(), nullable=False),
        sa.Column('vendor_id', sa.Uuid(), nullable=False),
        sa.Column('opened_by', sa.Uuid(), nullable=False),
        sa.Column('reason', sa.Text, nullable=True),
        sa.Column('escrow_amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('currency', sa.String(3), nullable=False),
        sa.Column('phase', sa.String(30), nullable=False),
        sa.Column('phase1_deadline', sa.DateTime(timezone=True), nullable=True),
        sa.Column('phase2_deadline', sa.DateTime(timezone=True), nullable=True),
        sa.Column('phase3_review_deadline', sa.DateTime(timezone=True), nullable=True),
        sa.Column('final_customer_percent', sa.Integer, nullable=True),
        sa.Column('final_vendor_percent', sa.Integer, nullable=True),
        sa.Column('resolution_path', sa.String(30), nullable=True),
        sa.Column('external_resolution_by', sa.String(20), nullable=True),
        sa.Column('resolved_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('evidence_frozen_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('revision', sa.Integer, nullable=False, server_default='0'),
        sa.Column('event_sequence', sa.Integer, nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index('ix_disputes_booking_id', 'disputes', ['booking_id'])
    op.create_index('ix_disputes_customer_id', 'disputes', ['customer_id'])
    op.create_index('ix_disputes_vendor_id', 'disputes', ['vendor_id'])
    op.create_index('ix_disputes_phase', 'disputes', ['phase'])
    op.create_index(
        'ix_disputes_phase_deadlines',
        'disputes',
        ['phase', 'phase1_deadline', 'phase2_deadline', 'phase3_review_deadline'],
    )

    op.create_table(
        'counter_offers',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('dispute_id', sa.Uuid(), sa.ForeignKey('disputes.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('author_id', sa.Uuid(), nullable=False),
        sa.Column('author_role', sa.String(20), nullable=False),
        sa.Column('percent_to_customer', sa.Integer, nullable=False),
        sa.Column('message', sa.Text, nullable=True),
        sa.Column('sequence', sa.Integer, nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint('dispute_id', 'sequence', name='uq_counter_offers_dispute_sequence'),
        sa.CheckConstraint('percent_to_customer BETWEEN 0 AND 100', name='ck_counter_offers_percent'),
    )
    op.create_index('ix_counter_offers_dispute_id', 'counter_offers', ['dispute_id'])

    op.create_table(
        'ai_mediation_options',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('dispute_id', sa.Uuid(), sa.ForeignKey('disputes.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('label', sa.String(1), nullable=False),
        sa.Column('title', sa.String(255), nullable=False),
        sa.Column('customer_refund_percent', sa.Integer, nullable=False),
        sa.Column('vendor_payment_percent', sa.Integer, nullable=False),
        sa.Column('customer_refund_amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('vendor_payment_amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('reasoning', sa.Text, nullable=False),
        sa.Column('key_factors', sa.JSON, nullable=True),
        sa.Column('is_recommended', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint('dispute_id', 'label', name='uq_ai_mediation_options_label'),
        sa.CheckConstraint(
            'customer_refund_percent + vendor_payment_percent = 100',
            name='ck_ai_mediation_options_split',
        ),
    )
    op.create_index('ix_ai_mediation_options_dispute_id', 'ai_mediation_options', ['dispute_id'])

    op.create_table(
        'party_selections',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('dispute_id', sa.Uuid(), sa.ForeignKey('disputes.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('role', sa.String(20), nullable=False),
        sa.Column('user_id', sa.Uuid(), nullable=False),
        sa.Column(
            'selected_option_id',
            sa.Uuid(),
            sa.ForeignKey('ai_mediation_options.id', ondelete='RESTRICT'),
            nullable=True,
        ),
        sa.Column('selected_at', sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint('dispute_id', 'role', name='uq_party_selections_role'),
    )
    op.create_index('ix_party_selections_dispute_id', 'party_selections', ['dispute_id'])

    op.create_table(
        'ai_decisions',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('dispute_id', sa.Uuid(), sa.ForeignKey('disputes.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('customer_refund_percent', sa.Integer, nullable=False),
        sa.Column('vendor_payment_percent', sa.Integer, nullable=False),
        sa.Column('customer_refund_amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('vendor_payment_amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('decision_summary', sa.Text, nullable=False),
        sa.Column('full_reasoning', sa.Text, nullable=False),
        sa.Column('key_factors', sa.JSON, nullable=True),
        sa.Column('status', sa.String(30), nullable=False, server_default='pending'),
        sa.Column('auto_executed', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('executed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('overridden_by', sa.String(20), nullable=True),
        sa.Column('overridden_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint(
            'customer_refund_percent + vendor_payment_percent = 100',
            name='ck_ai_decisions_split',
        ),
    )
    op.create_index('ix_ai_decisions_dispute_id', 'ai_decisions', ['dispute_id'], unique=True)

    op.create_table(
        'dispute_evidence',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('dispute_id', sa.Uuid(), sa.ForeignKey('disputes.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('uploader_id', sa.Uuid(), nullable=False),
        sa.Column('uploader_role', sa.String(20), nullable=False),
        sa.Column('url', sa.String(1000), nullable=False),
        sa.Column('type', sa.String(20), nullable=False),
        sa.Column('original_filename', sa.String(255), nullable=True),
        sa.Column('file_size', sa.Integer, nullable=True),
        sa.Column('uploaded_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('removed_at', sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index('ix_dispute_evidence_dispute_id', 'dispute_evidence', ['dispute_id'])

    op.create_table(
        'dispute_events',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('dispute_id', sa.Uuid(), sa.ForeignKey('disputes.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('sequence', sa.Integer, nullable=False),
        sa.Column('event_type', sa.String(40), nullable=False),
        sa.Column('actor_id', sa.Uuid(), nullable=True),
        sa.Column('actor_role', sa.String(20), nullable=False),
        sa.Column('payload', sa.JSON, nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint('dispute_id', 'sequence', name='uq_dispute_events_sequence'),
    )
    op.create_index('ix_dispute_events_dispute_id', 'dispute_events', ['dispute_id'])


def downgrade() -> None:
    op.drop_index('ix_dispute_events_dispute_id', table_name='dispute_events')
    op.drop_table('dispute_events')
    op.drop_index('ix_dispute_evidence_dispute_id', table_name='dispute_evidence')
    op.drop_table('dispute_evidence')
    op.drop_index('ix_ai_decisions_dispute_id', table_name='ai_decisions')
    op.drop_table('ai_decisions')
    op.drop_index('ix_party_selections_dispute_id', table_name='party_selections')
    op.drop_table('party_selections')
    op.drop_index('ix_ai_mediation_options_dispute_id', table_name='ai_mediation_options')
    op.drop_table('ai_mediation_options')
    op.drop_index('ix_counter_offers_dispute_id', table_name='counter_offers')
    op.drop_table('counter_offers')
    op.drop_index('ix_disputes_phase_deadlines', table_name='disputes')
    op.drop_index('ix_disputes_phase', table_name='disputes')
    op.drop_index('ix_disputes_vendor_id', table_name='disputes')
    op.drop_index('ix_disputes_customer_id', table_name='disputes')
    op.drop_index('ix_disputes_booking_id', table_name='disputes')
    op.drop_table('disputes')
    op.drop_index('ix_bookings_vendor_id', table_name='bookings')
    op.drop_index('ix_bookings_customer_id', table_name='bookings')
    op.drop_table('bookings')
