"""dispute analysis table and pending settlement column

Revision ID: b7c3e9f1a2d6
Revises: a1f0c2d3e4b5
Create Date: 2026-10-19 15:00:00.000000
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = 'b7c3e9f1a2d6'
down_revision: Union[str, None] = 'a1f0c2d3e4b5'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.add_column('disputes', sa.Column('pending_settlement', sa.String(80), nullable=True))

    op.create_table(
        'dispute_analyses',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('dispute_id', sa.Uuid(), sa.ForeignKey('disputes.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('evidence_analysis', sa.JSON, nullable=False),
        sa.Column('description_analysis', sa.JSON, nullable=False),
        sa.Column('behavior_analysis', sa.JSON, nullable=False),
        sa.Column('overall_assessment', sa.JSON, nullable=False),
        sa.Column('ai_model', sa.String(100), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index('ix_dispute_analyses_dispute_id', 'dispute_analyses', ['dispute_id'])


def downgrade() -> None:
    op.drop_index('ix_dispute_analyses_dispute_id', table_name='dispute_analyses')
    op.drop_table('dispute_analyses')
    op.drop_column('disputes', 'pending_settlement')
