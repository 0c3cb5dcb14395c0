"""create checklist tables

Revision ID: a4d9e2c61f07
Revises: 7c1e4f2a9b30
Create Date: 2026-10-18 10:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = 'a4d9e2c61f07'
down_revision: Union[str, Sequence[str], None] = '7c1e4f2a9b30'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table(
        'checklist_items',
        sa.Column('id', sa.UUID(), nullable=False, server_default=sa.text('gen_random_uuid()')),
        sa.Column('proposal_id', sa.UUID(), nullable=False),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('is_required', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('word_limit', sa.Integer(), nullable=True),
        sa.Column('char_limit', sa.Integer(), nullable=True),
        sa.Column('page_limit', sa.Integer(), nullable=True),
        sa.Column('point_value', sa.Integer(), nullable=True),
        sa.Column('parser_confidence', sa.Float(), nullable=True),
        sa.Column('order_index', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), server_default=sa.text('NOW()'), nullable=False),
        sa.ForeignKeyConstraint(['proposal_id'], ['proposals.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_checklist_items_proposal_id', 'checklist_items', ['proposal_id'])

    op.create_table(
        'checklist_section_mappings',
        sa.Column('id', sa.UUID(), nullable=False, server_default=sa.text('gen_random_uuid()')),
        sa.Column('checklist_item_id', sa.UUID(), nullable=False),
        sa.Column('section_id', sa.UUID(), nullable=False),
        sa.Column('mapping_type', sa.String(length=10), nullable=False, comment='AUTO | MANUAL'),
        sa.Column('confidence', sa.Float(), nullable=True),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), server_default=sa.text('NOW()'), nullable=False),
        sa.ForeignKeyConstraint(['checklist_item_id'], ['checklist_items.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['section_id'], ['proposal_sections.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('checklist_item_id', 'section_id', name='uq_checklist_mapping_item_section'),
    )
    op.create_index(
        'ix_checklist_section_mappings_checklist_item_id',
        'checklist_section_mappings',
        ['checklist_item_id'],
    )


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_index('ix_checklist_section_mappings_checklist_item_id', table_name='checklist_section_mappings')
    op.drop_table('checklist_section_mappings')
    op.drop_index('ix_checklist_items_proposal_id', table_name='checklist_items')
    op.drop_table('checklist_items')
