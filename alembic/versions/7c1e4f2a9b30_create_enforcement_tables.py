"""create proposal and enforcement tables

Revision ID: 7c1e4f2a9b30
Revises:
Create Date: 2026-10-12 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '7c1e4f2a9b30'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _id_column() -> sa.Column:
    return sa.Column('id', sa.UUID(), nullable=False, server_default=sa.text('gen_random_uuid()'))


def _created_at_column() -> sa.Column:
    return sa.Column('created_at', sa.TIMESTAMP(timezone=True), server_default=sa.text('NOW()'), nullable=False)


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table(
        'proposals',
        _id_column(),
        sa.Column('organization_id', sa.UUID(), nullable=False),
        sa.Column('user_id', sa.UUID(), nullable=True),
        sa.Column('title', sa.String(), nullable=False),
        sa.Column('funder_name', sa.String(), nullable=True),
        sa.Column('rfp_text', sa.Text(), nullable=True),
        sa.Column('parsed_requirements', postgresql.JSONB(astext_type=sa.Text()), nullable=True,
                  comment='Parsed RFP requirements: {sections: [{name, is_required}]}'),
        sa.Column('enforcement_failure', sa.Boolean(), nullable=False, server_default=sa.false(),
                  comment='Set when generation-time enforcement raised for any section'),
        _created_at_column(),
        sa.Column('updated_at', sa.TIMESTAMP(timezone=True), server_default=sa.text('NOW()'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_proposals_organization_id', 'proposals', ['organization_id'])

    op.create_table(
        'proposal_sections',
        _id_column(),
        sa.Column('proposal_id', sa.UUID(), nullable=False),
        sa.Column('section_name', sa.String(), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('content', sa.Text(), nullable=False, server_default=''),
        sa.Column('order_index', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('is_required', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('word_limit', sa.Integer(), nullable=True),
        sa.Column('char_limit', sa.Integer(), nullable=True),
        sa.Column('used_generic_knowledge', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('retrieved_chunk_count', sa.Integer(), nullable=True),
        sa.Column('enforcement_applied', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('updated_at', sa.TIMESTAMP(timezone=True), server_default=sa.text('NOW()'), nullable=False),
        sa.ForeignKeyConstraint(['proposal_id'], ['proposals.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_proposal_sections_proposal_id', 'proposal_sections', ['proposal_id'])

    op.create_table(
        'generation_metadata',
        _id_column(),
        sa.Column('section_id', sa.UUID(), nullable=False),
        sa.Column('organization_id', sa.UUID(), nullable=True),
        sa.Column('retrieved_chunk_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('used_generic_knowledge', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('min_chunk_similarity', sa.Float(), nullable=True),
        sa.Column('max_chunk_similarity', sa.Float(), nullable=True),
        sa.Column('avg_chunk_similarity', sa.Float(), nullable=True),
        sa.Column('enforcement_applied', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('claims_replaced', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('paragraphs_placeholdered', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('policy_override', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('blocked_patterns', postgresql.JSONB(astext_type=sa.Text()), nullable=False,
                  server_default=sa.text("'[]'::jsonb")),
        sa.Column('raw_generation', sa.Text(), nullable=True,
                  comment='Unenforced model output, kept for audit only'),
        sa.Column('enforced_generation', sa.Text(), nullable=True),
        _created_at_column(),
        sa.ForeignKeyConstraint(['section_id'], ['proposal_sections.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_generation_metadata_section_id', 'generation_metadata', ['section_id'])

    op.create_table(
        'attributed_paragraphs',
        _id_column(),
        sa.Column('section_id', sa.UUID(), nullable=False),
        sa.Column('paragraph_index', sa.Integer(), nullable=False),
        sa.Column('text', sa.Text(), nullable=False),
        sa.Column('supporting_chunks', postgresql.JSONB(astext_type=sa.Text()), nullable=False,
                  server_default=sa.text("'[]'::jsonb"),
                  comment='[{chunk_id, document_id, document_name, similarity, matched_span}]'),
        sa.Column('attribution_score', sa.Float(), nullable=False, server_default='0'),
        sa.Column('status', sa.String(length=20), nullable=False,
                  comment='GROUNDED, PARTIAL, UNGROUNDED or FAILED'),
        sa.Column('flags', postgresql.JSONB(astext_type=sa.Text()), nullable=False,
                  server_default=sa.text("'[]'::jsonb")),
        _created_at_column(),
        sa.ForeignKeyConstraint(['section_id'], ['proposal_sections.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_attributed_paragraphs_section_id', 'attributed_paragraphs', ['section_id'])

    op.create_table(
        'section_coverage_records',
        _id_column(),
        sa.Column('section_id', sa.UUID(), nullable=False),
        sa.Column('coverage_score', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_paragraphs', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('grounded_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('partial_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('ungrounded_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('source_documents', postgresql.JSONB(astext_type=sa.Text()), nullable=False,
                  server_default=sa.text("'[]'::jsonb")),
        sa.Column('computed_at', sa.TIMESTAMP(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['section_id'], ['proposal_sections.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('section_id', name='uq_section_coverage_section'),
    )

    op.create_table(
        'verified_claims',
        _id_column(),
        sa.Column('paragraph_id', sa.UUID(), nullable=False),
        sa.Column('section_id', sa.UUID(), nullable=False),
        sa.Column('claim_type', sa.String(length=30), nullable=False),
        sa.Column('value', sa.Text(), nullable=False),
        sa.Column('context', sa.Text(), nullable=False, server_default=''),
        sa.Column('position_start', sa.Integer(), nullable=False),
        sa.Column('position_end', sa.Integer(), nullable=False),
        sa.Column('risk_level', sa.String(length=10), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('verification_score', sa.Float(), nullable=False, server_default='0'),
        sa.Column('evidence', postgresql.JSONB(astext_type=sa.Text()), nullable=False,
                  server_default=sa.text("'[]'::jsonb")),
        _created_at_column(),
        sa.ForeignKeyConstraint(['paragraph_id'], ['attributed_paragraphs.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['section_id'], ['proposal_sections.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_verified_claims_paragraph_id', 'verified_claims', ['paragraph_id'])
    op.create_index('ix_verified_claims_section_id', 'verified_claims', ['section_id'])

    op.create_table(
        'placeholders',
        _id_column(),
        sa.Column('section_id', sa.UUID(), nullable=False),
        sa.Column('token_id', sa.String(length=100), nullable=False),
        sa.Column('placeholder_type', sa.String(length=30), nullable=False),
        sa.Column('description', sa.Text(), nullable=False),
        sa.Column('suggested_sources', postgresql.JSONB(astext_type=sa.Text()), nullable=False,
                  server_default=sa.text("'[]'::jsonb")),
        sa.Column('position_start', sa.Integer(), nullable=False),
        sa.Column('position_end', sa.Integer(), nullable=False),
        sa.Column('resolved', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('resolved_value', sa.Text(), nullable=True),
        sa.Column('resolved_by', sa.String(), nullable=True),
        sa.Column('resolved_at', sa.TIMESTAMP(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['section_id'], ['proposal_sections.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_placeholders_section_id', 'placeholders', ['section_id'])

    op.create_table(
        'ambiguity_flags',
        _id_column(),
        sa.Column('proposal_id', sa.UUID(), nullable=False),
        sa.Column('ambiguity_type', sa.String(length=20), nullable=False),
        sa.Column('description', sa.Text(), nullable=False),
        sa.Column('source_texts', postgresql.JSONB(astext_type=sa.Text()), nullable=False,
                  server_default=sa.text("'[]'::jsonb")),
        sa.Column('suggested_resolutions', postgresql.JSONB(astext_type=sa.Text()), nullable=False,
                  server_default=sa.text("'[]'::jsonb")),
        sa.Column('requires_user_input', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('resolved', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('resolution', sa.Text(), nullable=True),
        sa.Column('resolved_by', sa.String(), nullable=True),
        sa.Column('resolved_at', sa.TIMESTAMP(timezone=True), nullable=True),
        _created_at_column(),
        sa.ForeignKeyConstraint(['proposal_id'], ['proposals.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_ambiguity_flags_proposal_id', 'ambiguity_flags', ['proposal_id'])

    # No foreign key: audit rows outlive the proposals they describe
    op.create_table(
        'export_audit_logs',
        _id_column(),
        sa.Column('proposal_id', sa.UUID(), nullable=False),
        sa.Column('user_id', sa.String(), nullable=False),
        sa.Column('export_format', sa.String(length=20), nullable=False),
        sa.Column('decision', sa.String(length=10), nullable=False),
        sa.Column('blocks', postgresql.JSONB(astext_type=sa.Text()), nullable=False,
                  server_default=sa.text("'[]'::jsonb")),
        sa.Column('warnings', postgresql.JSONB(astext_type=sa.Text()), nullable=False,
                  server_default=sa.text("'[]'::jsonb")),
        sa.Column('enforcement_snapshot', postgresql.JSONB(astext_type=sa.Text()), nullable=False,
                  server_default=sa.text("'{}'::jsonb"),
                  comment='{coverage_score, verification_rate, compliance_score, voice_score}'),
        sa.Column('attestation_text', sa.Text(), nullable=True),
        sa.Column('attestation_timestamp', sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_export_audit_logs_proposal_id', 'export_audit_logs', ['proposal_id'])


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_index('ix_export_audit_logs_proposal_id', table_name='export_audit_logs')
    op.drop_table('export_audit_logs')
    op.drop_index('ix_ambiguity_flags_proposal_id', table_name='ambiguity_flags')
    op.drop_table('ambiguity_flags')
    op.drop_index('ix_placeholders_section_id', table_name='placeholders')
    op.drop_table('placeholders')
    op.drop_index('ix_verified_claims_section_id', table_name='verified_claims')
    op.drop_index('ix_verified_claims_paragraph_id', table_name='verified_claims')
    op.drop_table('verified_claims')
    op.drop_table('section_coverage_records')
    op.drop_index('ix_attributed_paragraphs_section_id', table_name='attributed_paragraphs')
    op.drop_table('attributed_paragraphs')
    op.drop_index('ix_generation_metadata_section_id', table_name='generation_metadata')
    op.drop_table('generation_metadata')
    op.drop_index('ix_proposal_sections_proposal_id', table_name='proposal_sections')
    op.drop_table('proposal_sections')
    op.drop_index('ix_proposals_organization_id', table_name='proposals')
    op.drop_table('proposals')
