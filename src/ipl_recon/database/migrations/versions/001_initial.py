"""Initial migration - create bank mutation, verification audit and alias tables

Revision ID: 001_initial
Revises: 
Create Date: 2026-10-18

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '001_initial'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Mirrors of the administrative directory, owned by the admin system
    op.create_table(
        'residents',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('payment_index', sa.Integer(), nullable=True, unique=True),
        sa.Column('block', sa.String(20), nullable=True),
        sa.Column('house_number', sa.String(20), nullable=True),
        sa.Column('rt', sa.Integer(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
    )

    op.create_table(
        'payments',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('resident_id', sa.String(36), sa.ForeignKey('residents.id'), nullable=False),
        sa.Column('amount', sa.Float(), nullable=False),
        sa.Column('payment_date', sa.Date(), nullable=False),
    )
    op.create_index('ix_payments_resident_id', 'payments', ['resident_id'])
    op.create_index('ix_payments_payment_date', 'payments', ['payment_date'])

    # Create bank_mutations table
    op.create_table(
        'bank_mutations',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('transaction_date', sa.Date(), nullable=False),
        sa.Column('description', sa.Text(), nullable=False),
        sa.Column('amount', sa.Float(), nullable=False),
        sa.Column('balance', sa.Float(), nullable=True),
        sa.Column('reference_number', sa.String(255), nullable=True),
        sa.Column('transaction_type', sa.String(2), nullable=True),
        sa.Column('category', sa.String(50), nullable=False, server_default='LAINNYA'),
        sa.Column('state', sa.String(30), nullable=False, server_default='unmatched'),
        sa.Column('omit_reason', sa.Text(), nullable=True),
        sa.Column('verified_at', sa.DateTime(), nullable=True),
        sa.Column('verified_by', sa.String(255), nullable=True),
        sa.Column(
            'matched_resident_id', sa.String(36),
            sa.ForeignKey('residents.id', ondelete='SET NULL'), nullable=True,
        ),
        sa.Column(
            'matched_payment_id', sa.String(36),
            sa.ForeignKey('payments.id', ondelete='SET NULL'), nullable=True,
        ),
        sa.Column('match_score', sa.Float(), nullable=True),
        sa.Column('matching_strategy', sa.String(50), nullable=True),
        sa.Column('raw_data_json', sa.Text(), nullable=False, server_default='{}'),
        sa.Column('upload_batch', sa.String(64), nullable=False),
        sa.Column('file_name', sa.String(255), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
    )

    # Create indexes for bank_mutations
    op.create_index('ix_bank_mutations_upload_batch', 'bank_mutations', ['upload_batch'])
    op.create_index('ix_bank_mutations_transaction_date', 'bank_mutations', ['transaction_date'])
    op.create_index('ix_bank_mutations_state', 'bank_mutations', ['state'])
    op.create_index('ix_bank_mutations_matched_resident_id', 'bank_mutations', ['matched_resident_id'])

    # Create bank_mutation_verifications table
    op.create_table(
        'bank_mutation_verifications',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column(
            'mutation_id', sa.String(36),
            sa.ForeignKey('bank_mutations.id', ondelete='CASCADE'), nullable=False,
        ),
        sa.Column('action', sa.String(50), nullable=False),
        sa.Column('previous_state', sa.String(30), nullable=True),
        sa.Column('new_state', sa.String(30), nullable=False),
        sa.Column('confidence', sa.Float(), nullable=True),
        sa.Column('verified_by', sa.String(255), nullable=False),
        sa.Column('previous_matched_payment_id', sa.String(36), nullable=True),
        sa.Column('new_matched_payment_id', sa.String(36), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
    )

    # Create indexes for bank_mutation_verifications
    op.create_index(
        'ix_bank_mutation_verifications_mutation_id', 'bank_mutation_verifications', ['mutation_id']
    )
    op.create_index('ix_bank_mutation_verifications_action', 'bank_mutation_verifications', ['action'])
    op.create_index(
        'ix_bank_mutation_verifications_verified_by', 'bank_mutation_verifications', ['verified_by']
    )

    # Create resident_bank_aliases table
    op.create_table(
        'resident_bank_aliases',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column(
            'resident_id', sa.String(36),
            sa.ForeignKey('residents.id', ondelete='CASCADE'), nullable=False,
        ),
        sa.Column('bank_name', sa.String(255), nullable=False),
        sa.Column('frequency', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('is_verified', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('last_seen', sa.DateTime(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.UniqueConstraint(
            'resident_id', 'bank_name', name='uq_resident_bank_aliases_resident_bank_name'
        ),
    )
    op.create_index('ix_resident_bank_aliases_bank_name', 'resident_bank_aliases', ['bank_name'])


def downgrade() -> None:
    op.drop_index('ix_resident_bank_aliases_bank_name', table_name='resident_bank_aliases')
    op.drop_table('resident_bank_aliases')

    op.drop_index('ix_bank_mutation_verifications_verified_by', table_name='bank_mutation_verifications')
    op.drop_index('ix_bank_mutation_verifications_action', table_name='bank_mutation_verifications')
    op.drop_index('ix_bank_mutation_verifications_mutation_id', table_name='bank_mutation_verifications')
    op.drop_table('bank_mutation_verifications')

    op.drop_index('ix_bank_mutations_matched_resident_id', table_name='bank_mutations')
    op.drop_index('ix_bank_mutations_state', table_name='bank_mutations')
    op.drop_index('ix_bank_mutations_transaction_date', table_name='bank_mutations')
    op.drop_index('ix_bank_mutations_upload_batch', table_name='bank_mutations')
    op.drop_table('bank_mutations')

    op.drop_index('ix_payments_payment_date', table_name='payments')
    op.drop_index('ix_payments_resident_id', table_name='payments')
    op.drop_table('payments')
    op.drop_table('residents')
