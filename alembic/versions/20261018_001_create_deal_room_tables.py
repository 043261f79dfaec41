"""create deal room tables

Revision ID: 20261018_001
Revises:
Create Date: 2026-10-18
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '20261018_001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

SCHEMA = 'dealroom'


def _enum(name, *values):
    return sa.Enum(*values, name=name)


def upgrade() -> None:
    # Listings - read model kept in sync by the listing service
    op.create_table(
        'listings',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('seller_id', sa.Uuid(), nullable=False),
        sa.Column('title', sa.String(), nullable=False),
        sa.Column('body', sa.Text(), nullable=False),
        sa.Column('confidential_details', sa.Text()),
        sa.Column('price', sa.BigInteger(), nullable=False),
        sa.Column('is_secret', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('requires_nda', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.TIMESTAMP()),
        schema=SCHEMA,
    )
    op.create_index('ix_listings_seller_id', 'listings', ['seller_id'], schema=SCHEMA)

    # Threads - one per canonical participant pair and listing
    op.create_table(
        'threads',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('buyer_id', sa.Uuid(), nullable=False),
        sa.Column('seller_id', sa.Uuid(), nullable=False),
        sa.Column('participant_low', sa.Uuid(), nullable=False),
        sa.Column('participant_high', sa.Uuid(), nullable=False),
        sa.Column('listing_id', sa.Uuid(), sa.ForeignKey(f'{SCHEMA}.listings.id')),
        sa.Column('listing_key', sa.String(), nullable=False, server_default=''),
        sa.Column('last_seq', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('last_activity_at', sa.TIMESTAMP(), nullable=False),
        sa.Column('closed_as', _enum('deal_closure', 'rejected', 'canceled')),
        sa.Column('closed_at', sa.TIMESTAMP()),
        sa.Column('created_at', sa.TIMESTAMP(), nullable=False),
        sa.UniqueConstraint('participant_low', 'participant_high', 'listing_key', name='uq_threads_pair_listing'),
        sa.CheckConstraint('buyer_id <> seller_id', name='ck_threads_distinct_parties'),
        schema=SCHEMA,
    )
    op.create_index('ix_threads_buyer_id', 'threads', ['buyer_id'], schema=SCHEMA)
    op.create_index('ix_threads_seller_id', 'threads', ['seller_id'], schema=SCHEMA)

    op.create_table(
        'thread_participants',
        sa.Column('thread_id', sa.Uuid(), sa.ForeignKey(f'{SCHEMA}.threads.id'), primary_key=True),
        sa.Column('user_id', sa.Uuid(), primary_key=True),
        sa.Column('role', _enum('participant_role', 'buyer', 'seller'), nullable=False),
        sa.Column('last_read_seq', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('unread_count', sa.Integer(), nullable=False, server_default='0'),
        schema=SCHEMA,
    )
    op.create_index('ix_thread_participants_user_id', 'thread_participants', ['user_id'], schema=SCHEMA)

    # Contract documents and their per-party signature rows
    op.create_table(
        'contract_documents',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('thread_id', sa.Uuid(), sa.ForeignKey(f'{SCHEMA}.threads.id'), nullable=False),
        sa.Column('type', _enum('document_type', 'nda', 'transfer', 'terms'), nullable=False),
        sa.Column('status', _enum('document_status', 'pending', 'signed', 'rejected'), nullable=False),
        sa.Column('proposer_id', sa.Uuid(), nullable=False),
        sa.Column('body_text', sa.Text(), nullable=False),
        sa.Column('client_token', sa.String(64)),
        sa.Column('rejected_by', sa.Uuid()),
        sa.Column('rejection_reason', sa.Text()),
        sa.Column('created_at', sa.TIMESTAMP(), nullable=False),
        sa.Column('resolved_at', sa.TIMESTAMP()),
        sa.UniqueConstraint('thread_id', 'client_token', name='uq_contract_documents_thread_client_token'),
        schema=SCHEMA,
    )
    op.create_index('ix_contract_documents_thread_id', 'contract_documents', ['thread_id'], schema=SCHEMA)

    op.create_table(
        'contract_signatures',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('document_id', sa.Uuid(), sa.ForeignKey(f'{SCHEMA}.contract_documents.id'), nullable=False),
        sa.Column('party_id', sa.Uuid(), nullable=False),
        sa.Column('signed_at', sa.TIMESTAMP()),
        sa.Column('signature_text', sa.Text()),
        sa.UniqueConstraint('document_id', 'party_id', name='uq_contract_signatures_document_party'),
        schema=SCHEMA,
    )
    op.create_index('ix_contract_signatures_document_id', 'contract_signatures', ['document_id'], schema=SCHEMA)

    # Messages - ordered by the per-thread seq
    op.create_table(
        'messages',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('thread_id', sa.Uuid(), sa.ForeignKey(f'{SCHEMA}.threads.id'), nullable=False),
        sa.Column('seq', sa.Integer(), nullable=False),
        sa.Column('sender_id', sa.Uuid()),
        sa.Column('kind', _enum('message_kind', 'text', 'image', 'contract_ref', 'system'), nullable=False),
        sa.Column('text', sa.Text()),
        sa.Column('media_path', sa.String()),
        sa.Column('contract_id', sa.Uuid(), sa.ForeignKey(f'{SCHEMA}.contract_documents.id')),
        sa.Column('system_event', sa.String()),
        sa.Column('client_token', sa.String(64)),
        sa.Column('is_deleted', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('deleted_at', sa.TIMESTAMP()),
        sa.Column('created_at', sa.TIMESTAMP(), nullable=False),
        sa.UniqueConstraint('thread_id', 'seq', name='uq_messages_thread_seq'),
        sa.UniqueConstraint('thread_id', 'client_token', name='uq_messages_thread_client_token'),
        schema=SCHEMA,
    )
    op.create_index('ix_messages_thread_id', 'messages', ['thread_id'], schema=SCHEMA)

    # NDA ledger - one acceptance per (user, listing)
    op.create_table(
        'nda_acceptances',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('user_id', sa.Uuid(), nullable=False),
        sa.Column('listing_id', sa.Uuid(), sa.ForeignKey(f'{SCHEMA}.listings.id'), nullable=False),
        sa.Column('document_url', sa.String()),
        sa.Column('document_id', sa.Uuid()),
        sa.Column('signed_at', sa.TIMESTAMP(), nullable=False),
        sa.UniqueConstraint('user_id', 'listing_id', name='uq_nda_acceptances_user_listing'),
        schema=SCHEMA,
    )
    op.create_index('ix_nda_acceptances_user_id', 'nda_acceptances', ['user_id'], schema=SCHEMA)

    # Payment intents - the partial unique index is the active intent slot
    op.create_table(
        'payment_intents',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('thread_id', sa.Uuid(), sa.ForeignKey(f'{SCHEMA}.threads.id'), nullable=False),
        sa.Column('listing_id', sa.Uuid(), sa.ForeignKey(f'{SCHEMA}.listings.id'), nullable=False),
        sa.Column('buyer_id', sa.Uuid(), nullable=False),
        sa.Column('amount', sa.BigInteger(), nullable=False),
        sa.Column('fee', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('currency', sa.String(8), nullable=False),
        sa.Column(
            'status',
            _enum('payment_status', 'created', 'processing', 'succeeded', 'failed', 'canceled'),
            nullable=False,
        ),
        sa.Column('external_reference', sa.String(), unique=True),
        sa.Column('failure_reason', sa.Text()),
        sa.Column('created_at', sa.TIMESTAMP(), nullable=False),
        sa.Column('completed_at', sa.TIMESTAMP()),
        schema=SCHEMA,
    )
    op.create_index('ix_payment_intents_thread_id', 'payment_intents', ['thread_id'], schema=SCHEMA)
    op.create_index(
        'uq_payment_intents_active_slot',
        'payment_intents',
        ['thread_id', 'listing_id'],
        unique=True,
        schema=SCHEMA,
        postgresql_where=sa.text("status IN ('created', 'processing')"),
    )


def downgrade() -> None:
    op.drop_index('uq_payment_intents_active_slot', table_name='payment_intents', schema=SCHEMA)
    for table in (
        'payment_intents',
        'nda_acceptances',
        'messages',
        'contract_signatures',
        'contract_documents',
        'thread_participants',
        'threads',
        'listings',
    ):
        op.drop_table(table, schema=SCHEMA)
    for enum_name in ('payment_status', 'message_kind', 'document_status', 'document_type', 'participant_role', 'deal_closure'):
        sa.Enum(name=enum_name).drop(op.get_bind(), checkfirst=True)
