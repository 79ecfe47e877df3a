"""Initial schema: users, offers, trades, transactions, ratings, messages

Revision ID: 001_initial_schema
Revises: 
Create Date: 2026-10-19 00:00:00.000000

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = '001_initial_schema'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # Users; balances in minor units, never negative
    op.create_table(
        'users',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('email', sa.String(), nullable=False),
        sa.Column('password_hash', sa.String(), nullable=False),
        sa.Column('display_name', sa.String(), nullable=True),
        sa.Column('phone', sa.String(), nullable=True),
        sa.Column('fiat_balance', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('stable_balance', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('kyc_verified', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('kyc_status', sa.String(), nullable=False, server_default='unverified'),
        sa.Column('rating_average', sa.String(), nullable=False, server_default='0.00'),
        sa.Column('rating_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('rating_total', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('is_admin', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('is_banned', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('funds_frozen', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='true'),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.CheckConstraint('fiat_balance >= 0', name='ck_users_fiat_balance_non_negative'),
        sa.CheckConstraint('stable_balance >= 0', name='ck_users_stable_balance_non_negative'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_users_email'), 'users', ['email'], unique=True)

    # Offers
    op.create_table(
        'offers',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('owner_id', sa.String(), nullable=False),
        sa.Column('side', sa.String(), nullable=False),
        sa.Column('amount_minor', sa.BigInteger(), nullable=False),
        sa.Column('remaining_minor', sa.BigInteger(), nullable=False),
        sa.Column('rate_minor', sa.BigInteger(), nullable=False),
        sa.Column('status', sa.String(), nullable=False, server_default='active'),
        sa.Column('min_amount_minor', sa.BigInteger(), nullable=True),
        sa.Column('max_amount_minor', sa.BigInteger(), nullable=True),
        sa.Column('payment_method', sa.String(), nullable=False),
        sa.Column('payment_details', postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column('time_limit_minutes', sa.Integer(), nullable=False),
        sa.Column('terms', sa.Text(), nullable=True),
        sa.Column('is_deleted', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.CheckConstraint('amount_minor > 0', name='ck_offers_amount_positive'),
        sa.CheckConstraint('rate_minor > 0', name='ck_offers_rate_positive'),
        sa.CheckConstraint(
            'remaining_minor >= 0 AND remaining_minor <= amount_minor',
            name='ck_offers_remaining_in_range',
        ),
        sa.ForeignKeyConstraint(['owner_id'], ['users.id'], ondelete='RESTRICT'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_offers_owner_id', 'offers', ['owner_id'])
    op.create_index('ix_offers_side_status', 'offers', ['side', 'status'])

    # Trades
    op.create_table(
        'trades',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('offer_id', sa.String(), nullable=False),
        sa.Column('buyer_id', sa.String(), nullable=False),
        sa.Column('seller_id', sa.String(), nullable=False),
        sa.Column('amount_minor', sa.BigInteger(), nullable=False),
        sa.Column('rate_minor', sa.BigInteger(), nullable=False),
        sa.Column('fiat_amount_minor', sa.BigInteger(), nullable=False),
        sa.Column('payment_method', sa.String(), nullable=False),
        sa.Column('payment_details', postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column('status', sa.String(), nullable=False),
        sa.Column('payment_deadline', sa.DateTime(), nullable=False),
        sa.Column('payment_confirmed_at', sa.DateTime(), nullable=True),
        sa.Column('payment_reference', sa.String(), nullable=True),
        sa.Column('expired_at', sa.DateTime(), nullable=True),
        sa.Column('cancelled_by', sa.String(), nullable=True),
        sa.Column('cancel_reason', sa.Text(), nullable=True),
        sa.Column('dispute_reason', sa.Text(), nullable=True),
        sa.Column('dispute_category', sa.String(), nullable=True),
        sa.Column('dispute_raised_by', sa.String(), nullable=True),
        sa.Column('dispute_evidence', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column('disputed_at', sa.DateTime(), nullable=True),
        sa.Column('admin_notes', sa.Text(), nullable=True),
        sa.Column('resolution', sa.String(), nullable=True),
        sa.Column('resolved_by', sa.String(), nullable=True),
        sa.Column('resolved_at', sa.DateTime(), nullable=True),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.CheckConstraint('buyer_id <> seller_id', name='ck_trades_distinct_parties'),
        sa.CheckConstraint('amount_minor > 0', name='ck_trades_amount_positive'),
        sa.ForeignKeyConstraint(['offer_id'], ['offers.id'], ondelete='RESTRICT'),
        sa.ForeignKeyConstraint(['buyer_id'], ['users.id'], ondelete='RESTRICT'),
        sa.ForeignKeyConstraint(['seller_id'], ['users.id'], ondelete='RESTRICT'),
        sa.ForeignKeyConstraint(['cancelled_by'], ['users.id'], ondelete='SET NULL'),
        sa.ForeignKeyConstraint(['dispute_raised_by'], ['users.id'], ondelete='SET NULL'),
        sa.ForeignKeyConstraint(['resolved_by'], ['users.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_trades_buyer_id', 'trades', ['buyer_id'])
    op.create_index('ix_trades_seller_id', 'trades', ['seller_id'])
    op.create_index('ix_trades_status_deadline', 'trades', ['status', 'payment_deadline'])

    # Ledger; tx_ref is the idempotency key
    op.create_table(
        'transactions',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('user_id', sa.String(), nullable=False),
        sa.Column('type', sa.String(), nullable=False),
        sa.Column('direction', sa.String(), nullable=False),
        sa.Column('currency', sa.String(), nullable=False),
        sa.Column('amount_minor', sa.BigInteger(), nullable=False),
        sa.Column('status', sa.String(), nullable=False),
        sa.Column('tx_ref', sa.String(), nullable=False),
        sa.Column('trade_id', sa.String(), nullable=True),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('tx_metadata', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('applied_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
        sa.CheckConstraint('amount_minor > 0', name='ck_transactions_amount_positive'),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='RESTRICT'),
        sa.ForeignKeyConstraint(['trade_id'], ['trades.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('tx_ref')
    )
    op.create_index('ix_transactions_user_id_created_at', 'transactions', ['user_id', 'created_at'])
    op.create_index('ix_transactions_trade_id', 'transactions', ['trade_id'])

    # Ratings
    op.create_table(
        'ratings',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('trade_id', sa.String(), nullable=False),
        sa.Column('rater_id', sa.String(), nullable=False),
        sa.Column('rated_user_id', sa.String(), nullable=False),
        sa.Column('score', sa.Integer(), nullable=False),
        sa.Column('comment', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.CheckConstraint('score >= 1 AND score <= 5', name='ck_ratings_score_range'),
        sa.ForeignKeyConstraint(['trade_id'], ['trades.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['rater_id'], ['users.id'], ondelete='RESTRICT'),
        sa.ForeignKeyConstraint(['rated_user_id'], ['users.id'], ondelete='RESTRICT'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('trade_id', 'rater_id', name='uq_ratings_trade_rater')
    )
    op.create_index('ix_ratings_rated_user_id', 'ratings', ['rated_user_id'])

    # Messages (trade chat + direct)
    op.create_table(
        'messages',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('trade_id', sa.String(), nullable=True),
        sa.Column('sender_id', sa.String(), nullable=True),
        sa.Column('recipient_id', sa.String(), nullable=True),
        sa.Column('body', sa.Text(), nullable=False),
        sa.Column('is_system', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('read_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['trade_id'], ['trades.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['sender_id'], ['users.id'], ondelete='SET NULL'),
        sa.ForeignKeyConstraint(['recipient_id'], ['users.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_messages_trade_id_created_at', 'messages', ['trade_id', 'created_at'])
    op.create_index('ix_messages_sender_recipient', 'messages', ['sender_id', 'recipient_id'])


def downgrade() -> None:
    op.drop_index('ix_messages_sender_recipient', table_name='messages')
    op.drop_index('ix_messages_trade_id_created_at', table_name='messages')
    op.drop_table('messages')
    op.drop_index('ix_ratings_rated_user_id', table_name='ratings')
    op.drop_table('ratings')
    op.drop_index('ix_transactions_trade_id', table_name='transactions')
    op.drop_index('ix_transactions_user_id_created_at', table_name='transactions')
    op.drop_table('transactions')
    op.drop_index('ix_trades_status_deadline', table_name='trades')
    op.drop_index('ix_trades_seller_id', table_name='trades')
    op.drop_index('ix_trades_buyer_id', table_name='trades')
    op.drop_table('trades')
    op.drop_index('ix_offers_side_status', table_name='offers')
    op.drop_index('ix_offers_owner_id', table_name='offers')
    op.drop_table('offers')
    op.drop_index(op.f('ix_users_email'), table_name='users')
    op.drop_table('users')
