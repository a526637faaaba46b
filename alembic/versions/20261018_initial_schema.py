"""Initial schema: profiles, products, generated images and payments

Revision ID: a1b2c3d4e5f6
Revises:
Create Date: 2026-10-18

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = 'a1b2c3d4e5f6'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create all tables."""
    op.create_table(
        'profiles',
        sa.Column('id', sa.String(36), nullable=False),
        sa.Column('username', sa.String(255), nullable=True),
        sa.Column('full_name', sa.String(255), nullable=True),
        sa.Column('token_balance', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint('token_balance >= 0', name='ck_profiles_token_balance_non_negative'),
        sa.PrimaryKeyConstraint('id'),
    )

    op.create_table(
        'products',
        sa.Column('id', sa.String(36), nullable=False),
        sa.Column('user_id', sa.String(36), nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('mime_type', sa.String(50), nullable=False),
        sa.Column('image_path', sa.String(500), nullable=False),
        sa.Column('is_logo', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.ForeignKeyConstraint(['user_id'], ['profiles.id'], ),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_products_user_id', 'products', ['user_id'])

    op.create_table(
        'generated_images',
        sa.Column('id', sa.String(36), nullable=False),
        sa.Column('user_id', sa.String(36), nullable=False),
        sa.Column('prompt', sa.String(4000), nullable=False),
        sa.Column('image_path', sa.String(500), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.ForeignKeyConstraint(['user_id'], ['profiles.id'], ),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_generated_images_user_id', 'generated_images', ['user_id'])

    op.create_table(
        'payments',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.String(36), nullable=False),
        sa.Column('yookassa_payment_id', sa.String(64), nullable=False),
        sa.Column('package', sa.String(20), nullable=False),
        sa.Column('tokens_amount', sa.Integer(), nullable=False),
        sa.Column('amount_value', sa.String(20), nullable=False),
        sa.Column('status', sa.String(30), nullable=False, server_default='pending'),
        sa.Column('paid', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['user_id'], ['profiles.id'], ),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_payments_yookassa_payment_id', 'payments', ['yookassa_payment_id'], unique=True)
    op.create_index('ix_payments_user_id', 'payments', ['user_id'])


def downgrade() -> None:
    """Drop all tables."""
    op.drop_index('ix_payments_user_id', table_name='payments')
    op.drop_index('ix_payments_yookassa_payment_id', table_name='payments')
    op.drop_table('payments')
    op.drop_index('ix_generated_images_user_id', table_name='generated_images')
    op.drop_table('generated_images')
    op.drop_index('ix_products_user_id', table_name='products')
    op.drop_table('products')
    op.drop_table('profiles')
