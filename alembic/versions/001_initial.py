"""Initial migration

Revision ID: 001_initial
Revises:
Create Date: 2026-09-28 00:00:00.000000

"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '001_initial'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        'products',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('image_url', sa.Text(), nullable=False),
        sa.Column('link', sa.Text(), nullable=False),
        sa.Column('category', sa.String(length=128), nullable=False),
        sa.Column('subcategory', sa.String(length=128), nullable=False),
        sa.Column('image_path', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('link', name='uq_products_link')
    )
    op.create_index('ix_products_category', 'products', ['category'])


def downgrade() -> None:
    op.drop_index('ix_products_category', table_name='products')
    op.drop_table('products')
