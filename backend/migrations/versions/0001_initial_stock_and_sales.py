"""initial schema: products, stock, sales, sale_lines

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-19 00:00:00.000000

- products: catalog master with live price and low-stock threshold
- stock: one row per product, quantity CHECK >= 0
- sales / sale_lines: append-only ledger, unit price frozen per line
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '0001_initial'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        'products',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('price_cents', sa.Integer(), nullable=False),
        sa.Column('min_stock', sa.Integer(), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.CheckConstraint('price_cents >= 0', name='ck_products_price_nonnegative'),
        sa.CheckConstraint('min_stock >= 0', name='ck_products_min_stock_nonnegative'),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_products_active_name', 'products', ['is_active', 'name'], unique=False)

    op.create_table(
        'stock',
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.CheckConstraint('quantity >= 0', name='ck_stock_quantity_nonnegative'),
        sa.ForeignKeyConstraint(['product_id'], ['products.id']),
        sa.PrimaryKeyConstraint('product_id'),
    )
    op.create_index('ix_stock_updated_at', 'stock', ['updated_at'], unique=False)

    op.create_table(
        'sales',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.String(length=64), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('total_cents', sa.Integer(), nullable=False),
        sa.CheckConstraint('total_cents >= 0', name='ck_sales_total_nonnegative'),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_sales_user_id', 'sales', ['user_id'], unique=False)
    op.create_index('ix_sales_created_at', 'sales', ['created_at'], unique=False)
    op.create_index('ix_sales_user_created', 'sales', ['user_id', 'created_at'], unique=False)

    op.create_table(
        'sale_lines',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('sale_id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('unit_price_cents', sa.Integer(), nullable=False),
        sa.Column('line_total_cents', sa.Integer(), nullable=False),
        sa.CheckConstraint('quantity > 0', name='ck_sale_lines_quantity_positive'),
        sa.ForeignKeyConstraint(['sale_id'], ['sales.id']),
        sa.ForeignKeyConstraint(['product_id'], ['products.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_sale_lines_sale_id', 'sale_lines', ['sale_id'], unique=False)
    op.create_index('ix_sale_lines_product', 'sale_lines', ['product_id'], unique=False)


def downgrade():
    op.drop_index('ix_sale_lines_product', table_name='sale_lines')
    op.drop_index('ix_sale_lines_sale_id', table_name='sale_lines')
    op.drop_table('sale_lines')
    op.drop_index('ix_sales_user_created', table_name='sales')
    op.drop_index('ix_sales_created_at', table_name='sales')
    op.drop_index('ix_sales_user_id', table_name='sales')
    op.drop_table('sales')
    op.drop_index('ix_stock_updated_at', table_name='stock')
    op.drop_table('stock')
    op.drop_index('ix_products_active_name', table_name='products')
    op.drop_table('products')
