"""create menu, pizza day, slot, reservation and order tables

Revision ID: create_core_tables
Revises:
Create Date: 2026-10-19
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


revision: str = 'create_core_tables'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'categories',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('name', sa.String(100), nullable=False),
        sa.Column('sort_order', sa.Integer(), server_default='0', nullable=False),
        sa.Column('is_topping', sa.Boolean(), server_default='false', nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_categories_sort_order', 'categories', ['sort_order'])

    op.create_table(
        'menu_items',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('category_id', sa.Integer(), sa.ForeignKey('categories.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('price', sa.DECIMAL(10, 2), nullable=False),
        sa.Column('weight_grams', sa.Integer(), nullable=True),
        sa.Column('active', sa.Boolean(), server_default='true', nullable=False),
        sa.Column('sort_order', sa.Integer(), server_default='0', nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_menu_items_category_id', 'menu_items', ['category_id'])
    op.create_index('ix_menu_items_category_active', 'menu_items', ['category_id', 'active'])

    op.create_table(
        'pizza_days',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('date', sa.Date(), nullable=False),
        sa.Column('active', sa.Boolean(), server_default='true', nullable=False),
        sa.Column('note', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('date'),
    )
    op.create_index('ix_pizza_days_active_date', 'pizza_days', ['active', 'date'])

    op.create_table(
        'time_slots',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('pizza_day_id', sa.Integer(), sa.ForeignKey('pizza_days.id', ondelete='CASCADE'), nullable=False),
        sa.Column('time_from', sa.Time(), nullable=False),
        sa.Column('time_to', sa.Time(), nullable=False),
        sa.Column('capacity', sa.Integer(), nullable=False),
        sa.Column('committed_count', sa.Integer(), server_default='0', nullable=False),
        sa.Column('is_open', sa.Boolean(), server_default='true', nullable=False),
        sa.Column('is_frozen', sa.Boolean(), server_default='false', nullable=False),
        sa.Column('frozen_reason', sa.String(255), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint('capacity > 0', name='ck_time_slots_capacity_positive'),
        sa.CheckConstraint(
            'committed_count >= 0 AND committed_count <= capacity',
            name='ck_time_slots_committed_within_capacity',
        ),
    )
    op.create_index('ix_time_slots_pizza_day_id', 'time_slots', ['pizza_day_id'])

    op.create_table(
        'reservations',
        sa.Column('id', sa.String(36), nullable=False),
        sa.Column('time_slot_id', sa.Integer(), sa.ForeignKey('time_slots.id', ondelete='CASCADE'), nullable=False),
        sa.Column('amount', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(20), nullable=False),
        sa.Column('order_id', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('bound_at', sa.DateTime(), nullable=True),
        sa.Column('released_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint('amount > 0', name='ck_reservations_amount_positive'),
    )
    op.create_index('ix_reservations_slot_status', 'reservations', ['time_slot_id', 'status'])
    op.create_index('ix_reservations_status_created', 'reservations', ['status', 'created_at'])

    op.create_table(
        'orders',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('public_id', sa.String(36), nullable=False),
        sa.Column('time_slot_id', sa.Integer(), sa.ForeignKey('time_slots.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('pizza_day_id', sa.Integer(), sa.ForeignKey('pizza_days.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('reservation_id', sa.String(36), sa.ForeignKey('reservations.id', ondelete='SET NULL'), nullable=True),
        sa.Column('customer_name', sa.String(100), nullable=False),
        sa.Column('customer_phone', sa.String(20), nullable=False),
        sa.Column('customer_email', sa.String(255), nullable=True),
        sa.Column('customer_address', sa.Text(), nullable=True),
        sa.Column('customer_note', sa.Text(), nullable=True),
        sa.Column('status', sa.String(20), nullable=False),
        sa.Column('total_price', sa.DECIMAL(10, 2), nullable=False),
        sa.Column('pizza_count', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('public_id'),
    )
    op.create_index('ix_orders_pizza_day_id', 'orders', ['pizza_day_id'])
    op.create_index('ix_orders_time_slot_id', 'orders', ['time_slot_id'])
    op.create_index('ix_orders_status', 'orders', ['status'])
    op.create_index('ix_orders_created_at', 'orders', ['created_at'])
    op.create_index('ix_orders_reservation_id', 'orders', ['reservation_id'])
    op.create_index('ix_orders_day_status', 'orders', ['pizza_day_id', 'status'])

    op.create_table(
        'order_items',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('order_id', sa.Integer(), sa.ForeignKey('orders.id', ondelete='CASCADE'), nullable=False),
        sa.Column('menu_item_id', sa.Integer(), sa.ForeignKey('menu_items.id', ondelete='SET NULL'), nullable=True),
        sa.Column('item_name', sa.String(200), nullable=False),
        sa.Column('item_price', sa.DECIMAL(10, 2), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('is_topping', sa.Boolean(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_order_items_order_id', 'order_items', ['order_id'])


def downgrade() -> None:
    op.drop_index('ix_order_items_order_id', 'order_items')
    op.drop_table('order_items')
    for index in (
        'ix_orders_day_status',
        'ix_orders_reservation_id',
        'ix_orders_created_at',
        'ix_orders_status',
        'ix_orders_time_slot_id',
        'ix_orders_pizza_day_id',
    ):
        op.drop_index(index, 'orders')
    op.drop_table('orders')
    op.drop_index('ix_reservations_status_created', 'reservations')
    op.drop_index('ix_reservations_slot_status', 'reservations')
    op.drop_table('reservations')
    op.drop_index('ix_time_slots_pizza_day_id', 'time_slots')
    op.drop_table('time_slots')
    op.drop_index('ix_pizza_days_active_date', 'pizza_days')
    op.drop_table('pizza_days')
    op.drop_index('ix_menu_items_category_active', 'menu_items')
    op.drop_index('ix_menu_items_category_id', 'menu_items')
    op.drop_table('menu_items')
    op.drop_index('ix_categories_sort_order', 'categories')
    op.drop_table('categories')
