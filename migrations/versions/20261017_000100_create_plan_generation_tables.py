"""create users, profiles, fitness plans, plan generation progress and system settings

Revision ID: 20261017_000100
Revises:
Create Date: 2026-10-17 00:01:00.000000

"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '20261017_000100'
down_revision = None
branch_labels = None
depends_on = None

gender_type = sa.Enum('male', 'female', 'other', name='gender_type')


def upgrade():
    op.create_table(
        'users',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('email', sa.String(), nullable=False),
        sa.Column('username', sa.String(), nullable=False),
        sa.Column('full_name', sa.String(), nullable=True),
        sa.Column('hashed_password', sa.String(), nullable=True),
        sa.Column('role', sa.String(length=20), nullable=False, server_default='client'),
        sa.Column('is_active', sa.Boolean(), server_default=sa.false()),
        sa.Column('created_at', sa.DateTime()),
        sa.Column('updated_at', sa.DateTime()),
    )
    op.create_index('ix_users_id', 'users', ['id'])
    op.create_index('ix_users_email', 'users', ['email'], unique=True)
    op.create_index('ix_users_username', 'users', ['username'], unique=True)

    op.create_table(
        'user_profiles',
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id', ondelete='CASCADE'), primary_key=True),
        sa.Column('first_name', sa.String(length=50)),
        sa.Column('last_name', sa.String(length=50)),
        sa.Column('gender', gender_type),
        sa.Column('height_cm', sa.Numeric(6, 2)),
        sa.Column('weight_kg', sa.Numeric(6, 2)),
        sa.Column('date_of_birth', sa.Date()),
        sa.Column('dietary_restrictions', sa.JSON()),
        sa.Column('allergies', sa.JSON()),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    op.create_table(
        'fitness_plans',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('preferences', sa.JSON(), nullable=False),
        sa.Column('workout_plan', sa.JSON(), nullable=False),
        sa.Column('meal_plan', sa.JSON(), nullable=False),
        sa.Column('grocery_list', sa.JSON()),
        sa.Column('nutrition_data', sa.JSON()),
        sa.Column('summary', sa.JSON()),
        sa.Column('weekly_budget', sa.Numeric(10, 2)),
        sa.Column('budget_currency', sa.String(length=3)),
        sa.Column('actual_cost', sa.Numeric(10, 2)),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('deactivated_at', sa.DateTime(timezone=True)),
        sa.Column('deactivation_reason', sa.Text()),
    )
    op.create_index('ix_fitness_plans_user_id', 'fitness_plans', ['user_id'])
    op.create_index(
        'uq_fitness_plans_user_active',
        'fitness_plans',
        ['user_id'],
        unique=True,
        postgresql_where=sa.text('is_active'),
    )

    op.create_table(
        'plan_generation_progress',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False, unique=True),
        sa.Column('generation_id', sa.String(length=36), nullable=False),
        sa.Column('status', sa.String(length=30), nullable=False, server_default='running'),
        sa.Column('is_generating', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('is_complete', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('current_step', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('total_steps', sa.Integer(), nullable=False, server_default='6'),
        sa.Column('step_message', sa.Text()),
        sa.Column('estimated_time_remaining', sa.Integer()),
        sa.Column('error_message', sa.Text()),
        sa.Column('retry_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('partial_result_data', sa.JSON()),
        sa.Column('input_data', sa.JSON()),
        sa.Column('started_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )

    op.create_table(
        'system_settings',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('key', sa.String(length=100), nullable=False, unique=True),
        sa.Column('value', sa.Text(), nullable=False),
        sa.Column('description', sa.Text()),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )


def downgrade():
    op.drop_table('system_settings')
    op.drop_table('plan_generation_progress')
    op.drop_index('uq_fitness_plans_user_active', table_name='fitness_plans')
    op.drop_index('ix_fitness_plans_user_id', table_name='fitness_plans')
    op.drop_table('fitness_plans')
    op.drop_table('user_profiles')
    gender_type.drop(op.get_bind(), checkfirst=True)
    op.drop_index('ix_users_username', table_name='users')
    op.drop_index('ix_users_email', table_name='users')
    op.drop_index('ix_users_id', table_name='users')
    op.drop_table('users')
