"""create_delay_tasks

Revision ID: 4f1c2a9d7e31
Revises:
Create Date: 2026-10-17 09:12:44.108314

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

from delayqueue.config import get_settings


# revision identifiers, used by Alembic.
revision: str = '4f1c2a9d7e31'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create the task table named by TASK_TABLE and its ready-scan index"""
    table = get_settings().TASK_TABLE
    op.create_table(
        table,
        sa.Column('task_id', sa.String(length=64), nullable=False),
        sa.Column('task_name', sa.String(length=128), nullable=True),
        sa.Column('task_service', sa.String(length=128), nullable=False),
        sa.Column('params_json', sa.Text(), nullable=True),
        sa.Column('run_at', sa.DateTime(), nullable=False),
        sa.Column('timeout', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('state', sa.String(length=16), nullable=False, server_default='ready'),
        sa.Column('result', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.Column('start_time', sa.DateTime(), nullable=True),
        sa.Column('end_time', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('task_id'),
    )
    with op.batch_alter_table(table, schema=None) as batch_op:
        batch_op.create_index(f'ix_{table}_task_id', ['task_id'], unique=False)
        batch_op.create_index(f'ix_{table}_state_run_at', ['state', 'run_at'], unique=False)


def downgrade() -> None:
    """Drop the task table"""
    table = get_settings().TASK_TABLE
    with op.batch_alter_table(table, schema=None) as batch_op:
        batch_op.drop_index(f'ix_{table}_state_run_at')
        batch_op.drop_index(f'ix_{table}_task_id')

    op.drop_table(table)
