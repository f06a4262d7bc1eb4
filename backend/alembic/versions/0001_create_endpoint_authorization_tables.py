"""Create endpoint registry, role grants and permission change audit log

Revision ID: 0001
Revises:
Create Date: 2026-10-17 09:00:00.000000

Endpoints are soft-deleted through is_active, so the audit log keeps its
reference; the FK still falls back to NULL if a row is ever removed by hand.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

revision: str | None = '0001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Apply schema changes."""
    op.create_table(
        'endpoint_registry',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('http_method', sa.String(length=10), nullable=False),
        sa.Column('route', sa.String(length=500), nullable=False),
        sa.Column('endpoint_name', sa.String(length=200), nullable=False),
        sa.Column('description', sa.String(length=500), nullable=True),
        sa.Column('category', sa.String(length=100), nullable=True),
        sa.Column('is_active', sa.Boolean(), server_default='true', nullable=False),
        sa.Column('created_on', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('modified_on', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id', name=op.f('pk_endpoint_registry')),
        sa.UniqueConstraint('http_method', 'route', name='uq_endpoint_registry_http_method_route')
    )
    op.create_index('ix_endpoint_registry_category', 'endpoint_registry', ['category'], unique=False)

    op.create_table(
        'endpoint_role_permissions',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('endpoint_id', sa.Integer(), nullable=False),
        sa.Column('role_name', sa.String(length=50), nullable=False),
        sa.Column('created_by', sa.String(length=255), nullable=True),
        sa.Column('created_on', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.ForeignKeyConstraint(
            ['endpoint_id'], ['endpoint_registry.id'],
            name=op.f('fk_endpoint_role_permissions_endpoint_id_endpoint_registry'),
            ondelete='CASCADE',
        ),
        sa.PrimaryKeyConstraint('id', name=op.f('pk_endpoint_role_permissions')),
        sa.UniqueConstraint('endpoint_id', 'role_name', name='uq_endpoint_role_permissions_endpoint_id_role_name')
    )
    op.create_index('ix_endpoint_role_permissions_endpoint_id', 'endpoint_role_permissions', ['endpoint_id'], unique=False)
    op.create_index('ix_endpoint_role_permissions_role_name', 'endpoint_role_permissions', ['role_name'], unique=False)

    op.create_table(
        'permission_change_audit_log',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('endpoint_id', sa.Integer(), nullable=True),
        sa.Column('changed_by', sa.String(length=255), nullable=False),
        sa.Column('change_type', sa.String(length=50), nullable=False),
        sa.Column('old_value', sa.Text(), nullable=True),
        sa.Column('new_value', sa.Text(), nullable=True),
        sa.Column('change_reason', sa.String(length=500), nullable=True),
        sa.Column('changed_on', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.ForeignKeyConstraint(
            ['endpoint_id'], ['endpoint_registry.id'],
            name=op.f('fk_permission_change_audit_log_endpoint_id_endpoint_registry'),
            ondelete='SET NULL',
        ),
        sa.PrimaryKeyConstraint('id', name=op.f('pk_permission_change_audit_log'))
    )
    op.create_index('ix_permission_change_audit_log_endpoint_id', 'permission_change_audit_log', ['endpoint_id'], unique=False)
    op.create_index('ix_permission_change_audit_log_change_type', 'permission_change_audit_log', ['change_type'], unique=False)
    op.create_index('ix_permission_change_audit_log_changed_on', 'permission_change_audit_log', ['changed_on'], unique=False)


def downgrade() -> None:
    """Revert schema changes."""
    op.drop_index('ix_permission_change_audit_log_changed_on', table_name='permission_change_audit_log')
    op.drop_index('ix_permission_change_audit_log_change_type', table_name='permission_change_audit_log')
    op.drop_index('ix_permission_change_audit_log_endpoint_id', table_name='permission_change_audit_log')
    op.drop_table('permission_change_audit_log')

    op.drop_index('ix_endpoint_role_permissions_role_name', table_name='endpoint_role_permissions')
    op.drop_index('ix_endpoint_role_permissions_endpoint_id', table_name='endpoint_role_permissions')
    op.drop_table('endpoint_role_permissions')

    op.drop_index('ix_endpoint_registry_category', table_name='endpoint_registry')
    op.drop_table('endpoint_registry')
