"""Portal core: tenants, principals, invoices, file assets, shipments, event logs

Revision ID: p001_portal_core
Revises:
Create Date: 2026-10-19

This migration adds:
1. organizations / users / projects (tenant boundary and principals)
2. invoices + invoice_events
3. file_assets + approval_events, with the partial unique index that allows
   at most one current version per chain
4. shipments + shipment_events
5. security_events (denied access and failed system-triggered attempts)
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = 'p001_portal_core'
down_revision = None
branch_labels = None
depends_on = None


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
    ]


def upgrade():
    # ==========================================================================
    # 1. TENANCY
    # ==========================================================================
    op.create_table('organizations',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('kind', sa.String(length=20), nullable=False),
        sa.Column('contact_email', sa.String(length=255), nullable=True),
        sa.Column('contact_phone', sa.String(length=50), nullable=True),
        *_timestamps(),
        sa.CheckConstraint("kind IN ('internal', 'customer')", name='ck_organizations_kind'),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('organizations', schema=None) as batch_op:
        batch_op.create_index('ix_organizations_kind', ['kind'], unique=False)

    op.create_table('users',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('organization_id', sa.Integer(), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('role', sa.String(length=20), nullable=False),
        sa.Column('external_identity', sa.String(length=255), nullable=True),
        *_timestamps(),
        sa.CheckConstraint("role IN ('admin', 'staff', 'customer')", name='ck_users_role'),
        sa.ForeignKeyConstraint(['organization_id'], ['organizations.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('users', schema=None) as batch_op:
        batch_op.create_index('ix_users_org_id', ['organization_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_users_email'), ['email'], unique=True)
        batch_op.create_index(batch_op.f('ix_users_external_identity'), ['external_identity'], unique=True)

    op.create_table('projects',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('organization_id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='active'),
        sa.Column('created_by', sa.Integer(), nullable=False),
        *_timestamps(),
        sa.CheckConstraint("status IN ('active', 'on_hold', 'completed', 'cancelled')", name='ck_projects_status'),
        sa.ForeignKeyConstraint(['organization_id'], ['organizations.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['created_by'], ['users.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('projects', schema=None) as batch_op:
        batch_op.create_index('ix_projects_org_status', ['organization_id', 'status'], unique=False)
        batch_op.create_index(batch_op.f('ix_projects_organization_id'), ['organization_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_projects_created_by'), ['created_by'], unique=False)

    # ==========================================================================
    # 2. INVOICES
    # ==========================================================================
    op.create_table('invoices',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('project_id', sa.Integer(), nullable=False),
        sa.Column('organization_id', sa.Integer(), nullable=False),
        sa.Column('invoice_number', sa.String(length=50), nullable=False),
        sa.Column('issue_date', sa.Date(), nullable=False),
        sa.Column('due_date', sa.Date(), nullable=False),
        sa.Column('amount_subtotal', sa.Integer(), nullable=False),
        sa.Column('amount_tax', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('amount_total', sa.Integer(), nullable=False),
        sa.Column('amount_paid', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('deposit_required', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('deposit_amount', sa.Integer(), nullable=True),
        sa.Column('deposit_paid', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('deposit_paid_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='draft'),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('created_by', sa.Integer(), nullable=False),
        *_timestamps(),
        sa.CheckConstraint('amount_subtotal >= 0', name='ck_invoices_subtotal_nonneg'),
        sa.CheckConstraint('amount_tax >= 0', name='ck_invoices_tax_nonneg'),
        sa.CheckConstraint('amount_total >= 0', name='ck_invoices_total_nonneg'),
        sa.CheckConstraint('amount_paid >= 0', name='ck_invoices_paid_nonneg'),
        sa.CheckConstraint('amount_paid <= amount_total', name='ck_invoices_paid_le_total'),
        sa.CheckConstraint('deposit_required = false OR deposit_amount IS NOT NULL', name='ck_invoices_deposit_amount_required'),
        sa.CheckConstraint('deposit_amount IS NULL OR deposit_amount >= 0', name='ck_invoices_deposit_amount_nonneg'),
        sa.CheckConstraint('deposit_paid = false OR deposit_paid_at IS NOT NULL', name='ck_invoices_deposit_paid_at_set'),
        sa.CheckConstraint("status IN ('draft', 'sent', 'paid', 'overdue', 'cancelled')", name='ck_invoices_status'),
        sa.ForeignKeyConstraint(['project_id'], ['projects.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['organization_id'], ['organizations.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['created_by'], ['users.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('invoices', schema=None) as batch_op:
        batch_op.create_index('ix_invoices_org_status', ['organization_id', 'status'], unique=False)
        batch_op.create_index('ix_invoices_due_date', ['due_date'], unique=False)
        batch_op.create_index(batch_op.f('ix_invoices_project_id'), ['project_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_invoices_organization_id'), ['organization_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_invoices_invoice_number'), ['invoice_number'], unique=True)
        batch_op.create_index(batch_op.f('ix_invoices_created_by'), ['created_by'], unique=False)

    op.create_table('invoice_events',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('invoice_id', sa.Integer(), nullable=False),
        sa.Column('event_type', sa.String(length=32), nullable=False),
        sa.Column('event_data', sa.JSON(), nullable=True),
        sa.Column('triggered_by', sa.Integer(), nullable=True),
        sa.Column('triggered_by_system', sa.String(length=50), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.ForeignKeyConstraint(['invoice_id'], ['invoices.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('invoice_events', schema=None) as batch_op:
        batch_op.create_index('ix_invoice_events_invoice_created', ['invoice_id', 'created_at'], unique=False)
        batch_op.create_index(batch_op.f('ix_invoice_events_invoice_id'), ['invoice_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_invoice_events_event_type'), ['event_type'], unique=False)
        batch_op.create_index(batch_op.f('ix_invoice_events_triggered_by'), ['triggered_by'], unique=False)
        batch_op.create_index(batch_op.f('ix_invoice_events_created_at'), ['created_at'], unique=False)

    # ==========================================================================
    # 3. FILE ASSETS (proofs and versions)
    # ==========================================================================
    op.create_table('file_assets',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('project_id', sa.Integer(), nullable=False),
        sa.Column('organization_id', sa.Integer(), nullable=False),
        sa.Column('file_name', sa.String(length=255), nullable=False),
        sa.Column('file_size_bytes', sa.Integer(), nullable=False),
        sa.Column('file_type', sa.String(length=20), nullable=False),
        sa.Column('mime_type', sa.String(length=100), nullable=False),
        sa.Column('storage_bucket', sa.String(length=100), nullable=False, server_default='file-assets'),
        sa.Column('storage_path', sa.String(length=500), nullable=False),
        sa.Column('version_number', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('is_current_version', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('parent_file_id', sa.Integer(), nullable=True),
        sa.Column('root_file_id', sa.Integer(), nullable=True),
        sa.Column('approval_status', sa.String(length=20), nullable=True),
        sa.Column('approved_by', sa.Integer(), nullable=True),
        sa.Column('approved_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('rejection_reason', sa.Text(), nullable=True),
        sa.Column('uploaded_by', sa.Integer(), nullable=False),
        sa.Column('notes', sa.Text(), nullable=True),
        *_timestamps(),
        sa.CheckConstraint("file_type IN ('proof', 'artwork', 'reference', 'attachment')", name='ck_file_assets_file_type'),
        sa.CheckConstraint(
            "approval_status IS NULL OR approval_status IN ('pending', 'approved', 'rejected', 'revision', 'final')",
            name='ck_file_assets_approval_status',
        ),
        sa.CheckConstraint('version_number >= 1', name='ck_file_assets_version_positive'),
        sa.ForeignKeyConstraint(['project_id'], ['projects.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['organization_id'], ['organizations.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['parent_file_id'], ['file_assets.id'], ondelete='SET NULL'),
        sa.ForeignKeyConstraint(['approved_by'], ['users.id'], ),
        sa.ForeignKeyConstraint(['uploaded_by'], ['users.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('file_assets', schema=None) as batch_op:
        batch_op.create_index('ix_file_assets_org_type_status', ['organization_id', 'file_type', 'approval_status'], unique=False)
        batch_op.create_index(batch_op.f('ix_file_assets_project_id'), ['project_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_file_assets_organization_id'), ['organization_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_file_assets_file_type'), ['file_type'], unique=False)
        batch_op.create_index(batch_op.f('ix_file_assets_parent_file_id'), ['parent_file_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_file_assets_root_file_id'), ['root_file_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_file_assets_uploaded_by'), ['uploaded_by'], unique=False)
        batch_op.create_index(batch_op.f('ix_file_assets_created_at'), ['created_at'], unique=False)

    # At most one current version per chain
    op.create_index(
        'uq_file_assets_current_per_chain',
        'file_assets',
        ['root_file_id'],
        unique=True,
        sqlite_where=sa.text('is_current_version = 1'),
        postgresql_where=sa.text('is_current_version'),
    )

    op.create_table('approval_events',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('file_asset_id', sa.Integer(), nullable=False),
        sa.Column('event_type', sa.String(length=50), nullable=False),
        sa.Column('event_data', sa.JSON(), nullable=True),
        sa.Column('triggered_by', sa.Integer(), nullable=True),
        sa.Column('triggered_by_system', sa.String(length=50), nullable=True),
        sa.Column('notification_sent', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('notification_sent_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.ForeignKeyConstraint(['file_asset_id'], ['file_assets.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('approval_events', schema=None) as batch_op:
        batch_op.create_index('ix_approval_events_file_created', ['file_asset_id', 'created_at'], unique=False)
        batch_op.create_index(batch_op.f('ix_approval_events_file_asset_id'), ['file_asset_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_approval_events_event_type'), ['event_type'], unique=False)
        batch_op.create_index(batch_op.f('ix_approval_events_triggered_by'), ['triggered_by'], unique=False)
        batch_op.create_index(batch_op.f('ix_approval_events_created_at'), ['created_at'], unique=False)

    # ==========================================================================
    # 4. SHIPMENTS
    # ==========================================================================
    op.create_table('shipments',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('project_id', sa.Integer(), nullable=False),
        sa.Column('organization_id', sa.Integer(), nullable=False),
        sa.Column('shipment_number', sa.String(length=50), nullable=False),
        sa.Column('carrier', sa.String(length=20), nullable=False),
        sa.Column('tracking_number', sa.String(length=100), nullable=True),
        sa.Column('tracking_url', sa.String(length=500), nullable=True),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='pending'),
        sa.Column('status_updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('expected_ship_date', sa.Date(), nullable=True),
        sa.Column('actual_ship_date', sa.Date(), nullable=True),
        sa.Column('expected_delivery_date', sa.Date(), nullable=True),
        sa.Column('actual_delivery_date', sa.Date(), nullable=True),
        sa.Column('ship_from_address', sa.JSON(), nullable=True),
        sa.Column('ship_to_address', sa.JSON(), nullable=False),
        sa.Column('package_count', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('weight_lbs', sa.Numeric(precision=10, scale=2), nullable=True),
        sa.Column('dimensions_inches', sa.String(length=50), nullable=True),
        sa.Column('shipping_cost_cents', sa.Integer(), nullable=True),
        sa.Column('insurance_cost_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('internal_notes', sa.Text(), nullable=True),
        sa.Column('created_by', sa.Integer(), nullable=False),
        *_timestamps(),
        sa.CheckConstraint(
            "status IN ('pending', 'preparing', 'shipped', 'in_transit', 'out_for_delivery', "
            "'delivered', 'failed', 'cancelled', 'returned')",
            name='ck_shipments_status',
        ),
        sa.CheckConstraint("carrier IN ('usps', 'ups', 'fedex', 'dhl', 'other', 'hand_delivery')", name='ck_shipments_carrier'),
        sa.CheckConstraint('package_count >= 1', name='ck_shipments_package_count'),
        sa.CheckConstraint("status != 'delivered' OR actual_delivery_date IS NOT NULL", name='ck_shipments_delivered_has_date'),
        sa.ForeignKeyConstraint(['project_id'], ['projects.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['organization_id'], ['organizations.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['created_by'], ['users.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('shipments', schema=None) as batch_op:
        batch_op.create_index('ix_shipments_org_status', ['organization_id', 'status'], unique=False)
        batch_op.create_index('ix_shipments_expected_delivery', ['expected_delivery_date'], unique=False)
        batch_op.create_index(batch_op.f('ix_shipments_project_id'), ['project_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_shipments_organization_id'), ['organization_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_shipments_shipment_number'), ['shipment_number'], unique=True)
        batch_op.create_index(batch_op.f('ix_shipments_tracking_number'), ['tracking_number'], unique=False)
        batch_op.create_index(batch_op.f('ix_shipments_created_by'), ['created_by'], unique=False)

    op.create_table('shipment_events',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('shipment_id', sa.Integer(), nullable=False),
        sa.Column('event_type', sa.String(length=50), nullable=False),
        sa.Column('event_data', sa.JSON(), nullable=True),
        sa.Column('old_status', sa.String(length=20), nullable=True),
        sa.Column('new_status', sa.String(length=20), nullable=True),
        sa.Column('location', sa.String(length=255), nullable=True),
        sa.Column('triggered_by', sa.Integer(), nullable=True),
        sa.Column('triggered_by_system', sa.String(length=50), nullable=True),
        sa.Column('notification_sent', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('notification_sent_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.ForeignKeyConstraint(['shipment_id'], ['shipments.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('shipment_events', schema=None) as batch_op:
        batch_op.create_index('ix_shipment_events_shipment_created', ['shipment_id', 'created_at'], unique=False)
        batch_op.create_index(batch_op.f('ix_shipment_events_shipment_id'), ['shipment_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_shipment_events_event_type'), ['event_type'], unique=False)
        batch_op.create_index(batch_op.f('ix_shipment_events_triggered_by'), ['triggered_by'], unique=False)
        batch_op.create_index(batch_op.f('ix_shipment_events_created_at'), ['created_at'], unique=False)

    # ==========================================================================
    # 5. SECURITY EVENTS
    # ==========================================================================
    op.create_table('security_events',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('organization_id', sa.Integer(), nullable=True),
        sa.Column('user_id', sa.Integer(), nullable=True),
        sa.Column('system_name', sa.String(length=50), nullable=True),
        sa.Column('event_type', sa.String(length=64), nullable=False),
        sa.Column('resource', sa.String(length=255), nullable=True),
        sa.Column('action', sa.String(length=64), nullable=True),
        sa.Column('entity_id', sa.Integer(), nullable=True),
        sa.Column('success', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('reason', sa.Text(), nullable=True),
        sa.Column('occurred_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('security_events', schema=None) as batch_op:
        batch_op.create_index('ix_security_events_user_type', ['user_id', 'event_type'], unique=False)
        batch_op.create_index('ix_security_events_org_occurred', ['organization_id', 'occurred_at'], unique=False)
        batch_op.create_index(batch_op.f('ix_security_events_organization_id'), ['organization_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_security_events_user_id'), ['user_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_security_events_event_type'), ['event_type'], unique=False)
        batch_op.create_index(batch_op.f('ix_security_events_success'), ['success'], unique=False)
        batch_op.create_index(batch_op.f('ix_security_events_occurred_at'), ['occurred_at'], unique=False)


def downgrade():
    op.drop_table('security_events')
    op.drop_table('shipment_events')
    op.drop_table('shipments')
    op.drop_table('approval_events')
    op.drop_index('uq_file_assets_current_per_chain', table_name='file_assets')
    op.drop_table('file_assets')
    op.drop_table('invoice_events')
    op.drop_table('invoices')
    op.drop_table('projects')
    op.drop_table('users')
    op.drop_table('organizations')
