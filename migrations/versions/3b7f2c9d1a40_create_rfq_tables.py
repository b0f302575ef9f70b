"""create rfq tables

Revision ID: 3b7f2c9d1a40
Revises:
Create Date: 2026-10-18 09:12:44.118302

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
import sqlmodel


# revision identifiers, used by Alembic.
revision: str = '3b7f2c9d1a40'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


# SQLModel persists str enums by member NAME.
rfq_status = sa.Enum('DRAFT', 'OPEN', 'QUOTED', 'ACCEPTED', 'ORDERED',
                     'DELIVERED', 'CANCELLED', 'EXPIRED', name='rfqstatus')
quote_status = sa.Enum('SUBMITTED', 'ACCEPTED', 'REJECTED',
                       'EXPIRED', name='quotestatus')
recipient_status = sa.Enum(
    'NOTIFIED', 'VIEWED', 'QUOTED', 'DECLINED', name='recipientstatus')
verification_tier = sa.Enum('UNVERIFIED', 'PENDING', 'VERIFIED',
                            'TRUSTED', 'PREMIUM', name='verificationtier')
notification_channel = sa.Enum(
    'EMAIL', 'WHATSAPP', 'PUSH', name='notificationchannel')
notification_event = sa.Enum('NEW_RFQ', 'QUOTE_SUBMITTED', 'QUOTE_ACCEPTED',
                             'QUOTE_REJECTED', name='notificationevent')
notification_subject = sa.Enum(
    'RFQ', 'QUOTE', 'ACCEPTANCE', name='notificationsubject')
outbox_status = sa.Enum('QUEUED', 'SENT', 'FAILED', name='outboxstatus')


def upgrade():
    op.create_table(
        'supplier',
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('user_id', sa.Uuid(), nullable=True),
        sa.Column('name', sqlmodel.sql.sqltypes.AutoString(), nullable=False),
        sa.Column('location', sqlmodel.sql.sqltypes.AutoString(), nullable=True),
        sa.Column('physical_address', sqlmodel.sql.sqltypes.AutoString(), nullable=True),
        sa.Column('delivery_radius_km', sa.Integer(), nullable=True),
        sa.Column('material_categories', sa.JSON(), nullable=True),
        sa.Column('verification_status', verification_tier, nullable=False),
        sa.Column('rating', sa.Float(), nullable=True),
        sa.Column('response_rate', sa.Float(), nullable=True),
        sa.Column('contact_email', sqlmodel.sql.sqltypes.AutoString(), nullable=True),
        sa.Column('contact_phone', sqlmodel.sql.sqltypes.AutoString(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_supplier_user_id'), 'supplier', ['user_id'])
    op.create_index(op.f('ix_supplier_name'), 'supplier', ['name'])

    op.create_table(
        'userprofile',
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('full_name', sqlmodel.sql.sqltypes.AutoString(), nullable=True),
        sa.Column('email', sqlmodel.sql.sqltypes.AutoString(), nullable=True),
        sa.Column('phone_number', sqlmodel.sql.sqltypes.AutoString(), nullable=True),
        sa.Column('notify_email', sa.Boolean(), nullable=False),
        sa.Column('notify_whatsapp', sa.Boolean(), nullable=False),
        sa.Column('notify_push', sa.Boolean(), nullable=False),
        sa.Column('notify_rfq', sa.Boolean(), nullable=False),
        sa.Column('notify_quote_updates', sa.Boolean(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )

    op.create_table(
        'rfqrequest',
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('project_id', sa.Uuid(), nullable=False),
        sa.Column('user_id', sa.Uuid(), nullable=False),
        sa.Column('delivery_address', sqlmodel.sql.sqltypes.AutoString(), nullable=True),
        sa.Column('required_by', sa.Date(), nullable=True),
        sa.Column('notes', sqlmodel.sql.sqltypes.AutoString(), nullable=True),
        sa.Column('status', rfq_status, nullable=False),
        sa.Column('accepted_quote_id', sa.Uuid(), nullable=True),
        sa.Column('delivery_instructions', sqlmodel.sql.sqltypes.AutoString(), nullable=True),
        sa.Column('expires_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_rfqrequest_project_id'), 'rfqrequest', ['project_id'])
    op.create_index(op.f('ix_rfqrequest_user_id'), 'rfqrequest', ['user_id'])
    op.create_index(op.f('ix_rfqrequest_status'), 'rfqrequest', ['status'])
    op.create_index(op.f('ix_rfqrequest_expires_at'), 'rfqrequest', ['expires_at'])

    op.create_table(
        'rfqitem',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('rfq_id', sa.Uuid(), nullable=False),
        sa.Column('material_key', sqlmodel.sql.sqltypes.AutoString(), nullable=False),
        sa.Column('material_name', sqlmodel.sql.sqltypes.AutoString(), nullable=True),
        sa.Column('quantity', sa.Numeric(precision=12, scale=2), nullable=False),
        sa.Column('unit', sqlmodel.sql.sqltypes.AutoString(), nullable=True),
        sa.Column('specifications', sqlmodel.sql.sqltypes.AutoString(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['rfq_id'], ['rfqrequest.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_rfqitem_rfq_id'), 'rfqitem', ['rfq_id'])
    op.create_index(op.f('ix_rfqitem_material_key'), 'rfqitem', ['material_key'])

    op.create_table(
        'rfqrecipient',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('rfq_id', sa.Uuid(), nullable=False),
        sa.Column('supplier_id', sa.Uuid(), nullable=False),
        sa.Column('status', recipient_status, nullable=False),
        sa.Column('notification_channels', sa.JSON(), nullable=True),
        sa.Column('notified_at', sa.DateTime(), nullable=False),
        sa.Column('first_viewed_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['rfq_id'], ['rfqrequest.id']),
        sa.ForeignKeyConstraint(['supplier_id'], ['supplier.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('rfq_id', 'supplier_id'),
    )
    op.create_index(op.f('ix_rfqrecipient_rfq_id'), 'rfqrecipient', ['rfq_id'])
    op.create_index(op.f('ix_rfqrecipient_supplier_id'), 'rfqrecipient', ['supplier_id'])

    op.create_table(
        'rfqquote',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('rfq_id', sa.Uuid(), nullable=False),
        sa.Column('supplier_id', sa.Uuid(), nullable=False),
        sa.Column('total_usd', sa.Numeric(precision=12, scale=2), nullable=False),
        sa.Column('total_zwg', sa.Numeric(precision=14, scale=2), nullable=True),
        sa.Column('delivery_days', sa.Integer(), nullable=True),
        sa.Column('valid_until', sa.Date(), nullable=True),
        sa.Column('notes', sqlmodel.sql.sqltypes.AutoString(), nullable=True),
        sa.Column('status', quote_status, nullable=False),
        sa.Column('submitted_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['rfq_id'], ['rfqrequest.id']),
        sa.ForeignKeyConstraint(['supplier_id'], ['supplier.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('rfq_id', 'supplier_id'),
    )
    op.create_index(op.f('ix_rfqquote_rfq_id'), 'rfqquote', ['rfq_id'])
    op.create_index(op.f('ix_rfqquote_supplier_id'), 'rfqquote', ['supplier_id'])
    op.create_index(op.f('ix_rfqquote_status'), 'rfqquote', ['status'])

    op.create_table(
        'rfqquoteitem',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('quote_id', sa.Uuid(), nullable=False),
        sa.Column('rfq_item_id', sa.Uuid(), nullable=False),
        sa.Column('unit_price_usd', sa.Numeric(precision=12, scale=2), nullable=False),
        sa.Column('unit_price_zwg', sa.Numeric(precision=14, scale=2), nullable=True),
        sa.Column('available_quantity', sa.Numeric(precision=12, scale=2), nullable=False),
        sa.Column('notes', sqlmodel.sql.sqltypes.AutoString(), nullable=True),
        sa.ForeignKeyConstraint(['quote_id'], ['rfqquote.id']),
        sa.ForeignKeyConstraint(['rfq_item_id'], ['rfqitem.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_rfqquoteitem_quote_id'), 'rfqquoteitem', ['quote_id'])
    op.create_index(op.f('ix_rfqquoteitem_rfq_item_id'), 'rfqquoteitem', ['rfq_item_id'])

    op.create_table(
        'notificationoutbox',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('event', notification_event, nullable=False),
        sa.Column('subject_type', notification_subject, nullable=False),
        sa.Column('subject_id', sa.Uuid(), nullable=False),
        sa.Column('channel', notification_channel, nullable=False),
        sa.Column('recipient', sqlmodel.sql.sqltypes.AutoString(), nullable=False),
        sa.Column('destination', sqlmodel.sql.sqltypes.AutoString(), nullable=True),
        sa.Column('title', sqlmodel.sql.sqltypes.AutoString(), nullable=False),
        sa.Column('body', sqlmodel.sql.sqltypes.AutoString(), nullable=False),
        sa.Column('status', outbox_status, nullable=False),
        sa.Column('attempt_count', sa.Integer(), nullable=False),
        sa.Column('last_error', sqlmodel.sql.sqltypes.AutoString(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('processed_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_notificationoutbox_subject_id'), 'notificationoutbox', ['subject_id'])
    op.create_index(op.f('ix_notificationoutbox_status'), 'notificationoutbox', ['status'])
    op.create_index(op.f('ix_notificationoutbox_created_at'), 'notificationoutbox', ['created_at'])

    op.create_table(
        'notificationdeliverylog',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('outbox_id', sa.Uuid(), nullable=True),
        sa.Column('subject_type', notification_subject, nullable=False),
        sa.Column('subject_id', sa.Uuid(), nullable=False),
        sa.Column('channel', notification_channel, nullable=False),
        sa.Column('recipient', sqlmodel.sql.sqltypes.AutoString(), nullable=False),
        sa.Column('attempted_at', sa.DateTime(), nullable=False),
        sa.Column('success', sa.Boolean(), nullable=False),
        sa.Column('error_detail', sqlmodel.sql.sqltypes.AutoString(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_notificationdeliverylog_outbox_id'), 'notificationdeliverylog', ['outbox_id'])
    op.create_index(op.f('ix_notificationdeliverylog_subject_id'), 'notificationdeliverylog', ['subject_id'])


def downgrade():
    op.drop_table('notificationdeliverylog')
    op.drop_table('notificationoutbox')
    op.drop_table('rfqquoteitem')
    op.drop_table('rfqquote')
    op.drop_table('rfqrecipient')
    op.drop_table('rfqitem')
    op.drop_table('rfqrequest')
    op.drop_table('userprofile')
    op.drop_table('supplier')

    bind = op.get_bind()
    if bind.dialect.name == 'postgresql':
        for enum in (outbox_status, notification_subject, notification_event,
                     notification_channel, verification_tier, recipient_status,
                     quote_status, rfq_status):
            enum.drop(bind, checkfirst=True)
