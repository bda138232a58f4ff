"""initial_tables

Revision ID: 001
Revises: 
Create Date: 2025-01-01 00:00:00.000000

"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '001'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    """Create documents, submission attempts, audit events and certificates"""

    # Create documents table
    op.create_table('documents',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('account_id', sa.String(length=100), nullable=False, comment='Account that owns the document'),
        sa.Column('document_key', sa.String(length=50), nullable=False, comment='50-digit document key'),
        sa.Column('document_type', sa.String(length=2), nullable=False, comment='Document type code: 01-10'),
        sa.Column('document_name', sa.String(length=40), nullable=False, comment='Root element name, e.g. FacturaElectronica'),
        sa.Column('consecutive_number', sa.String(length=20), nullable=False, comment='Branch(3)+Terminal(5)+DocType(2)+Sequential(10)'),
        sa.Column('issue_date', sa.DateTime(timezone=True), nullable=False),
        sa.Column('emitter_name', sa.String(length=100), nullable=False),
        sa.Column('emitter_identification_type', sa.String(length=2), nullable=False),
        sa.Column('emitter_identification', sa.String(length=20), nullable=False),
        sa.Column('receiver_name', sa.String(length=100), nullable=True),
        sa.Column('receiver_identification_type', sa.String(length=2), nullable=True),
        sa.Column('receiver_identification', sa.String(length=20), nullable=True),
        sa.Column('xml', sa.Text(), nullable=False, comment='Generated unsigned XML'),
        sa.Column('signed_xml', sa.Text(), nullable=True, comment='XML with signature, when a signer is configured'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_documents_account_id', 'documents', ['account_id'])
    op.create_index('ix_documents_document_key', 'documents', ['document_key'], unique=True)
    op.create_index('ix_documents_emitter_identification', 'documents', ['emitter_identification'])

    # Create document_submissions table
    op.create_table('document_submissions',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('document_id', sa.Integer(), nullable=False),
        sa.Column('attempt', sa.Integer(), nullable=False, comment='1 for the first submission, +1 per resubmission'),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('submitted_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('submitted_xml', sa.Text(), nullable=True),
        sa.Column('responded_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('response_payload', sa.JSON(), nullable=True, comment='Raw Hacienda verdict'),
        sa.Column('last_polled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('remote_status', sa.String(length=30), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['document_id'], ['documents.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('document_id', 'attempt', name='uq_document_submission_attempt')
    )
    op.create_index('ix_document_submissions_status', 'document_submissions', ['status'])

    # Create document_events table
    op.create_table('document_events',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('document_id', sa.Integer(), nullable=False),
        sa.Column('attempt', sa.Integer(), nullable=True),
        sa.Column('event_type', sa.String(length=20), nullable=False),
        sa.Column('from_status', sa.String(length=20), nullable=True),
        sa.Column('to_status', sa.String(length=20), nullable=True),
        sa.Column('payload', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['document_id'], ['documents.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('idx_document_events_document', 'document_events', ['document_id', 'id'])

    # Create certificates table
    op.create_table('certificates',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('account_id', sa.String(length=100), nullable=False),
        sa.Column('name', sa.String(length=100), nullable=True),
        sa.Column('subject', sa.String(length=500), nullable=False),
        sa.Column('issuer', sa.String(length=500), nullable=False),
        sa.Column('serial_number', sa.String(length=100), nullable=False),
        sa.Column('valid_from', sa.DateTime(timezone=True), nullable=False),
        sa.Column('valid_to', sa.DateTime(timezone=True), nullable=False),
        sa.Column('fingerprint', sa.String(length=64), nullable=False, comment='SHA-256 of the X.509 certificate'),
        sa.Column('hacienda_compatible', sa.Boolean(), nullable=False, comment='RSA >= 2048 with digital signature usage'),
        sa.Column('p12_encrypted', sa.Text(), nullable=False),
        sa.Column('password_encrypted', sa.Text(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_certificates_account_id', 'certificates', ['account_id'])
    op.create_index('ix_certificates_fingerprint', 'certificates', ['fingerprint'])


def downgrade() -> None:
    """Drop all tables"""
    op.drop_table('certificates')
    op.drop_table('document_events')
    op.drop_table('document_submissions')
    op.drop_table('documents')
