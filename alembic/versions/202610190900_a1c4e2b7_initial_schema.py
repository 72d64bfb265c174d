from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "202610190900_a1c4e2b7"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        'users',
        sa.Column('id', sa.String(length=36), primary_key=True),
        sa.Column('email', sa.String(length=255), nullable=False, unique=True, index=True),
        sa.Column('hashed_password', sa.String(), nullable=False),
        sa.Column('role', sa.String(length=20), nullable=False, server_default='user', index=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.text('1')),
        sa.Column('is_deleted', sa.Boolean(), nullable=False, server_default=sa.text('0')),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
    )
    op.create_index('uq_users_email_lower', 'users', [sa.text('lower(email)')], unique=True)

    op.create_table(
        'files',
        sa.Column('id', sa.String(length=36), primary_key=True),
        sa.Column('owner_id', sa.String(length=36), sa.ForeignKey('users.id'), nullable=False, index=True),
        sa.Column('object_name', sa.String(length=500), nullable=False),
        sa.Column('filename', sa.String(length=255), nullable=False, index=True),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('description_kind', sa.String(length=20), nullable=False, server_default='text'),
        sa.Column('size', sa.Integer(), nullable=False),
        sa.Column('content_type', sa.String(length=100), nullable=True),
        sa.Column('sha256', sa.String(length=64), nullable=False, index=True),
        sa.Column('download_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('is_public', sa.Boolean(), nullable=False, server_default=sa.text('0')),
        sa.Column('is_deleted', sa.Boolean(), nullable=False, server_default=sa.text('0')),
        sa.Column('deleted_at', sa.DateTime(), nullable=True),
        sa.Column('storage_purged_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True, index=True),
    )

    op.create_table(
        'public_links',
        sa.Column('id', sa.String(length=36), primary_key=True),
        sa.Column('file_id', sa.String(length=36), sa.ForeignKey('files.id'), nullable=False, index=True),
        sa.Column('code', sa.String(length=64), nullable=False, unique=True, index=True),
        sa.Column('password', sa.String(length=16), nullable=False),
        sa.Column('created_by', sa.String(length=36), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('expires_at', sa.DateTime(), nullable=True),
        sa.Column('max_downloads', sa.Integer(), nullable=True),
        sa.Column('download_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.text('1')),
        sa.Column('deactivated_at', sa.DateTime(), nullable=True),
    )

    op.create_table(
        'verification_codes',
        sa.Column('id', sa.String(length=36), primary_key=True),
        sa.Column('email', sa.String(length=255), nullable=False, index=True),
        sa.Column('code', sa.String(length=6), nullable=False),
        sa.Column('expires_at', sa.DateTime(), nullable=False, index=True),
        sa.Column('is_used', sa.Boolean(), nullable=False, server_default=sa.text('0')),
        sa.Column('attempts', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(), nullable=True),
    )

    op.create_table(
        'file_shares',
        sa.Column('id', sa.String(length=36), primary_key=True),
        sa.Column('file_id', sa.String(length=36), sa.ForeignKey('files.id'), nullable=False, index=True),
        sa.Column('shared_by', sa.String(length=36), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('recipient_email', sa.String(length=255), nullable=False, index=True),
        sa.Column('message', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
    )


def downgrade() -> None:
    op.drop_table('file_shares')
    op.drop_table('verification_codes')
    op.drop_table('public_links')
    op.drop_table('files')
    op.drop_index('uq_users_email_lower', table_name='users')
    op.drop_table('users')
