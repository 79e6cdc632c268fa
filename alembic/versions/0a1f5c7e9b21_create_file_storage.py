"""create file storage tables

Revision ID: 0a1f5c7e9b21
Revises:
Create Date: 2026-10-12 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql
from sqlalchemy.dialects.postgresql import UUID


# revision identifiers, used by Alembic.
revision: str = "0a1f5c7e9b21"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


UPLOAD_REQUEST_STATUS = postgresql.ENUM(
    "pending", "processing", "completed", "failed",
    name="uploadrequeststatus",
    create_type=False,
)
THUMBNAIL_STATUS = postgresql.ENUM(
    "pending", "processing", "completed", "failed", "not_applicable",
    name="thumbnailstatus",
    create_type=False,
)

UUID_V7_FUNCTION = """
CREATE OR REPLACE FUNCTION uuid_generate_v7()
RETURNS uuid
AS $$
DECLARE
    unix_ts_ms bytea;
    uuid_bytes bytea;
BEGIN
    unix_ts_ms = substring(int8send(floor(extract(epoch from clock_timestamp()) * 1000)::bigint) from 3);
    uuid_bytes = unix_ts_ms || gen_random_bytes(10);
    uuid_bytes = set_byte(uuid_bytes, 6, (b'0111' || get_byte(uuid_bytes, 6)::bit(4))::bit(8)::int);
    uuid_bytes = set_byte(uuid_bytes, 8, (b'10' || get_byte(uuid_bytes, 8)::bit(6))::bit(8)::int);
    RETURN encode(uuid_bytes, 'hex')::uuid;
END
$$
LANGUAGE plpgsql
VOLATILE;
"""


def upgrade() -> None:
    op.execute("CREATE EXTENSION IF NOT EXISTS pgcrypto;")
    op.execute(UUID_V7_FUNCTION)

    bind = op.get_bind()
    UPLOAD_REQUEST_STATUS.create(bind, checkfirst=True)
    THUMBNAIL_STATUS.create(bind, checkfirst=True)

    inspector = sa.inspect(bind)
    existing_tables = set(inspector.get_table_names())

    if "file_upload_requests" not in existing_tables:
        op.create_table(
            "file_upload_requests",
            sa.Column(
                "id",
                UUID(as_uuid=True),
                primary_key=True,
                server_default=sa.text("uuid_generate_v7()"),
            ),
            sa.Column("entity_type", sa.String(100), nullable=False),
            sa.Column("entity_id", sa.String(100), nullable=False),
            sa.Column("file_name", sa.String(255), nullable=False),
            sa.Column("file_type", sa.String(255), nullable=False),
            sa.Column(
                "status", UPLOAD_REQUEST_STATUS, nullable=False, server_default="pending"
            ),
            sa.Column("presigned_url", sa.Text, nullable=True),
            sa.Column("s3_key", sa.String(1024), nullable=True),
            sa.Column("file_id", UUID(as_uuid=True), nullable=True),
            sa.Column("error_message", sa.Text, nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        )
    op.execute(
        "CREATE INDEX IF NOT EXISTS ix_file_upload_requests_status "
        "ON file_upload_requests(status, created_at);"
    )

    if "files" not in existing_tables:
        op.create_table(
            "files",
            sa.Column(
                "id",
                UUID(as_uuid=True),
                primary_key=True,
                server_default=sa.text("uuid_generate_v7()"),
            ),
            sa.Column("entity_type", sa.String(100), nullable=False),
            sa.Column("entity_id", sa.String(100), nullable=False),
            sa.Column("file_name", sa.String(255), nullable=False),
            sa.Column("file_type", sa.String(255), nullable=False),
            sa.Column("file_size", sa.Integer, nullable=False),
            sa.Column("s3_key_prefix", sa.String(1024), nullable=False),
            sa.Column("s3_original_key", sa.String(1024), nullable=False),
            sa.Column("s3_thumbnail_small_key", sa.String(1024), nullable=True),
            sa.Column("s3_thumbnail_medium_key", sa.String(1024), nullable=True),
            sa.Column("s3_thumbnail_large_key", sa.String(1024), nullable=True),
            sa.Column(
                "thumbnail_status", THUMBNAIL_STATUS, nullable=False, server_default="pending"
            ),
            sa.Column("thumbnail_error", sa.Text, nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
            sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        )
    op.execute("CREATE INDEX IF NOT EXISTS ix_files_entity ON files(entity_type, entity_id);")
    op.execute(
        "CREATE INDEX IF NOT EXISTS ix_files_thumbnail_status "
        "ON files(thumbnail_status, created_at) "
        "WHERE thumbnail_status IN ('pending', 'failed');"
    )


def downgrade() -> None:
    op.execute("DROP INDEX IF EXISTS ix_files_thumbnail_status;")
    op.execute("DROP INDEX IF EXISTS ix_files_entity;")
    op.drop_table("files")
    op.execute("DROP INDEX IF EXISTS ix_file_upload_requests_status;")
    op.drop_table("file_upload_requests")
    THUMBNAIL_STATUS.drop(op.get_bind(), checkfirst=True)
    UPLOAD_REQUEST_STATUS.drop(op.get_bind(), checkfirst=True)
    op.execute("DROP FUNCTION IF EXISTS uuid_generate_v7();")
