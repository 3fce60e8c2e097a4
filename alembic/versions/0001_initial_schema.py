"""Initial token metadata schema

Revision ID: 0001
Revises:
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "0001"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

ACTIVE_STATUS = "status IN ('pending', 'queued')"


def upgrade() -> None:
    sip_number = sa.Enum("sip-009", "sip-010", "sip-013", name="sip_number")
    token_type = sa.Enum("ft", "nft", "sft", name="token_type")
    update_mode = sa.Enum("standard", "frozen", "dynamic", name="token_update_mode")
    job_status = sa.Enum("pending", "queued", "done", "failed", name="job_status")

    op.create_table(
        "smart_contracts",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("principal", sa.String(), nullable=False),
        sa.Column("sip", sip_number, nullable=False),
        sa.Column("abi", sa.JSON(), nullable=True),
        sa.Column("tx_id", sa.String(), nullable=False),
        sa.Column("tx_index", sa.Integer(), nullable=False),
        sa.Column("block_height", sa.Integer(), nullable=False),
        sa.Column("index_block_hash", sa.String(), nullable=True),
        sa.Column("token_uri", sa.String(), nullable=True),
        sa.Column("token_count", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint("id", name=op.f("smart_contracts_pkey")),
    )
    op.create_index(op.f("ix_smart_contracts_principal"), "smart_contracts", ["principal"], unique=True)
    op.create_index(op.f("ix_smart_contracts_sip"), "smart_contracts", ["sip"], unique=False)
    op.create_index(op.f("ix_smart_contracts_block_height"), "smart_contracts", ["block_height"], unique=False)

    op.create_table(
        "notifications",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("smart_contract_id", sa.Integer(), nullable=False),
        sa.Column("block_height", sa.Integer(), nullable=False),
        sa.Column("index_block_hash", sa.String(), nullable=False),
        sa.Column("tx_id", sa.String(), nullable=False),
        sa.Column("tx_index", sa.Integer(), nullable=False),
        sa.Column("event_index", sa.Integer(), nullable=False),
        sa.Column("update_mode", update_mode, nullable=False),
        sa.Column("ttl", sa.Integer(), nullable=True, comment="Seconds between refreshes for dynamic tokens"),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["smart_contract_id"], ["smart_contracts.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id", name=op.f("notifications_pkey")),
        sa.UniqueConstraint(
            "smart_contract_id",
            "block_height",
            "index_block_hash",
            "tx_id",
            "tx_index",
            "event_index",
            name="notifications_unique",
        ),
    )
    op.create_index(op.f("ix_notifications_smart_contract_id"), "notifications", ["smart_contract_id"], unique=False)
    op.create_index(op.f("ix_notifications_block_height"), "notifications", ["block_height"], unique=False)

    op.create_table(
        "tokens",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("smart_contract_id", sa.Integer(), nullable=False),
        sa.Column("type", token_type, nullable=False),
        sa.Column("token_number", sa.BigInteger(), nullable=False),
        sa.Column("uri", sa.String(), nullable=True),
        sa.Column("name", sa.String(), nullable=True),
        sa.Column("symbol", sa.String(), nullable=True),
        sa.Column("decimals", sa.Integer(), nullable=True),
        sa.Column("total_supply", sa.Numeric(precision=78, scale=0), nullable=True),
        sa.Column("update_notification_id", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=True, comment="NULL until metadata is processed once"),
        sa.ForeignKeyConstraint(["smart_contract_id"], ["smart_contracts.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["update_notification_id"], ["notifications.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id", name=op.f("tokens_pkey")),
        sa.UniqueConstraint("smart_contract_id", "token_number", name="tokens_smart_contract_id_token_number_unique"),
    )
    op.create_index(op.f("ix_tokens_smart_contract_id"), "tokens", ["smart_contract_id"], unique=False)
    op.create_index(op.f("ix_tokens_type"), "tokens", ["type"], unique=False)
    op.create_index(op.f("ix_tokens_update_notification_id"), "tokens", ["update_notification_id"], unique=False)

    op.create_table(
        "metadata",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("token_id", sa.Integer(), nullable=False),
        sa.Column("sip", sa.Integer(), nullable=False),
        sa.Column("l10n_locale", sa.String(), nullable=True),
        sa.Column("l10n_uri", sa.String(), nullable=True),
        sa.Column("declared_locale", sa.String(), nullable=True),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("image", sa.String(), nullable=True),
        sa.Column("cached_image", sa.String(), nullable=True),
        sa.Column("cached_thumbnail_image", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["token_id"], ["tokens.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id", name=op.f("metadata_pkey")),
        sa.UniqueConstraint("token_id", "l10n_locale", name="metadata_token_id_locale_unique"),
    )
    op.create_index(op.f("ix_metadata_token_id"), "metadata", ["token_id"], unique=False)
    op.create_index(
        "metadata_token_id_default_unique",
        "metadata",
        ["token_id"],
        unique=True,
        postgresql_where=sa.text("l10n_locale IS NULL"),
    )

    op.create_table(
        "metadata_attributes",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("metadata_id", sa.Integer(), nullable=False),
        sa.Column("trait_type", sa.String(), nullable=False),
        sa.Column("value", sa.JSON(), nullable=False),
        sa.Column("display_type", sa.String(), nullable=True),
        sa.ForeignKeyConstraint(["metadata_id"], ["metadata.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id", name=op.f("metadata_attributes_pkey")),
    )
    op.create_index(op.f("ix_metadata_attributes_metadata_id"), "metadata_attributes", ["metadata_id"], unique=False)

    op.create_table(
        "metadata_properties",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("metadata_id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("value", sa.JSON(), nullable=True),
        sa.ForeignKeyConstraint(["metadata_id"], ["metadata.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id", name=op.f("metadata_properties_pkey")),
    )
    op.create_index(op.f("ix_metadata_properties_metadata_id"), "metadata_properties", ["metadata_id"], unique=False)

    op.create_table(
        "jobs",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("token_id", sa.Integer(), nullable=True),
        sa.Column("smart_contract_id", sa.Integer(), nullable=True),
        sa.Column("status", job_status, nullable=False),
        sa.Column("retry_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column(
            "updated_at", sa.DateTime(), nullable=True, comment="Claim time while queued, not-before time while pending"
        ),
        sa.CheckConstraint("(token_id IS NULL) <> (smart_contract_id IS NULL)", name="jobs_job_type_check"),
        sa.ForeignKeyConstraint(["token_id"], ["tokens.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["smart_contract_id"], ["smart_contracts.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id", name=op.f("jobs_pkey")),
    )
    op.create_index("jobs_status_index", "jobs", ["status"], unique=False)
    op.create_index(
        "jobs_token_id_active_unique",
        "jobs",
        ["token_id"],
        unique=True,
        postgresql_where=sa.text(f"smart_contract_id IS NULL AND {ACTIVE_STATUS}"),
    )
    op.create_index(
        "jobs_smart_contract_id_active_unique",
        "jobs",
        ["smart_contract_id"],
        unique=True,
        postgresql_where=sa.text(f"token_id IS NULL AND {ACTIVE_STATUS}"),
    )

    op.create_table(
        "rate_limited_hosts",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("hostname", sa.String(), nullable=False),
        sa.Column("retry_after", sa.DateTime(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id", name=op.f("rate_limited_hosts_pkey")),
    )
    op.create_index(op.f("ix_rate_limited_hosts_hostname"), "rate_limited_hosts", ["hostname"], unique=True)

    op.create_table(
        "chain_tip",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("block_height", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_dynamic_token_refresh_at", sa.DateTime(), nullable=True),
        sa.CheckConstraint("id = 1", name="chain_tip_one_row"),
        sa.PrimaryKeyConstraint("id", name=op.f("chain_tip_pkey")),
    )
    op.execute("INSERT INTO chain_tip (id, block_height) VALUES (1, 0)")

    op.create_table(
        "frozen_tokens",
        sa.Column("token_id", sa.Integer(), nullable=False),
        sa.Column("notification_id", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["token_id"], ["tokens.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["notification_id"], ["notifications.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("token_id", name=op.f("frozen_tokens_pkey")),
    )


def downgrade() -> None:
    op.drop_table("frozen_tokens")
    op.drop_table("chain_tip")
    op.drop_index(op.f("ix_rate_limited_hosts_hostname"), table_name="rate_limited_hosts")
    op.drop_table("rate_limited_hosts")
    op.drop_index("jobs_smart_contract_id_active_unique", table_name="jobs")
    op.drop_index("jobs_token_id_active_unique", table_name="jobs")
    op.drop_index("jobs_status_index", table_name="jobs")
    op.drop_table("jobs")
    op.drop_table("metadata_properties")
    op.drop_table("metadata_attributes")
    op.drop_index("metadata_token_id_default_unique", table_name="metadata")
    op.drop_table("metadata")
    op.drop_table("tokens")
    op.drop_table("notifications")
    op.drop_table("smart_contracts")

    for enum_name in ("job_status", "token_update_mode", "token_type", "sip_number"):
        sa.Enum(name=enum_name).drop(op.get_bind(), checkfirst=True)
