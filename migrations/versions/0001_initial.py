"""Initial baseline migration for Cardsmith."""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "0001_initial"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # Users ----------------------------------------------------------------
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("username", sa.String(length=80), nullable=False),
        sa.Column("password_hash", sa.String(length=255), nullable=False),
        sa.Column("is_admin", sa.Boolean(), nullable=False, server_default=sa.text("0")),
        sa.Column("display_name", sa.String(length=120), nullable=True),
        sa.Column("credits", sa.Integer(), nullable=False, server_default=sa.text("500")),
        sa.Column("api_token_hash", sa.String(length=64), nullable=True),
        sa.Column("api_token_hint", sa.String(length=12), nullable=True),
        sa.Column("api_token_created_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column("last_login_at", sa.DateTime(), nullable=True),
        sa.CheckConstraint("credits >= 0", name="ck_users_credits_nonneg"),
        sa.UniqueConstraint("api_token_hash", name="uq_users_api_token_hash"),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)
    op.create_index("ix_users_username", "users", ["username"], unique=True)

    # Logs ---------------------------------------------------------------
    op.create_table(
        "audit_logs",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("action", sa.String(length=120), nullable=False),
        sa.Column("details", sa.JSON(), nullable=True),
        sa.Column("ip_address", sa.String(length=64), nullable=True),
        sa.Column("user_agent", sa.String(length=255), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_audit_logs_user_id", "audit_logs", ["user_id"], unique=False)
    op.create_index("ix_audit_logs_created_at", "audit_logs", ["created_at"], unique=False)

    # Published decks ------------------------------------------------------
    op.create_table(
        "published_decks",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        sa.Column("slug", sa.String(length=255), nullable=False),
        sa.Column("title", sa.String(length=200), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("tags", sa.JSON(), nullable=False),
        sa.Column("visibility", sa.String(length=20), nullable=False, server_default=sa.text("'public'")),
        sa.Column("theme", sa.String(length=40), nullable=False),
        sa.Column("image_style", sa.String(length=40), nullable=False),
        sa.Column("layout", sa.String(length=20), nullable=False),
        sa.Column("cards", sa.JSON(), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.Column("is_curated", sa.Boolean(), nullable=False, server_default=sa.text("0")),
        sa.Column("is_featured", sa.Boolean(), nullable=False, server_default=sa.text("0")),
        sa.Column(
            "remix_of",
            sa.String(length=36),
            sa.ForeignKey("published_decks.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("creator_name", sa.String(length=120), nullable=True),
        sa.Column("view_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("import_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("like_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_published_decks_slug", "published_decks", ["slug"], unique=True)
    op.create_index("ix_published_decks_user_id", "published_decks", ["user_id"], unique=False)
    op.create_index("ix_published_decks_visibility", "published_decks", ["visibility"], unique=False)
    op.create_index("ix_published_decks_remix_of", "published_decks", ["remix_of"], unique=False)
    op.create_index("ix_published_decks_like_count", "published_decks", ["like_count"], unique=False)
    op.create_index("ix_published_decks_created_at", "published_decks", ["created_at"], unique=False)

    # User decks -----------------------------------------------------------
    op.create_table(
        "user_decks",
        sa.Column("id", sa.String(length=64), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("title", sa.String(length=200), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("theme", sa.String(length=40), nullable=False),
        sa.Column("image_style", sa.String(length=40), nullable=False),
        sa.Column("layout", sa.String(length=20), nullable=False),
        sa.Column("cards", sa.JSON(), nullable=False),
        sa.Column("tags", sa.JSON(), nullable=False),
        sa.Column("is_synced", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        sa.Column(
            "published_deck_id",
            sa.String(length=36),
            sa.ForeignKey("published_decks.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column("last_edited", sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_user_decks_user_id", "user_decks", ["user_id"], unique=False)
    op.create_index("ix_user_decks_published_deck_id", "user_decks", ["published_deck_id"], unique=False)
    op.create_index("ix_user_decks_last_edited", "user_decks", ["last_edited"], unique=False)
    op.create_index("ix_user_decks_owner_last_edited", "user_decks", ["user_id", "last_edited"], unique=False)

    # Likes ------------------------------------------------------------------
    op.create_table(
        "deck_likes",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column(
            "deck_id",
            sa.String(length=36),
            sa.ForeignKey("published_decks.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("tokens_spent", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("user_id", "deck_id", name="uq_deck_likes_user_deck"),
    )
    op.create_index("ix_deck_likes_user_id", "deck_likes", ["user_id"], unique=False)
    op.create_index("ix_deck_likes_deck_id", "deck_likes", ["deck_id"], unique=False)

    # Community images -------------------------------------------------------
    op.create_table(
        "community_images",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        sa.Column("url", sa.String(length=1024), nullable=False),
        sa.Column("storage_key", sa.String(length=512), nullable=True),
        sa.Column("style", sa.String(length=40), nullable=False),
        sa.Column(
            "source_image_id",
            sa.String(length=36),
            sa.ForeignKey("community_images.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("embedding", sa.JSON(), nullable=True),
        sa.Column("card_title", sa.String(length=200), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("cost_tokens", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_community_images_user_id", "community_images", ["user_id"], unique=False)
    op.create_index("ix_community_images_style", "community_images", ["style"], unique=False)
    op.create_index("ix_community_images_source_image_id", "community_images", ["source_image_id"], unique=False)
    op.create_index("ix_community_images_created_at", "community_images", ["created_at"], unique=False)
    op.create_index(
        "ix_community_images_family_style",
        "community_images",
        ["source_image_id", "style"],
        unique=False,
    )

    # Token ledger -----------------------------------------------------------
    op.create_table(
        "transactions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("type", sa.String(length=20), nullable=False),
        sa.Column("credits_delta", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("description", sa.String(length=255), nullable=True),
        sa.Column("status", sa.String(length=20), nullable=False, server_default=sa.text("'completed'")),
        sa.Column("order_id", sa.String(length=120), nullable=True),
        sa.Column("checkout_id", sa.String(length=120), nullable=True),
        sa.Column("variant_id", sa.String(length=40), nullable=True),
        sa.Column("variant_name", sa.String(length=120), nullable=True),
        sa.Column("amount_usd", sa.Numeric(10, 2), nullable=True),
        sa.Column("tokens_purchased", sa.Integer(), nullable=True),
        sa.Column("webhook_payload", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("order_id", name="uq_transactions_order_id"),
    )
    op.create_index("ix_transactions_user_id", "transactions", ["user_id"], unique=False)
    op.create_index("ix_transactions_type", "transactions", ["type"], unique=False)
    op.create_index("ix_transactions_status", "transactions", ["status"], unique=False)
    op.create_index("ix_transactions_checkout_id", "transactions", ["checkout_id"], unique=False)
    op.create_index("ix_transactions_created_at", "transactions", ["created_at"], unique=False)


def downgrade() -> None:
    # Drop tables in reverse dependency order
    op.drop_index("ix_transactions_created_at", table_name="transactions")
    op.drop_index("ix_transactions_checkout_id", table_name="transactions")
    op.drop_index("ix_transactions_status", table_name="transactions")
    op.drop_index("ix_transactions_type", table_name="transactions")
    op.drop_index("ix_transactions_user_id", table_name="transactions")
    op.drop_table("transactions")

    op.drop_index("ix_community_images_family_style", table_name="community_images")
    op.drop_index("ix_community_images_created_at", table_name="community_images")
    op.drop_index("ix_community_images_source_image_id", table_name="community_images")
    op.drop_index("ix_community_images_style", table_name="community_images")
    op.drop_index("ix_community_images_user_id", table_name="community_images")
    op.drop_table("community_images")

    op.drop_index("ix_deck_likes_deck_id", table_name="deck_likes")
    op.drop_index("ix_deck_likes_user_id", table_name="deck_likes")
    op.drop_table("deck_likes")

    op.drop_index("ix_user_decks_owner_last_edited", table_name="user_decks")
    op.drop_index("ix_user_decks_last_edited", table_name="user_decks")
    op.drop_index("ix_user_decks_published_deck_id", table_name="user_decks")
    op.drop_index("ix_user_decks_user_id", table_name="user_decks")
    op.drop_table("user_decks")

    op.drop_index("ix_published_decks_created_at", table_name="published_decks")
    op.drop_index("ix_published_decks_like_count", table_name="published_decks")
    op.drop_index("ix_published_decks_remix_of", table_name="published_decks")
    op.drop_index("ix_published_decks_visibility", table_name="published_decks")
    op.drop_index("ix_published_decks_user_id", table_name="published_decks")
    op.drop_index("ix_published_decks_slug", table_name="published_decks")
    op.drop_table("published_decks")

    op.drop_index("ix_audit_logs_created_at", table_name="audit_logs")
    op.drop_index("ix_audit_logs_user_id", table_name="audit_logs")
    op.drop_table("audit_logs")

    op.drop_index("ix_users_username", table_name="users")
    op.drop_index("ix_users_email", table_name="users")
    op.drop_table("users")
