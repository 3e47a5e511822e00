"""Initial schema — sets, cards, price snapshots/history, alerts, analytics

Revision ID: 001_initial_schema
Revises: None
Create Date: 2026-10-18
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB

# revision identifiers
revision: str = "001_initial_schema"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.TIMESTAMP(timezone=True), server_default=sa.func.now(), nullable=False),
    ]


def upgrade() -> None:
    # --- sets ---
    op.create_table(
        "sets",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("game", sa.String(), nullable=False, comment="Game slug, e.g. 'pokemon'"),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("slug", sa.String(), nullable=False),
        sa.Column("release_date", sa.DATE(), nullable=True),
        sa.Column("card_count", sa.INTEGER(), nullable=True),
        sa.Column("image_url", sa.String(), nullable=True),
        sa.Column("ppt_set_id", sa.String(), unique=True, nullable=True),
        sa.Column("tcg_player_group_id", sa.String(), nullable=True),
        sa.Column("priority", sa.INTEGER(), server_default="0", nullable=False),
        sa.Column("is_imported", sa.BOOLEAN(), server_default="false", nullable=False),
        sa.Column("imported_at", sa.TIMESTAMP(timezone=True), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("game", "slug", name="uq_sets_game_slug"),
    )

    # --- cards ---
    op.create_table(
        "cards",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("set_id", sa.String(36), sa.ForeignKey("sets.id", ondelete="CASCADE"), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("slug", sa.String(), nullable=False),
        sa.Column("number", sa.String(), nullable=True),
        sa.Column("rarity", sa.String(), nullable=True),
        sa.Column("artist", sa.String(), nullable=True),
        sa.Column("tcg_player_id", sa.String(), nullable=True, comment="TCGplayer product id"),
        sa.Column("ppt_card_id", sa.String(), nullable=True),
        sa.Column("poke_tcg_id", sa.String(), nullable=True, comment="pokemontcg.io canonical id"),
        sa.Column("image_url", sa.String(), nullable=True),
        sa.Column("local_image_url", sa.String(), nullable=True),
        sa.Column("image_fetched_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("image_fetch_attempts", sa.INTEGER(), server_default="0", nullable=False),
        sa.Column("last_price_fetch", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("price_cache_ttl", sa.INTEGER(), server_default="3600", nullable=False),
        *_timestamps(),
        sa.UniqueConstraint("set_id", "slug", name="uq_cards_set_slug"),
    )
    op.create_index("ix_cards_tcg_player_id", "cards", ["tcg_player_id"])
    op.create_index("ix_cards_last_price_fetch", "cards", ["last_price_fetch"])

    # --- price_cache (one durable snapshot per card) ---
    op.create_table(
        "price_cache",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "card_id", sa.String(36), sa.ForeignKey("cards.id", ondelete="CASCADE"), unique=True, nullable=False
        ),
        sa.Column("variant_id", sa.String(), nullable=True),
        sa.Column("raw_prices", JSONB(), nullable=False),
        sa.Column("graded_prices", JSONB(), nullable=False),
        sa.Column("ebay_sales", JSONB(), nullable=True),
        sa.Column("source", sa.String(), server_default="ppt-api", nullable=False),
        sa.Column("fetched_at", sa.TIMESTAMP(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("expires_at", sa.TIMESTAMP(timezone=True), nullable=False),
    )

    # --- price_history (append-only) ---
    op.create_table(
        "price_history",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("card_id", sa.String(36), sa.ForeignKey("cards.id", ondelete="CASCADE"), nullable=False),
        sa.Column("variant_id", sa.String(), nullable=True),
        sa.Column("grade", sa.String(), server_default="raw", nullable=False),
        sa.Column("grading_company", sa.String(), nullable=True),
        sa.Column("price", sa.DECIMAL(12, 2), nullable=False),
        sa.Column("source", sa.String(), nullable=False),
        sa.Column("confidence", sa.DECIMAL(4, 3), nullable=True),
        sa.Column("recorded_at", sa.TIMESTAMP(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_price_history_card_recorded", "price_history", ["card_id", "recorded_at"])

    # --- price_alerts ---
    op.create_table(
        "price_alerts",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("user_id", sa.String(36), nullable=False),
        sa.Column("card_id", sa.String(36), sa.ForeignKey("cards.id", ondelete="CASCADE"), nullable=False),
        sa.Column("variant_id", sa.String(), nullable=True),
        sa.Column("grade", sa.String(), server_default="raw", nullable=False),
        sa.Column("grading_company", sa.String(), nullable=True),
        sa.Column("threshold_percent", sa.DECIMAL(6, 2), nullable=False),
        sa.Column("direction", sa.String(), server_default="both", nullable=False),
        sa.Column("baseline_price", sa.DECIMAL(12, 2), nullable=True),
        sa.Column("is_active", sa.BOOLEAN(), server_default="true", nullable=False),
        sa.Column("last_triggered", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("trigger_count", sa.INTEGER(), server_default="0", nullable=False),
        sa.Column("delivery_method", sa.String(), server_default="email", nullable=False),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_price_alerts_user", "price_alerts", ["user_id"])
    op.create_index("ix_price_alerts_active", "price_alerts", ["is_active"])

    # --- notification_queue ---
    op.create_table(
        "notification_queue",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("user_id", sa.String(36), nullable=False),
        sa.Column("type", sa.String(), nullable=False),
        sa.Column("title", sa.String(), nullable=False),
        sa.Column("body", sa.Text(), nullable=False),
        sa.Column("data", JSONB(), nullable=True),
        sa.Column("is_read", sa.BOOLEAN(), server_default="false", nullable=False),
        sa.Column("is_sent_email", sa.BOOLEAN(), server_default="false", nullable=False),
        sa.Column("is_sent_push", sa.BOOLEAN(), server_default="false", nullable=False),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_notification_queue_user", "notification_queue", ["user_id", "created_at"])

    # --- trending_scores (replaced wholesale each cycle) ---
    op.create_table(
        "trending_scores",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "card_id", sa.String(36), sa.ForeignKey("cards.id", ondelete="CASCADE"), unique=True, nullable=False
        ),
        sa.Column("price_change_24h", sa.DECIMAL(10, 2), server_default="0", nullable=False),
        sa.Column("volume_24h", sa.INTEGER(), server_default="0", nullable=False),
        sa.Column("search_count_24h", sa.INTEGER(), server_default="0", nullable=False),
        sa.Column("social_mentions", sa.INTEGER(), server_default="0", nullable=False),
        sa.Column("price_component", sa.DECIMAL(6, 4), server_default="0", nullable=False),
        sa.Column("volume_component", sa.DECIMAL(6, 4), server_default="0", nullable=False),
        sa.Column("search_component", sa.DECIMAL(6, 4), server_default="0", nullable=False),
        sa.Column("social_component", sa.DECIMAL(6, 4), server_default="0", nullable=False),
        sa.Column("score", sa.DECIMAL(6, 4), server_default="0", nullable=False),
        sa.Column("calculated_at", sa.TIMESTAMP(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_trending_scores_score", "trending_scores", ["score"])

    # --- search_analytics ---
    op.create_table(
        "search_analytics",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("card_id", sa.String(36), sa.ForeignKey("cards.id", ondelete="SET NULL"), nullable=True),
        sa.Column("query", sa.String(), nullable=True),
        sa.Column("user_id", sa.String(36), nullable=True),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_search_analytics_card_created", "search_analytics", ["card_id", "created_at"])

    # --- population_reports ---
    op.create_table(
        "population_reports",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("card_id", sa.String(36), sa.ForeignKey("cards.id", ondelete="CASCADE"), nullable=False),
        sa.Column("grading_company", sa.String(), nullable=False),
        sa.Column("grade", sa.String(), nullable=False),
        sa.Column("count", sa.INTEGER(), server_default="0", nullable=False),
        sa.Column("updated_at", sa.TIMESTAMP(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint("card_id", "grading_company", "grade", name="uq_population_card_company_grade"),
    )


def downgrade() -> None:
    op.drop_table("population_reports")
    op.drop_index("ix_search_analytics_card_created", table_name="search_analytics")
    op.drop_table("search_analytics")
    op.drop_index("ix_trending_scores_score", table_name="trending_scores")
    op.drop_table("trending_scores")
    op.drop_index("ix_notification_queue_user", table_name="notification_queue")
    op.drop_table("notification_queue")
    op.drop_index("ix_price_alerts_active", table_name="price_alerts")
    op.drop_index("ix_price_alerts_user", table_name="price_alerts")
    op.drop_table("price_alerts")
    op.drop_index("ix_price_history_card_recorded", table_name="price_history")
    op.drop_table("price_history")
    op.drop_table("price_cache")
    op.drop_index("ix_cards_last_price_fetch", table_name="cards")
    op.drop_index("ix_cards_tcg_player_id", table_name="cards")
    op.drop_table("cards")
    op.drop_table("sets")
