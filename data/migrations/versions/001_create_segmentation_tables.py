"""Create customer segmentation tables

Revision ID: 001_create_segmentation_tables
Revises:
Create Date: 2026-10-19 10:00:00.000000

"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "001_create_segmentation_tables"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # Таблицы покупателей (заполняются синхронизацией с биллингом)
    op.create_table(
        "customers",
        sa.Column("customer_id", sa.String(length=255), primary_key=True),
        sa.Column("email", sa.String(length=255), nullable=True),
        sa.Column("name", sa.String(length=255), nullable=True),
        sa.Column("deleted", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("delinquent", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_customers_status", "customers", ["deleted", "delinquent"])

    op.create_table(
        "customer_metrics",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("customer_id", sa.String(length=255), nullable=False),
        sa.Column("metric_date", sa.Date(), nullable=False),
        sa.Column("lifetime_value", sa.Float(), nullable=True),
        sa.Column("health_score", sa.Float(), nullable=True),
        sa.Column("churn_risk_score", sa.Float(), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_customer_metrics_customer_id", "customer_metrics", ["customer_id"])
    op.create_index(
        "ix_customer_metrics_customer_date", "customer_metrics", ["customer_id", "metric_date"], unique=True
    )

    op.create_table(
        "customer_subscriptions",
        sa.Column("id", sa.String(length=255), primary_key=True),
        sa.Column("customer_id", sa.String(length=255), nullable=False),
        sa.Column("status", sa.String(length=50), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_customer_subscriptions_customer_id", "customer_subscriptions", ["customer_id"])

    # Сегменты
    op.create_table(
        "customer_segments",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("criteria", sa.JSON(), nullable=False),
        sa.Column("color", sa.String(length=20), nullable=False, server_default="#007bff"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("is_system", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_by", sa.String(length=255), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_customer_segments_active", "customer_segments", ["is_active"])
    op.create_index("ix_customer_segments_system", "customer_segments", ["is_system"])

    op.create_table(
        "customer_segment_assignments",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column(
            "segment_id",
            sa.String(length=36),
            sa.ForeignKey("customer_segments.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("customer_id", sa.String(length=255), nullable=False),
        sa.Column("score", sa.Float(), nullable=False),
        sa.Column("assigned_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_customer_segment_assignments_segment_id", "customer_segment_assignments", ["segment_id"])
    op.create_index("ix_customer_segment_assignments_customer_id", "customer_segment_assignments", ["customer_id"])
    op.create_index(
        "ix_segment_assignments_segment_customer",
        "customer_segment_assignments",
        ["segment_id", "customer_id"],
        unique=True,
    )
    op.create_index("ix_segment_assignments_segment_score", "customer_segment_assignments", ["segment_id", "score"])

    op.create_table(
        "segment_analytics",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column(
            "segment_id",
            sa.String(length=36),
            sa.ForeignKey("customer_segments.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("metric_date", sa.Date(), nullable=False),
        sa.Column("customer_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("avg_ltv", sa.Float(), nullable=False, server_default="0"),
        sa.Column("avg_health_score", sa.Float(), nullable=False, server_default="50"),
        sa.Column("avg_churn_risk", sa.Float(), nullable=False, server_default="0.5"),
        sa.Column("total_revenue", sa.Float(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint("segment_id", "metric_date", name="uq_segment_analytics_segment_date"),
    )
    op.create_index("ix_segment_analytics_segment_id", "segment_analytics", ["segment_id"])
    op.create_index("ix_segment_analytics_metric_date", "segment_analytics", ["metric_date"])


def downgrade() -> None:
    op.drop_index("ix_segment_analytics_metric_date", "segment_analytics")
    op.drop_index("ix_segment_analytics_segment_id", "segment_analytics")
    op.drop_table("segment_analytics")

    op.drop_index("ix_segment_assignments_segment_score", "customer_segment_assignments")
    op.drop_index("ix_segment_assignments_segment_customer", "customer_segment_assignments")
    op.drop_index("ix_customer_segment_assignments_customer_id", "customer_segment_assignments")
    op.drop_index("ix_customer_segment_assignments_segment_id", "customer_segment_assignments")
    op.drop_table("customer_segment_assignments")

    op.drop_index("ix_customer_segments_system", "customer_segments")
    op.drop_index("ix_customer_segments_active", "customer_segments")
    op.drop_table("customer_segments")

    op.drop_index("ix_customer_subscriptions_customer_id", "customer_subscriptions")
    op.drop_table("customer_subscriptions")

    op.drop_index("ix_customer_metrics_customer_date", "customer_metrics")
    op.drop_index("ix_customer_metrics_customer_id", "customer_metrics")
    op.drop_table("customer_metrics")

    op.drop_index("ix_customers_status", "customers")
    op.drop_table("customers")
