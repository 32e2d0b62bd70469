"""Initial ledger: subscribers, draws, winners, donations, activity log.

Revision ID: 0001_initial_ledger
Revises:
Create Date: 2026-10-19

"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "0001_initial_ledger"
down_revision = None
branch_labels = None
depends_on = None

ID_TYPE = sa.BigInteger().with_variant(sa.Integer(), "sqlite")

ACTION_TYPES = (
    "subscription_synced",
    "subscription_cleared",
    "draw_created",
    "draw_drawn",
    "draw_published",
    "winners_computed",
    "winner_verified",
    "winner_rejected",
    "winner_settled",
    "entry_submitted",
)


def _timestamp(name: str, nullable: bool = False) -> sa.Column:
    return sa.Column(name, sa.DateTime(timezone=True), nullable=nullable)


def upgrade() -> None:
    op.create_table(
        "admins",
        sa.Column("id", ID_TYPE, autoincrement=True, nullable=False),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("name", sa.String(100), nullable=True),
        sa.Column("role", sa.String(50), nullable=True),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_admins")),
    )
    op.create_index(op.f("ix_admins_id"), "admins", ["id"])
    op.create_index(op.f("ix_admins_email"), "admins", ["email"], unique=True)

    op.create_table(
        "subscribers",
        sa.Column("id", ID_TYPE, autoincrement=True, nullable=False),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("full_name", sa.String(100), nullable=True),
        sa.Column("billing_customer_ref", sa.String(255), nullable=True),
        sa.Column("plan", sa.String(20), nullable=False),
        sa.Column("charity_id", sa.String(64), nullable=True),
        _timestamp("last_reconciled_at", nullable=True),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.CheckConstraint(
            "plan IN ('monthly','annual','none')", name=op.f("ck_subscribers_plan_enum")
        ),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_subscribers")),
        sa.UniqueConstraint("email", name=op.f("uq_subscribers_email")),
        sa.UniqueConstraint(
            "billing_customer_ref", name=op.f("uq_subscribers_billing_customer_ref")
        ),
    )

    op.create_table(
        "subscriptions",
        sa.Column("id", ID_TYPE, autoincrement=True, nullable=False),
        sa.Column("subscriber_id", ID_TYPE, nullable=False),
        sa.Column("customer_ref", sa.String(255), nullable=False),
        sa.Column("external_subscription_id", sa.String(255), nullable=False),
        sa.Column("status", sa.String(32), nullable=False),
        sa.Column("plan", sa.String(20), nullable=False),
        _timestamp("current_period_start", nullable=True),
        _timestamp("current_period_end", nullable=True),
        sa.Column("cancel_at_period_end", sa.Boolean(), nullable=False),
        _timestamp("synced_at"),
        sa.CheckConstraint(
            "plan IN ('monthly','annual')", name=op.f("ck_subscriptions_billed_plan_enum")
        ),
        sa.ForeignKeyConstraint(
            ["subscriber_id"],
            ["subscribers.id"],
            name=op.f("fk_subscriptions_subscriber_id_subscribers"),
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_subscriptions")),
        sa.UniqueConstraint("subscriber_id", name=op.f("uq_subscriptions_subscriber_id")),
    )

    op.create_table(
        "draws",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("label", sa.String(20), nullable=False),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("number_count", sa.Integer(), nullable=False),
        sa.Column("winning_numbers", sa.JSON(), nullable=True),
        sa.Column("prize_pool", sa.Integer(), nullable=False),
        sa.Column("tier_shares", sa.JSON(), nullable=False),
        sa.Column("charity_split_bps", sa.Integer(), nullable=False),
        sa.Column("jackpot_carryover", sa.Integer(), nullable=False),
        _timestamp("created_at"),
        _timestamp("drawn_at", nullable=True),
        _timestamp("published_at", nullable=True),
        _timestamp("winners_computed_at", nullable=True),
        sa.CheckConstraint(
            "status IN ('scheduled','drawn','published')",
            name=op.f("ck_draws_draw_status_enum"),
        ),
        sa.CheckConstraint("prize_pool >= 0", name=op.f("ck_draws_prize_pool_non_negative")),
        sa.CheckConstraint(
            "charity_split_bps >= 0 AND charity_split_bps <= 10000",
            name=op.f("ck_draws_charity_split_range"),
        ),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_draws")),
        sa.UniqueConstraint("label", name=op.f("uq_draws_label")),
    )

    op.create_table(
        "entries",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("draw_id", sa.Integer(), nullable=False),
        sa.Column("subscriber_id", ID_TYPE, nullable=False),
        sa.Column("numbers", sa.JSON(), nullable=False),
        sa.Column("charity_id", sa.String(64), nullable=True),
        _timestamp("created_at"),
        sa.ForeignKeyConstraint(
            ["draw_id"], ["draws.id"], name=op.f("fk_entries_draw_id_draws"), ondelete="CASCADE"
        ),
        sa.ForeignKeyConstraint(
            ["subscriber_id"],
            ["subscribers.id"],
            name=op.f("fk_entries_subscriber_id_subscribers"),
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_entries")),
        sa.UniqueConstraint("draw_id", "subscriber_id", name="uq_entry_per_draw"),
    )
    op.create_index(op.f("ix_entries_draw_id"), "entries", ["draw_id"])
    op.create_index(op.f("ix_entries_subscriber_id"), "entries", ["subscriber_id"])

    op.create_table(
        "winner_records",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("draw_id", sa.Integer(), nullable=False),
        sa.Column("subscriber_id", ID_TYPE, nullable=False),
        sa.Column("entry_id", sa.Integer(), nullable=True),
        sa.Column("tier", sa.Integer(), nullable=False),
        sa.Column("match_count", sa.Integer(), nullable=False),
        sa.Column("gross_prize", sa.Integer(), nullable=False),
        sa.Column("charity_amount", sa.Integer(), nullable=False),
        sa.Column("net_payout", sa.Integer(), nullable=False),
        sa.Column("charity_id", sa.String(64), nullable=True),
        sa.Column("verification_status", sa.String(20), nullable=False),
        sa.Column("is_paid", sa.Boolean(), nullable=False),
        sa.Column("payout_reference", sa.String(255), nullable=True),
        sa.Column("verified_by_admin_id", ID_TYPE, nullable=True),
        _timestamp("verified_at", nullable=True),
        _timestamp("settled_at", nullable=True),
        _timestamp("created_at"),
        sa.CheckConstraint(
            "gross_prize = charity_amount + net_payout",
            name=op.f("ck_winner_records_prize_split_balances"),
        ),
        sa.CheckConstraint(
            "gross_prize >= 0 AND charity_amount >= 0 AND net_payout >= 0",
            name=op.f("ck_winner_records_amounts_non_negative"),
        ),
        sa.CheckConstraint(
            "verification_status IN ('pending','verified','rejected','settled')",
            name=op.f("ck_winner_records_verification_status_enum"),
        ),
        sa.CheckConstraint(
            "(NOT is_paid AND verification_status != 'settled') OR "
            "(is_paid AND verification_status = 'settled' AND payout_reference IS NOT NULL)",
            name=op.f("ck_winner_records_paid_iff_settled"),
        ),
        sa.ForeignKeyConstraint(
            ["draw_id"],
            ["draws.id"],
            name=op.f("fk_winner_records_draw_id_draws"),
            ondelete="RESTRICT",
        ),
        sa.ForeignKeyConstraint(
            ["subscriber_id"],
            ["subscribers.id"],
            name=op.f("fk_winner_records_subscriber_id_subscribers"),
            ondelete="RESTRICT",
        ),
        sa.ForeignKeyConstraint(
            ["entry_id"],
            ["entries.id"],
            name=op.f("fk_winner_records_entry_id_entries"),
            ondelete="SET NULL",
        ),
        sa.ForeignKeyConstraint(
            ["verified_by_admin_id"],
            ["admins.id"],
            name=op.f("fk_winner_records_verified_by_admin_id_admins"),
            ondelete="SET NULL",
        ),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_winner_records")),
        sa.UniqueConstraint("draw_id", "subscriber_id", "tier", name="uq_winner_per_tier"),
    )
    op.create_index(op.f("ix_winner_records_draw_id"), "winner_records", ["draw_id"])
    op.create_index(
        op.f("ix_winner_records_subscriber_id"), "winner_records", ["subscriber_id"]
    )
    op.create_index(
        "ix_winner_records_verification_status", "winner_records", ["verification_status"]
    )

    op.create_table(
        "donations",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("charity_id", sa.String(64), nullable=False),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("source", sa.String(20), nullable=False),
        sa.Column("subscriber_id", ID_TYPE, nullable=True),
        sa.Column("draw_id", sa.Integer(), nullable=True),
        sa.Column("winner_record_id", sa.Integer(), nullable=True),
        _timestamp("created_at"),
        sa.CheckConstraint(
            "source IN ('prize_split','direct','subscription')",
            name=op.f("ck_donations_donation_source_enum"),
        ),
        sa.CheckConstraint("amount > 0", name=op.f("ck_donations_donation_amount_positive")),
        sa.ForeignKeyConstraint(
            ["subscriber_id"],
            ["subscribers.id"],
            name=op.f("fk_donations_subscriber_id_subscribers"),
            ondelete="SET NULL",
        ),
        sa.ForeignKeyConstraint(
            ["draw_id"], ["draws.id"], name=op.f("fk_donations_draw_id_draws"), ondelete="SET NULL"
        ),
        sa.ForeignKeyConstraint(
            ["winner_record_id"],
            ["winner_records.id"],
            name=op.f("fk_donations_winner_record_id_winner_records"),
            ondelete="SET NULL",
        ),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_donations")),
        sa.UniqueConstraint("winner_record_id", name=op.f("uq_donations_winner_record_id")),
    )
    op.create_index(op.f("ix_donations_charity_id"), "donations", ["charity_id"])

    op.create_table(
        "activity_log",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("action_type", sa.String(50), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("actor_admin_id", ID_TYPE, nullable=True),
        sa.Column("target_type", sa.String(50), nullable=True),
        sa.Column("target_id", sa.Integer(), nullable=True),
        sa.Column("details", sa.JSON(), nullable=True),
        _timestamp("created_at"),
        sa.CheckConstraint(
            "action_type IN ({})".format(",".join(f"'{a}'" for a in ACTION_TYPES)),
            name=op.f("ck_activity_log_action_type_enum"),
        ),
        sa.ForeignKeyConstraint(
            ["actor_admin_id"],
            ["admins.id"],
            name=op.f("fk_activity_log_actor_admin_id_admins"),
            ondelete="SET NULL",
        ),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_activity_log")),
    )
    op.create_index(op.f("ix_activity_log_action_type"), "activity_log", ["action_type"])


def downgrade() -> None:
    op.drop_index(op.f("ix_activity_log_action_type"), table_name="activity_log")
    op.drop_table("activity_log")
    op.drop_index(op.f("ix_donations_charity_id"), table_name="donations")
    op.drop_table("donations")
    op.drop_index("ix_winner_records_verification_status", table_name="winner_records")
    op.drop_index(op.f("ix_winner_records_subscriber_id"), table_name="winner_records")
    op.drop_index(op.f("ix_winner_records_draw_id"), table_name="winner_records")
    op.drop_table("winner_records")
    op.drop_index(op.f("ix_entries_subscriber_id"), table_name="entries")
    op.drop_index(op.f("ix_entries_draw_id"), table_name="entries")
    op.drop_table("entries")
    op.drop_table("draws")
    op.drop_table("subscriptions")
    op.drop_table("subscribers")
    op.drop_index(op.f("ix_admins_email"), table_name="admins")
    op.drop_index(op.f("ix_admins_id"), table_name="admins")
    op.drop_table("admins")
