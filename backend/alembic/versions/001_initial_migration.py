"""Initial migration: tournaments, registrations, brackets, matches, results

Revision ID: 001_initial
Revises:
Create Date: 2026-10-19 00:00:00.000000

"""

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision = "001_initial"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "tournament",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("location", sa.String(), nullable=False),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("end_date", sa.Date(), nullable=False),
        sa.Column("notes", sa.String(), nullable=True),
        sa.Column("status", sa.String(), nullable=False, server_default="UPCOMING"),
        sa.Column("completed_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "registration",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("tournament_id", sa.Integer(), nullable=False),
        sa.Column("participant_id", sa.Integer(), nullable=False),
        sa.Column("participant_name", sa.String(), nullable=False),
        sa.Column("dojo_name", sa.String(), nullable=True),
        sa.Column("category_age", sa.String(), nullable=False),
        sa.Column("category_weight", sa.String(), nullable=False),
        sa.Column("category_belt", sa.String(), nullable=False),
        sa.Column("seed_rank", sa.Integer(), nullable=True),
        sa.Column("approval_status", sa.String(), nullable=False, server_default="PENDING"),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["tournament_id"], ["tournament.id"]),
        sa.UniqueConstraint("tournament_id", "participant_id", name="uq_registration_participant"),
    )
    op.create_index("ix_registration_tournament_id", "registration", ["tournament_id"])

    op.create_table(
        "bracket",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("tournament_id", sa.Integer(), nullable=False),
        sa.Column("category_key", sa.String(), nullable=False),
        sa.Column("category_name", sa.String(), nullable=False),
        sa.Column("category_age", sa.String(), nullable=False),
        sa.Column("category_weight", sa.String(), nullable=False),
        sa.Column("category_belt", sa.String(), nullable=False),
        sa.Column("total_participants", sa.Integer(), nullable=False),
        sa.Column("bracket_size", sa.Integer(), nullable=False),
        sa.Column("total_rounds", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(), nullable=False, server_default="DRAFT"),
        sa.Column("locked_at", sa.DateTime(), nullable=True),
        sa.Column("completed_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["tournament_id"], ["tournament.id"]),
        sa.UniqueConstraint("tournament_id", "category_key", name="uq_bracket_category"),
    )
    op.create_index("ix_bracket_tournament_id", "bracket", ["tournament_id"])

    op.create_table(
        "match",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("bracket_id", sa.Integer(), nullable=False),
        sa.Column("tournament_id", sa.Integer(), nullable=False),
        sa.Column("round_number", sa.Integer(), nullable=False),
        sa.Column("round_name", sa.String(), nullable=False),
        sa.Column("match_number", sa.Integer(), nullable=False),
        sa.Column("position_in_round", sa.Integer(), nullable=False),
        sa.Column("fighter_a_id", sa.Integer(), nullable=True),
        sa.Column("fighter_a_name", sa.String(), nullable=True),
        sa.Column("fighter_b_id", sa.Integer(), nullable=True),
        sa.Column("fighter_b_name", sa.String(), nullable=True),
        sa.Column("source_match_a_id", sa.Integer(), nullable=True),
        sa.Column("source_match_b_id", sa.Integer(), nullable=True),
        sa.Column("is_bye", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("status", sa.String(), nullable=False, server_default="SCHEDULED"),
        sa.Column("fighter_a_score", sa.Integer(), nullable=True),
        sa.Column("fighter_b_score", sa.Integer(), nullable=True),
        sa.Column("winner_id", sa.Integer(), nullable=True),
        sa.Column("notes", sa.String(), nullable=True),
        sa.Column("started_at", sa.DateTime(), nullable=True),
        sa.Column("completed_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["bracket_id"], ["bracket.id"]),
        sa.ForeignKeyConstraint(["tournament_id"], ["tournament.id"]),
        sa.ForeignKeyConstraint(["source_match_a_id"], ["match.id"]),
        sa.ForeignKeyConstraint(["source_match_b_id"], ["match.id"]),
        sa.UniqueConstraint("bracket_id", "match_number", name="uq_match_bracket_number"),
        sa.UniqueConstraint("bracket_id", "round_number", "position_in_round", name="uq_match_bracket_position"),
    )
    op.create_index("ix_match_bracket_id", "match", ["bracket_id"])
    op.create_index("ix_match_tournament_id", "match", ["tournament_id"])

    op.create_table(
        "tournamentresult",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("tournament_id", sa.Integer(), nullable=False),
        sa.Column("bracket_id", sa.Integer(), nullable=False),
        sa.Column("participant_id", sa.Integer(), nullable=False),
        sa.Column("participant_name", sa.String(), nullable=True),
        sa.Column("category_name", sa.String(), nullable=False),
        sa.Column("final_rank", sa.Integer(), nullable=False),
        sa.Column("medal", sa.String(), nullable=True),
        sa.Column("total_matches", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("matches_won", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("matches_lost", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("eliminated_in_round", sa.String(), nullable=True),
        sa.Column("eliminated_by_id", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["tournament_id"], ["tournament.id"]),
        sa.ForeignKeyConstraint(["bracket_id"], ["bracket.id"]),
        sa.UniqueConstraint("bracket_id", "participant_id", name="uq_result_bracket_participant"),
        sa.UniqueConstraint("bracket_id", "final_rank", name="uq_result_bracket_rank"),
    )
    op.create_index("ix_tournamentresult_tournament_id", "tournamentresult", ["tournament_id"])
    op.create_index("ix_tournamentresult_bracket_id", "tournamentresult", ["bracket_id"])


def downgrade() -> None:
    op.drop_index("ix_tournamentresult_bracket_id", table_name="tournamentresult")
    op.drop_index("ix_tournamentresult_tournament_id", table_name="tournamentresult")
    op.drop_table("tournamentresult")
    op.drop_index("ix_match_tournament_id", table_name="match")
    op.drop_index("ix_match_bracket_id", table_name="match")
    op.drop_table("match")
    op.drop_index("ix_bracket_tournament_id", table_name="bracket")
    op.drop_table("bracket")
    op.drop_index("ix_registration_tournament_id", table_name="registration")
    op.drop_table("registration")
    op.drop_table("tournament")
