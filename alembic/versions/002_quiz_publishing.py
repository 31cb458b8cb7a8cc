"""Track when a quiz was published and index the student-facing listing.

Revision ID: 002
Create Date: 2026-10-19

Students only ever list published quizzes, newest first, so the listing
index leads with ``is_published``.
"""

from alembic import op

revision = "002"
down_revision = "001"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.execute("ALTER TABLE quizzes ADD COLUMN published_at TIMESTAMPTZ")
    op.execute(
        """
        ALTER TABLE quizzes ADD CONSTRAINT quizzes_published_at_check
            CHECK (is_published OR published_at IS NULL)
        """
    )
    op.execute("CREATE INDEX idx_quizzes_published_created ON quizzes (is_published, created_at DESC)")


def downgrade() -> None:
    op.execute("DROP INDEX IF EXISTS idx_quizzes_published_created")
    op.execute("ALTER TABLE quizzes DROP CONSTRAINT IF EXISTS quizzes_published_at_check")
    op.execute("ALTER TABLE quizzes DROP COLUMN IF EXISTS published_at")
