"""Create resources and quizzes tables.

Revision ID: 001
Create Date: 2026-10-19
"""

from alembic import op

revision = "001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.execute("CREATE EXTENSION IF NOT EXISTS pgcrypto")

    # -- resources ------------------------------------------------------------
    op.execute(
        """
        CREATE TABLE resources (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            title TEXT NOT NULL,
            description TEXT,

            original_file_name TEXT NOT NULL,
            storage_key TEXT NOT NULL,
            url TEXT,
            declared_mime_type TEXT NOT NULL,
            file_size_bytes BIGINT NOT NULL CHECK (file_size_bytes >= 0),
            file_kind TEXT NOT NULL
                CHECK (file_kind IN ('pdf', 'image', 'document')),

            extracted_text TEXT,
            ocr_status TEXT NOT NULL DEFAULT 'pending'
                CHECK (ocr_status IN ('pending', 'processing', 'completed', 'failed')),
            ocr_error TEXT,
            is_processed BOOLEAN NOT NULL DEFAULT FALSE,

            is_deleted BOOLEAN NOT NULL DEFAULT FALSE,
            deleted_at TIMESTAMPTZ,

            uploaded_by TEXT NOT NULL,
            subject TEXT,
            tags TEXT[] NOT NULL DEFAULT '{}',
            quiz_generated BOOLEAN NOT NULL DEFAULT FALSE,
            generated_quiz_ids UUID[] NOT NULL DEFAULT '{}',

            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),

            -- completed runs always carry text and no error
            CHECK (
                ocr_status <> 'completed'
                OR (extracted_text IS NOT NULL AND extracted_text <> '' AND ocr_error IS NULL)
            ),
            CHECK (ocr_status <> 'failed' OR ocr_error IS NOT NULL)
        )
        """
    )
    op.execute("CREATE INDEX idx_resources_uploaded_by_created ON resources (uploaded_by, created_at DESC)")
    op.execute("CREATE INDEX idx_resources_ocr_status ON resources (ocr_status)")
    op.execute("CREATE INDEX idx_resources_is_deleted ON resources (is_deleted)")

    # -- quizzes --------------------------------------------------------------
    op.execute(
        """
        CREATE TABLE quizzes (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            title TEXT NOT NULL,
            description TEXT,
            source_resource_id UUID REFERENCES resources(id),
            source_text TEXT,
            questions JSONB NOT NULL DEFAULT '[]',
            total_questions INT NOT NULL DEFAULT 0,
            total_points INT NOT NULL DEFAULT 0,
            time_limit INT,
            passing_score INT NOT NULL DEFAULT 70
                CHECK (passing_score BETWEEN 0 AND 100),
            generated_by TEXT,
            created_by TEXT NOT NULL,
            subject TEXT,
            tags TEXT[] NOT NULL DEFAULT '{}',
            is_published BOOLEAN NOT NULL DEFAULT FALSE,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
        """
    )
    op.execute("CREATE INDEX idx_quizzes_source_resource ON quizzes (source_resource_id)")
    op.execute("CREATE INDEX idx_quizzes_created_by_created ON quizzes (created_by, created_at DESC)")


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS quizzes")
    op.execute("DROP TABLE IF EXISTS resources")
