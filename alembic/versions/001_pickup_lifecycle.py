"""Pickup lifecycle tables

Revision ID: 001
Revises:
Create Date: 2026-10-19

Creates: posts, materials, messages, pickups, event_outbox
Enums: posttype, poststatus, messagetype, pickupstatus, eventstatus
"""

from collections.abc import Sequence

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    # ── 1. Create enum types ──────────────────────────────────────────────
    op.execute("CREATE TYPE posttype AS ENUM ('WASTE', 'INITIATIVE', 'FORUM');")
    op.execute("CREATE TYPE poststatus AS ENUM ('ACTIVE', 'CLAIMED', 'COMPLETED', 'INACTIVE');")
    op.execute("CREATE TYPE messagetype AS ENUM ('TEXT', 'SYSTEM');")
    op.execute("""
        CREATE TYPE pickupstatus AS ENUM (
            'PROPOSED', 'CONFIRMED', 'IN_TRANSIT',
            'PICKING_ONGOING', 'COMPLETED', 'CANCELLED'
        );
    """)
    op.execute(
        "CREATE TYPE eventstatus AS ENUM ('PENDING', 'PROCESSING', 'COMPLETED', 'FAILED');"
    )

    # ── 2. Posts and materials ─────────────────────────────────────────────
    op.execute("""
        CREATE TABLE posts (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            user_id UUID NOT NULL,
            post_type posttype NOT NULL,
            title VARCHAR(255) NOT NULL,
            status poststatus NOT NULL DEFAULT 'ACTIVE',
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
        );
    """)
    op.execute("CREATE INDEX ix_posts_user_id ON posts (user_id);")
    op.execute("CREATE INDEX ix_posts_status ON posts (status);")

    op.execute("""
        CREATE TABLE materials (
            id VARCHAR(64) PRIMARY KEY,
            display_name VARCHAR(120) NOT NULL,
            category VARCHAR(50) NOT NULL DEFAULT 'Recyclable',
            average_price_per_kg NUMERIC(12, 2) NOT NULL DEFAULT 0,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
        );
    """)

    # ── 3. Conversation log ────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE messages (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            post_id UUID NOT NULL REFERENCES posts(id) ON DELETE CASCADE,
            sender_id UUID,
            receiver_id UUID NOT NULL,
            message_type messagetype NOT NULL DEFAULT 'TEXT',
            body TEXT NOT NULL,
            metadata_extra JSONB NOT NULL DEFAULT '{}'::jsonb,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now()
        );
    """)
    op.execute(
        "CREATE INDEX ix_messages_post_id_created_at ON messages (post_id, created_at);"
    )
    op.execute("CREATE INDEX ix_messages_receiver_id ON messages (receiver_id);")

    # ── 4. Pickups ─────────────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE pickups (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            post_id UUID NOT NULL REFERENCES posts(id) ON DELETE RESTRICT,

            -- Parties
            giver_id UUID NOT NULL,
            collector_id UUID NOT NULL,
            proposed_by UUID NOT NULL,

            -- Lifecycle
            status pickupstatus NOT NULL DEFAULT 'PROPOSED',
            version INTEGER NOT NULL,

            -- Schedule (marketplace local time)
            pickup_date DATE NOT NULL,
            pickup_time TIME NOT NULL,
            pickup_location JSONB NOT NULL,

            -- Contact
            contact_person VARCHAR(200) NOT NULL,
            contact_number VARCHAR(50) NOT NULL,
            alternate_contact VARCHAR(50),
            special_instructions TEXT,

            -- Transition timestamps
            proposed_at TIMESTAMPTZ NOT NULL,
            confirmed_at TIMESTAMPTZ,
            in_transit_at TIMESTAMPTZ,
            picking_started_at TIMESTAMPTZ,
            completed_at TIMESTAMPTZ,
            cancelled_at TIMESTAMPTZ,

            -- Cancellation
            cancelled_by UUID,
            cancellation_reason TEXT,

            -- Completion record
            completion JSONB,

            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            CONSTRAINT ck_pickups_distinct_parties CHECK (giver_id <> collector_id),
            CONSTRAINT ck_pickups_single_terminal_stamp
                CHECK (completed_at IS NULL OR cancelled_at IS NULL)
        );
    """)
    op.execute("CREATE INDEX ix_pickups_post_id ON pickups (post_id);")
    op.execute("CREATE INDEX ix_pickups_giver_id ON pickups (giver_id);")
    op.execute("CREATE INDEX ix_pickups_collector_id ON pickups (collector_id);")
    op.execute("CREATE INDEX ix_pickups_status ON pickups (status);")
    op.execute("""
        CREATE UNIQUE INDEX uq_pickups_one_active_per_post ON pickups (post_id)
        WHERE status NOT IN ('COMPLETED', 'CANCELLED');
    """)

    # ── 5. Event outbox ────────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE event_outbox (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            event_type VARCHAR(255) NOT NULL,
            aggregate_type VARCHAR(255) NOT NULL,
            aggregate_id VARCHAR(255) NOT NULL,
            payload JSONB NOT NULL DEFAULT '{}'::jsonb,
            status eventstatus NOT NULL DEFAULT 'PENDING',
            retry_count INTEGER NOT NULL DEFAULT 0,
            max_retries INTEGER NOT NULL DEFAULT 3,
            last_error TEXT,
            processed_at TIMESTAMPTZ,
            schema_version INTEGER NOT NULL DEFAULT 1,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
        );
    """)
    op.execute("CREATE INDEX ix_event_outbox_status ON event_outbox (status);")
    op.execute("CREATE INDEX ix_event_outbox_event_type ON event_outbox (event_type);")
    op.execute(
        "CREATE INDEX ix_event_outbox_aggregate ON event_outbox (aggregate_type, aggregate_id);"
    )


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS event_outbox CASCADE;")
    op.execute("DROP TABLE IF EXISTS pickups CASCADE;")
    op.execute("DROP TABLE IF EXISTS messages CASCADE;")
    op.execute("DROP TABLE IF EXISTS materials CASCADE;")
    op.execute("DROP TABLE IF EXISTS posts CASCADE;")
    op.execute("DROP TYPE IF EXISTS eventstatus;")
    op.execute("DROP TYPE IF EXISTS pickupstatus;")
    op.execute("DROP TYPE IF EXISTS messagetype;")
    op.execute("DROP TYPE IF EXISTS poststatus;")
    op.execute("DROP TYPE IF EXISTS posttype;")
