"""contact change NOTIFY trigger

Learn: PostgreSQL LISTEN/NOTIFY is the change feed for contacts. Every
insert/update/delete fires pg_notify('contact_changes', ...) with the
operation and the affected row (NEW, or OLD for deletes). The feed observer
(techflow.realtime.feed) LISTENs on the channel when
TECHFLOW_REALTIME_MODE=feed. With the default sync mode the trigger still
fires but nobody listens, which costs nothing.

Payload stays well below the 8000-byte NOTIFY limit because messages are
capped at 1000 characters.

Revision ID: 0002_contact_change_notify
Revises: 0001_initial_schema
Create Date: 2026-10-02 16:40:51.502117
"""
from typing import Sequence, Union

from alembic import op


# revision identifiers, used by Alembic.
revision: str = "0002_contact_change_notify"
down_revision: Union[str, None] = "0001_initial_schema"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.execute("""
        CREATE OR REPLACE FUNCTION notify_contact_change()
        RETURNS TRIGGER AS $$
        DECLARE
            affected contacts%ROWTYPE;
        BEGIN
            IF TG_OP = 'DELETE' THEN
                affected := OLD;
            ELSE
                affected := NEW;
            END IF;
            PERFORM pg_notify('contact_changes', json_build_object(
                'op', TG_OP,
                'record', row_to_json(affected)
            )::text);
            RETURN NULL;
        END;
        $$ LANGUAGE plpgsql;
    """)

    op.execute("""
        CREATE TRIGGER contact_change_notify
            AFTER INSERT OR UPDATE OR DELETE ON contacts
            FOR EACH ROW
            EXECUTE FUNCTION notify_contact_change();
    """)


def downgrade() -> None:
    op.execute("DROP TRIGGER IF EXISTS contact_change_notify ON contacts;")
    op.execute("DROP FUNCTION IF EXISTS notify_contact_change;")
