"""verification_audit_immutability

Revision ID: b3d5f7a9c1e2
Revises: 7a1c3e9d2f40
Create Date: 2026-10-12 09:45:00.000000

Enforce append-only semantics on verification_audit_entries at the DB level:
- Revoke UPDATE and DELETE from PUBLIC
- Grant SELECT and INSERT only
"""
from typing import Sequence, Union

from alembic import op


# revision identifiers, used by Alembic.
revision: str = 'b3d5f7a9c1e2'
down_revision: Union[str, None] = '7a1c3e9d2f40'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.execute("REVOKE UPDATE, DELETE ON verification_audit_entries FROM PUBLIC;")
    op.execute("GRANT SELECT, INSERT ON verification_audit_entries TO PUBLIC;")


def downgrade() -> None:
    # Disaster recovery only
    op.execute("GRANT UPDATE, DELETE ON verification_audit_entries TO PUBLIC;")
