"""add path store documents table"""

from alembic import op
import sqlalchemy as sa
from typing import Sequence, Union

revision: str = '7f3a9c2e1b40'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'path_store_documents',
        sa.Column('shard', sa.String(), primary_key=True),
        sa.Column('document', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
    )


def downgrade() -> None:
    op.drop_table('path_store_documents')
