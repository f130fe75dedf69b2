"""content management

Revision ID: 2026_10_15_0000
Revises: 2026_10_01_0000
Create Date: 2026-10-15 09:00:00.000000

Makes testimonials and resources fully managed by the back office:
- Testimonials gain company and updated_at; is_approved becomes is_public
- Resources gain description, type, category, thumbnail, size, featured flag,
  creator and updated_at
- Users gain phone and organization for profile updates
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '2026_10_15_0000'
down_revision: Union[str, None] = '2026_10_01_0000'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

RESOURCE_TYPES = "'pdf', 'docx', 'image', 'video', 'audio', 'article', 'whitepaper', 'template', 'toolkit'"
RESOURCE_CATEGORIES = (
    "'videos', 'articles', 'pdfs', 'whitepapers', 'leadership', "
    "'team-building', 'communication', 'strategy', 'other'"
)


def upgrade() -> None:
    # Testimonials
    op.alter_column('testimonials', 'is_approved', new_column_name='is_public')
    op.add_column('testimonials', sa.Column('company', sa.String(255), nullable=False, server_default=''))
    op.add_column(
        'testimonials',
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
    )
    op.create_index('idx_testimonials_public_created', 'testimonials', ['is_public', 'created_at'])

    # Resources
    op.add_column('resources', sa.Column('description', sa.Text(), nullable=False, server_default=''))
    op.add_column('resources', sa.Column('resource_type', sa.String(20), nullable=False, server_default='pdf'))
    op.add_column('resources', sa.Column('category', sa.String(30), nullable=False, server_default='other'))
    op.add_column('resources', sa.Column('thumbnail_url', sa.String(1024), nullable=True))
    op.add_column('resources', sa.Column('file_size', sa.BigInteger(), nullable=True))
    op.add_column('resources', sa.Column('featured', sa.Boolean(), nullable=False, server_default=sa.text('false')))
    op.add_column('resources', sa.Column('created_by', sa.String(255), nullable=True))
    op.add_column(
        'resources',
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
    )
    op.create_check_constraint('ck_resource_type', 'resources', f"resource_type IN ({RESOURCE_TYPES})")
    op.create_check_constraint('ck_resource_category', 'resources', f"category IN ({RESOURCE_CATEGORIES})")
    op.create_index('idx_resources_published_created', 'resources', ['is_published', 'created_at'])

    # Users
    op.add_column('users', sa.Column('phone', sa.String(50), nullable=True))
    op.add_column('users', sa.Column('organization', sa.String(255), nullable=True))


def downgrade() -> None:
    op.drop_column('users', 'organization')
    op.drop_column('users', 'phone')

    op.drop_index('idx_resources_published_created', 'resources')
    op.drop_constraint('ck_resource_category', 'resources', type_='check')
    op.drop_constraint('ck_resource_type', 'resources', type_='check')
    for column in (
        'updated_at', 'created_by', 'featured', 'file_size',
        'thumbnail_url', 'category', 'resource_type', 'description',
    ):
        op.drop_column('resources', column)

    op.drop_index('idx_testimonials_public_created', 'testimonials')
    op.drop_column('testimonials', 'updated_at')
    op.drop_column('testimonials', 'company')
    op.alter_column('testimonials', 'is_public', new_column_name='is_approved')
