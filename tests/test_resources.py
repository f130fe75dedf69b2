"""
Tests for the resource library: browsing, downloads and catalogue changes.
"""

from datetime import datetime, timedelta
from unittest.mock import AsyncMock, MagicMock
from uuid import uuid4

import pytest

from backoffice.db.models import Resource
from backoffice.exceptions import NotFoundError, ValidationError
from backoffice.models.api import (
    AuditAction,
    CreateResourceRequest,
    ResourceCategory,
    ResourceType,
    UpdateResourceRequest,
)
from backoffice.services.resources import ResourceService


def make_resource(is_published: bool = True, **overrides) -> Resource:
    data = {
        "id": uuid4(),
        "title": "Leading Through Change",
        "description": "A field guide for first-time managers.",
        "resource_type": "pdf",
        "category": "leadership",
        "file_url": "https://cdn.example.com/guide.pdf",
        "thumbnail_url": None,
        "file_size": 2048,
        "download_count": 7,
        "is_published": is_published,
        "featured": False,
        "created_by": "kp_admin_001",
        "created_at": datetime(2026, 3, 1),
        "updated_at": datetime(2026, 3, 1),
    }
    data.update(overrides)
    return Resource(**data)


@pytest.fixture
def resource_service(db_session: AsyncMock, audit_service: MagicMock, clock) -> ResourceService:
    return ResourceService(db_session, audit_service, clock=clock)


class TestBrowse:
    async def test_get_published(self, resource_service: ResourceService, db_session: AsyncMock):
        resource = make_resource()
        db_session.get = AsyncMock(return_value=resource)

        assert await resource_service.get(resource.id, published_only=True) is resource

    async def test_unpublished_hidden_from_public(self, resource_service: ResourceService, db_session: AsyncMock):
        db_session.get = AsyncMock(return_value=make_resource(is_published=False))

        with pytest.raises(NotFoundError, match="Resource not found"):
            await resource_service.get(uuid4(), published_only=True)

    async def test_unpublished_visible_to_admin(self, resource_service: ResourceService, db_session: AsyncMock):
        resource = make_resource(is_published=False)
        db_session.get = AsyncMock(return_value=resource)

        assert await resource_service.get(resource.id) is resource

    async def test_list_filters(self, resource_service: ResourceService, db_session: AsyncMock, make_result):
        resource = make_resource()
        db_session.execute = AsyncMock(return_value=make_result(scalars=[resource]))

        rows = await resource_service.list_resources(
            category=ResourceCategory.LEADERSHIP, resource_type=ResourceType.PDF, search="guide"
        )

        assert rows == [resource]
        sql = str(db_session.execute.call_args[0][0])
        assert "resources.is_published IS" in sql
        assert "resources.category" in sql
        assert "resources.resource_type" in sql

    async def test_admin_list_includes_unpublished(
        self, resource_service: ResourceService, db_session: AsyncMock, make_result
    ):
        db_session.execute = AsyncMock(return_value=make_result(scalars=[]))

        await resource_service.list_resources(published_only=False)

        assert "is_published" not in str(db_session.execute.call_args[0][0])


class TestDownload:
    async def test_counts_published_resource(self, resource_service: ResourceService, db_session: AsyncMock):
        resource = make_resource()
        db_session.get = AsyncMock(return_value=resource)

        url = await resource_service.record_download(resource.id)

        assert url == "https://cdn.example.com/guide.pdf"
        db_session.execute.assert_awaited_once()
        db_session.commit.assert_awaited_once()

    async def test_unpublished_is_not_found(self, resource_service: ResourceService, db_session: AsyncMock):
        db_session.get = AsyncMock(return_value=make_resource(is_published=False))

        with pytest.raises(NotFoundError):
            await resource_service.record_download(uuid4())
        db_session.execute.assert_not_awaited()


class TestCatalogue:
    async def test_create(
        self,
        resource_service: ResourceService,
        db_session: AsyncMock,
        audit_service: MagicMock,
        admin_user,
        fixed_now,
    ):
        body = CreateResourceRequest(
            title=" Team Charter Template ",
            description="Fill-in charter for new teams.",
            type=ResourceType.TEMPLATE,
            category=ResourceCategory.TEAM_BUILDING,
            file_url="https://cdn.example.com/charter.docx",
        )

        resource = await resource_service.create(body, admin_user)

        assert resource.title == "Team Charter Template"
        assert resource.resource_type == "template"
        assert resource.category == "team-building"
        assert resource.download_count == 0
        assert resource.created_by == "kp_admin_001"
        assert resource.created_at == fixed_now
        db_session.add.assert_called_once_with(resource)
        args = audit_service.log_action.call_args
        assert args[0][1] == AuditAction.CREATE
        assert args[0][2] == "resource"
        assert args.kwargs["name"] == "Team Charter Template"

    @pytest.mark.parametrize(
        ("overrides", "message"),
        [
            ({"title": "  "}, "Title and description are required"),
            ({"description": ""}, "Title and description are required"),
            ({"file_url": ""}, "file URL is required"),
        ],
    )
    async def test_create_requires_fields(
        self, resource_service: ResourceService, db_session: AsyncMock, admin_user, overrides, message
    ):
        data = {"title": "Guide", "description": "About", "file_url": "https://cdn.example.com/g.pdf"}
        data.update(overrides)

        with pytest.raises(ValidationError, match=message):
            await resource_service.create(CreateResourceRequest(**data), admin_user)
        db_session.add.assert_not_called()

    async def test_update_applies_present_fields(
        self,
        resource_service: ResourceService,
        db_session: AsyncMock,
        audit_service: MagicMock,
        admin_user,
        fixed_now,
    ):
        resource = make_resource()
        db_session.get = AsyncMock(return_value=resource)

        updated = await resource_service.update(
            resource.id,
            UpdateResourceRequest(featured=True, category=ResourceCategory.STRATEGY),
            admin_user,
        )

        assert updated.featured is True
        assert updated.category == "strategy"
        assert updated.title == "Leading Through Change"
        assert updated.updated_at == fixed_now
        kwargs = audit_service.log_action.call_args.kwargs
        assert kwargs["before"]["featured"] is False
        assert kwargs["after"]["featured"] is True

    async def test_update_rejects_blank_title(
        self, resource_service: ResourceService, db_session: AsyncMock, admin_user
    ):
        db_session.get = AsyncMock(return_value=make_resource())

        with pytest.raises(ValidationError, match="Title cannot be empty"):
            await resource_service.update(uuid4(), UpdateResourceRequest(title=" "), admin_user)
        db_session.commit.assert_not_awaited()

    async def test_delete(
        self, resource_service: ResourceService, db_session: AsyncMock, audit_service: MagicMock, admin_user
    ):
        resource = make_resource(created_at=datetime(2026, 3, 1) - timedelta(days=3))
        db_session.get = AsyncMock(return_value=resource)

        await resource_service.delete(resource.id, admin_user)

        db_session.delete.assert_awaited_once_with(resource)
        db_session.commit.assert_awaited_once()
        args = audit_service.log_action.call_args
        assert args[0][1] == AuditAction.DELETE
        assert args[0][3] == str(resource.id)

    async def test_delete_unknown(self, resource_service: ResourceService, db_session: AsyncMock, admin_user):
        with pytest.raises(NotFoundError):
            await resource_service.delete(uuid4(), admin_user)
        db_session.delete.assert_not_awaited()
