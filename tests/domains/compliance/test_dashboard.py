"""Tests for dashboard statistics and the activity feed."""

from datetime import UTC, datetime, timedelta

import pytest

from src.db.repositories import DocumentRepository
from src.domains.compliance.dashboard import ActivityType, DashboardService
from tests.conftest import OTHER_OWNER, OWNER


@pytest.fixture
def dashboard(session_factory, lifecycle) -> DashboardService:
    return DashboardService(session_factory, lifecycle)


class TestDashboardStats:
    @pytest.mark.asyncio
    async def test_empty_owner(self, dashboard):
        stats = await dashboard.stats(OWNER)
        assert stats.total_compliance_items == 0
        assert stats.compliance_score == 0.0

    @pytest.mark.asyncio
    async def test_counts_and_score(self, dashboard, session_factory, make_item, make_document):
        await make_item()
        await make_item(status="in_progress")
        await make_item(status="completed")
        await make_item(status="completed")
        await make_item(due_date=datetime.now(UTC) - timedelta(days=1))
        await make_item(owner=OTHER_OWNER, status="completed")

        await make_document()
        analysed = await make_document()
        async with session_factory() as session:
            await DocumentRepository(session).set_analysis(analysed, {"schema_version": 1})
            await session.commit()

        stats = await dashboard.stats(OWNER)

        assert stats.total_compliance_items == 5
        assert stats.pending_items == 1
        assert stats.in_progress_items == 1
        assert stats.completed_items == 2
        assert stats.expired_items == 1
        assert stats.total_documents == 2
        assert stats.analyzed_documents == 1
        assert stats.compliance_score == pytest.approx(40.0)


class TestRecentActivity:
    @pytest.mark.asyncio
    async def test_merged_newest_first(self, dashboard, make_item, make_document):
        await make_item(title="First obligation")
        await make_document()
        await make_item(title="Second obligation")
        await make_item(owner=OTHER_OWNER, title="Not mine")

        activity = await dashboard.recent_activity(OWNER, limit=10)

        assert [entry.activity_type for entry in activity] == [
            ActivityType.COMPLIANCE_CREATED,
            ActivityType.DOCUMENT_UPLOADED,
            ActivityType.COMPLIANCE_CREATED,
        ]
        assert activity[0].title == "Second obligation"
        assert activity[1].title == "contract.txt"

    @pytest.mark.asyncio
    async def test_limit(self, dashboard, make_item):
        for n in range(5):
            await make_item(title=f"Obligation {n}")
        activity = await dashboard.recent_activity(OWNER, limit=3)
        assert len(activity) == 3
