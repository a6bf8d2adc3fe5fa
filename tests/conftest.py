"""
Root test configuration.

Sets up:
- Settings pointing every path at a per-test temporary data directory
- BackupService / BackupScheduler instances bound to those settings
- A FastAPI app and AsyncClient for API tests (lifespan is skipped, so the
  scheduler is never started implicitly)
"""
import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport

from sappho.config import Settings
from sappho.main import create_app
from sappho.services.backup import BackupScheduler, BackupService

from tests.factories import make_database


@pytest.fixture()
def settings(tmp_path) -> Settings:
    data_dir = tmp_path / "data"
    return Settings(
        data_dir=str(data_dir),
        database_path=str(data_dir / "sappho.db"),
        covers_dir=str(data_dir / "covers"),
        backups_dir=str(data_dir / "backups"),
        upload_dir=str(tmp_path / "uploads"),
        auto_backup_interval=0,
        backup_retention=7,
        backup_include_covers=True,
        backup_initial_delay=0,
        max_upload_size=10 * 1024 * 1024,
    )


@pytest.fixture()
def database(settings: Settings):
    """Create the live database file."""
    return make_database(settings.effective_database_path)


@pytest.fixture()
def service(settings: Settings) -> BackupService:
    return BackupService(settings)


@pytest_asyncio.fixture()
async def scheduler(service: BackupService):
    """Scheduler instance, stopped and drained after the test."""
    instance = BackupScheduler(service)
    yield instance
    await instance.aclose()


@pytest.fixture()
def app(settings: Settings):
    return create_app(settings)


@pytest_asyncio.fixture()
async def client(app):
    """Provide an async HTTP client for testing."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://testserver") as ac:
        yield ac
    await app.state.backup_scheduler.aclose()
