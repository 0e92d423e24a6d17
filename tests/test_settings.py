"""
Tests for configuration and component wiring.
"""

import pytest
from pydantic import ValidationError

from sumbook.config import AppSettings, AuthSettings, get_settings
from sumbook.ledger import SplitLayout, UnifiedLayout
from sumbook.orchestrator import LoopRunner, create_app_components
from sumbook.storage import InMemoryDocumentStore


APP_VARIABLES = (
    "APP_STORAGE_BACKEND",
    "APP_TRANSACTION_LAYOUT",
    "APP_DEFAULT_STORE_NAME",
    "APP_DEFAULT_CURRENCY",
    "APP_PERSIST_AUDIT_LOG",
)


@pytest.fixture
def clean_env(monkeypatch):
    for name in APP_VARIABLES:
        monkeypatch.delenv(name, raising=False)
    get_settings.cache_clear()
    yield monkeypatch
    get_settings.cache_clear()


class TestAppSettings:
    """Tests for AppSettings."""

    def test_defaults(self, clean_env):
        """Test the defaults for a local run."""
        settings = AppSettings()
        assert settings.storage_backend == "memory"
        assert settings.transaction_layout == "unified"
        assert settings.default_store_name == "Personal"
        assert settings.default_currency == "USD"
        assert settings.persist_audit_log is False

    def test_from_environment(self, clean_env):
        """Test reading values from the environment."""
        clean_env.setenv("APP_TRANSACTION_LAYOUT", "split")
        clean_env.setenv("APP_DEFAULT_CURRENCY", "bdt")
        settings = AppSettings()
        assert settings.transaction_layout == "split"
        assert settings.default_currency == "BDT"

    def test_unknown_layout_rejected(self, clean_env):
        """Test that only the known layouts are accepted."""
        clean_env.setenv("APP_TRANSACTION_LAYOUT", "sideways")
        with pytest.raises(ValidationError):
            AppSettings()

    def test_demo_admin_needs_both_values(self):
        """Test that the demo admin is only enabled with an email and a password."""
        assert not AuthSettings(demo_admin_email="admin@example.com", demo_admin_password=None).demo_admin_enabled
        assert AuthSettings(demo_admin_email="admin@example.com", demo_admin_password="admin123").demo_admin_enabled


class TestComponents:
    """Tests for create_app_components()."""

    def test_memory_components(self, clean_env):
        """Test wiring with the in-memory backend and no AI."""
        components = create_app_components(use_ai=False)

        assert isinstance(components.store, InMemoryDocumentStore)
        assert isinstance(components.session.layout, UnifiedLayout)
        assert components.insights is None
        assert components.session.default_store_name == "Personal"

    def test_layout_from_settings(self, clean_env):
        """Test that the configured layout reaches the session."""
        clean_env.setenv("APP_TRANSACTION_LAYOUT", "split")
        components = create_app_components(use_ai=False)
        assert isinstance(components.session.layout, SplitLayout)

    def test_sign_in_and_mirror_through_runner(self, clean_env):
        """Test the loop thread a synchronous host uses to drive the session."""
        components = create_app_components(use_ai=False)
        runner = LoopRunner()
        try:
            user = runner.run(components.auth.provider.create_user("ana@example.com", "secret1", "Ana"))
            runner.run(components.session.init(user))
            runner.run(components.actions.flush())
            stores = runner.call(lambda: [s.name for s in components.session.stores])
        finally:
            runner.stop()

        assert stores == ["Personal"]
