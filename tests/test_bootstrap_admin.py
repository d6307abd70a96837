import importlib.util
from pathlib import Path

from warden.service.runtime import get_runtime

_SCRIPT = Path(__file__).resolve().parent.parent / "scripts" / "bootstrap_admin.py"
_spec = importlib.util.spec_from_file_location("bootstrap_admin", _SCRIPT)
bootstrap = importlib.util.module_from_spec(_spec)
_spec.loader.exec_module(bootstrap)


class TestBootstrapAdmin:
    async def test_creates_admin(self):
        result = await bootstrap.bootstrap_admin(
            "root", "root@example.com", "password123", "Site Admin"
        )
        assert result["status"] == "created"
        user = get_runtime().store.get_user(result["user_id"])
        assert user.role == "admin"

    async def test_promotes_existing_user(self):
        runtime = get_runtime()
        user = await runtime.auth.register(
            "alice", "alice@example.com", "password123", full_name="Alice Liddell"
        )
        result = await bootstrap.bootstrap_admin(
            "alice", "alice@example.com", "password123", "Alice Liddell"
        )
        assert result["status"] == "promoted"
        assert runtime.store.get_user(user.id).role == "admin"
        again = await bootstrap.bootstrap_admin(
            "alice", "alice@example.com", "password123", "Alice Liddell"
        )
        assert again["status"] == "already_admin"

    async def test_dry_run_changes_nothing(self):
        result = await bootstrap.bootstrap_admin(
            "root", "root@example.com", "password123", "Site Admin", dry_run=True
        )
        assert result["status"] == "dry_run"
        assert get_runtime().store.count_users() == 0
