import contextlib
import io
import tempfile
import unittest
from pathlib import Path

from sqlalchemy import create_engine, select
from sqlalchemy.orm import sessionmaker

from rental_desk.models.rental_models import Profile, Warehouse
from rental_desk.scripts.upsert_profile import main
from rental_desk.services.profile_service import verify_password


class UpsertProfileScriptTests(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.db_url = f"sqlite+pysqlite:///{Path(self._tmp.name) / 'rental_desk.db'}"

    def tearDown(self):
        self._tmp.cleanup()

    def _run(self, *args):
        out = io.StringIO()
        with contextlib.redirect_stdout(out):
            code = main(["--db-url", self.db_url, *args])
        return code, out.getvalue()

    def _profile(self, email):
        engine = create_engine(self.db_url, future=True)
        try:
            with sessionmaker(bind=engine, future=True)() as db:
                profile = db.execute(select(Profile).where(Profile.email == email)).scalars().first()
                warehouse = db.get(Warehouse, profile.warehouse_id) if profile and profile.warehouse_id else None
                return profile, warehouse
        finally:
            engine.dispose()

    def test_creates_manager_with_warehouse(self):
        code, output = self._run(
            "--email", "Boss@Example.edu",
            "--password", "first-pass",
            "--warehouse-name", "Main Store",
        )
        self.assertEqual(code, 0)
        self.assertIn("created=True", output)

        profile, warehouse = self._profile("boss@example.edu")
        self.assertEqual(profile.role, "manager")
        self.assertEqual(warehouse.name, "Main Store")
        self.assertTrue(verify_password(profile, "first-pass"))

    def test_updates_existing_profile_role_and_password(self):
        self._run("--email", "boss@example.edu", "--password", "first-pass")
        code, output = self._run(
            "--email", "boss@example.edu",
            "--role", "storage_manager",
            "--password", "second-pass",
        )
        self.assertEqual(code, 0)
        self.assertIn("created=False", output)

        profile, _ = self._profile("boss@example.edu")
        self.assertEqual(profile.role, "storage_manager")
        self.assertTrue(verify_password(profile, "second-pass"))
        self.assertFalse(verify_password(profile, "first-pass"))

    def test_new_profile_requires_password(self):
        with contextlib.redirect_stderr(io.StringIO()):
            with self.assertRaises(SystemExit):
                self._run("--email", "nobody@example.edu")

    def test_short_password_is_rejected(self):
        with contextlib.redirect_stderr(io.StringIO()):
            with self.assertRaises(SystemExit):
                self._run("--email", "boss@example.edu", "--password", "abc")


if __name__ == "__main__":
    unittest.main()
