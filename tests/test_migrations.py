import os
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

from alembic import command
from alembic.autogenerate import compare_metadata
from alembic.config import Config
from alembic.runtime.migration import MigrationContext

from charitydraw.db.engine import make_engine
from charitydraw.models import Base

ROOT_DIR = Path(__file__).resolve().parents[1]


class TestInitialMigration(unittest.TestCase):
    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        self.url = f"sqlite+pysqlite:///{Path(self.tmpdir.name) / 'migrated.db'}"

    def tearDown(self):
        self.tmpdir.cleanup()

    def _upgrade_to_head(self):
        # No ini file, so env.py leaves the logging configuration alone.
        config = Config()
        config.set_main_option("script_location", str(ROOT_DIR / "alembic"))
        with patch.dict(os.environ, {"DB_URL": self.url}):
            command.upgrade(config, "head")

    def test_head_matches_models(self):
        self._upgrade_to_head()

        engine = make_engine(self.url)
        try:
            with engine.connect() as connection:
                context = MigrationContext.configure(
                    connection=connection, opts={"compare_type": True}
                )
                diffs = compare_metadata(context, Base.metadata)
        finally:
            engine.dispose()

        self.assertEqual(diffs, [])


if __name__ == "__main__":
    unittest.main()
