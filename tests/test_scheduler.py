"""Tests for retention and the system jobs."""

import os

from bakker_api.config import save_backup_config
from bakker_api.models import BackupConfig
from bakker_api.scheduler import create_scheduler, enforce_all_retention, enforce_retention, sweep_stale_status

from conftest import write_backup_file


class TestRetention:
    def test_keeps_newest(self, tmp_path):
        backup_dir = str(tmp_path)
        for day in range(1, 6):
            write_backup_file(backup_dir, f"prod_2024010{day}_000000.sql.gz")
        write_backup_file(backup_dir, "staging_20240101_000000.sql.gz")

        assert enforce_retention(backup_dir, "prod", 2) == 3
        assert sorted(os.listdir(backup_dir)) == [
            "prod_20240104_000000.sql.gz",
            "prod_20240105_000000.sql.gz",
            "staging_20240101_000000.sql.gz",
        ]

    def test_under_limit(self, tmp_path):
        write_backup_file(str(tmp_path), "prod_20240101_000000.sql.gz")
        assert enforce_retention(str(tmp_path), "prod", 5) == 0

    def test_prefix_of_other_database_is_untouched(self, tmp_path):
        """Test 'prod' retention does not count 'prod_eu' backups."""
        backup_dir = str(tmp_path)
        write_backup_file(backup_dir, "prod_20240101_000000.sql.gz")
        write_backup_file(backup_dir, "prod_eu_20240101_000000.sql.gz")
        write_backup_file(backup_dir, "prod_eu_20240102_000000.sql.gz")

        assert enforce_retention(backup_dir, "prod", 1) == 0
        assert len(os.listdir(backup_dir)) == 3

    def test_all_databases(self, context):
        settings = context.settings
        config = BackupConfig.model_validate(
            {
                "retention": 1,
                "databases": {"prod": {"db_host": "db", "db_name": "shop", "db_user": "backup"}},
            }
        )
        save_backup_config(settings, config)
        write_backup_file(settings.backup_dir, "prod_20240101_000000.sql.gz")
        write_backup_file(settings.backup_dir, "prod_20240102_000000.sql.gz")

        enforce_all_retention(context)
        assert os.listdir(settings.backup_dir) == ["prod_20240102_000000.sql.gz"]


def test_sweep_removes_dead_records(context):
    context.coordinator.publish_status("prod", 999999999)
    sweep_stale_status(context)
    assert not os.path.exists(context.coordinator.status_path("prod"))


def test_scheduler_jobs(context):
    scheduler = create_scheduler(context)
    assert {job.id for job in scheduler.get_jobs()} == {"retention_policy_job", "status_sweep_job"}
