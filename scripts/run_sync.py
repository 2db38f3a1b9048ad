#!/usr/bin/env python
"""
Run Sync Script
Command-line script for syncing one MySQL table into StarRocks through RisingWave.
"""

import argparse
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from cdc_sync.app import build_task_manager
from cdc_sync.config_manager import ConfigManager
from cdc_sync.domain import SyncOptions, SyncRequest, TaskStatus
from cdc_sync.utils.logger import setup_logging, get_logger


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description='Sync a MySQL table to StarRocks via RisingWave CDC')
    parser.add_argument('--source-config', type=int, required=True, help='MySQL connection config id')
    parser.add_argument('--intermediate-config', type=int, required=True, help='RisingWave connection config id')
    parser.add_argument('--warehouse-config', type=int, required=True, help='StarRocks connection config id')
    parser.add_argument('--source-db', required=True, help='Source database')
    parser.add_argument('--source-table', required=True, help='Source table')
    parser.add_argument('--target-db', help='Warehouse database (defaults to the source database)')
    parser.add_argument('--target-table', help='Warehouse table (defaults to the source table)')
    parser.add_argument(
        '--recreate-source',
        action='store_true',
        help='Drop and recreate the RisingWave source and table'
    )
    parser.add_argument(
        '--recreate-table',
        action='store_true',
        help='Drop and recreate the StarRocks table'
    )
    parser.add_argument(
        '--truncate',
        action='store_true',
        help='Truncate the StarRocks table before syncing'
    )
    parser.add_argument('--timeout', type=float, help='Seconds to wait for the task before giving up')
    return parser.parse_args(argv)


def main(argv=None):
    """Main entry point for the sync script."""
    args = parse_args(argv)

    # Setup logging
    setup_logging()
    logger = get_logger(__name__)

    manager = None
    try:
        request = SyncRequest(
            source_config_id=args.source_config,
            intermediate_config_id=args.intermediate_config,
            warehouse_config_id=args.warehouse_config,
            source_database=args.source_db,
            source_table=args.source_table,
            target_database=args.target_db or args.source_db,
            target_table=args.target_table or args.source_table,
            options=SyncOptions(
                recreate_intermediate_source=args.recreate_source,
                recreate_warehouse_table=args.recreate_table,
                truncate_warehouse_table=args.truncate
            )
        )

        logger.info(f"Starting sync: {request.task_name}")

        manager = build_task_manager()
        task_id = manager.submit(request)
        poll_interval = ConfigManager().get_executor_config()['wait_poll_interval']
        task = manager.wait(task_id, timeout=args.timeout, poll_interval=poll_interval)

        print(f"\n{'='*50}")
        print("Sync Run Complete" if task.status.is_terminal else "Sync Still Running")
        print(f"{'='*50}")
        print(f"Task ID: {task.id}")
        print(f"Name: {task.name}")
        print(f"Status: {task.status.value}")
        print(f"Steps: {(task.current_step_index or 0) + 1 if task.current_step else 0}/{task.total_steps or 0}")
        if task.completed_at:
            print(f"Duration: {(task.completed_at - task.started_at).total_seconds():.2f}s")

        for entry in manager.get_task_logs(task_id):
            print(f"  [{entry.level}] {entry.message}")

        if task.error_message:
            print(f"Error: {task.error_message}")

        if task.status is not TaskStatus.COMPLETED:
            sys.exit(1)

    except Exception as e:
        logger.error(f"Sync failed: {e}")
        print(f"\nError: {e}")
        sys.exit(1)

    finally:
        if manager is not None:
            manager.shutdown(wait=False)


if __name__ == '__main__':
    main()
