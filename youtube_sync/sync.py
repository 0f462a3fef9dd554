#!/usr/bin/env python3
"""YouTube Sync - Scheduled Job Entry Point"""

import fcntl
import logging
import os
import sys
import time
from pathlib import Path

from youtube_sync.clients.youtube import YouTubeClient, YouTubeAuthError, YouTubeQuotaExceededError
from youtube_sync.core.models import IncompatibleResourceError
from youtube_sync.core.state import apply_result, load_resource, save_resource
from youtube_sync.core.status import write_failure, write_running_status, write_status
from youtube_sync.core.sync_engine import Synchronizer

DATA_DIR = Path(os.environ.get("YOUTUBE_SYNC_DATA_DIR", "/config/youtube_sync"))
LOCK_FILE = DATA_DIR / ".sync.lock"
LOG_FILE = DATA_DIR / "youtube_sync.log"
STATUS_FILE = DATA_DIR / "sync_status.json"

logger = logging.getLogger(__name__)


def setup_logging() -> None:
    level = getattr(logging, os.environ.get("LOG_LEVEL", "INFO").upper(), logging.INFO)
    DATA_DIR.mkdir(parents=True, exist_ok=True)
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(levelname)s - %(name)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        handlers=[
            logging.FileHandler(LOG_FILE, encoding="utf-8"),
            logging.StreamHandler()
        ]
    )


def acquire_lock() -> int | None:
    try:
        # Check for stale lock (older than 30 min = likely orphaned)
        if LOCK_FILE.exists():
            age = time.time() - LOCK_FILE.stat().st_mtime
            if age > 1800:  # 30 minutes
                logger.warning(f"Removing stale lock file (age: {age:.0f}s)")
                LOCK_FILE.unlink(missing_ok=True)

        fd = os.open(str(LOCK_FILE), os.O_CREAT | os.O_RDWR)
        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except OSError:
            os.close(fd)
            raise
        os.write(fd, f"{os.getpid()}\n".encode())
        return fd
    except OSError:
        return None


def release_lock(fd: int) -> None:
    try:
        fcntl.flock(fd, fcntl.LOCK_UN)
        os.close(fd)
        LOCK_FILE.unlink(missing_ok=True)
    except OSError as e:
        logger.warning(f"Failed to release lock: {e}")


def load_config() -> dict:
    config = {
        "YOUTUBE_API_KEY": os.environ.get("YOUTUBE_API_KEY"),
        "YOUTUBE_REFRESH_TOKEN": os.environ.get("YOUTUBE_REFRESH_TOKEN"),
        "RESOURCE_FILE": Path(os.environ.get("YOUTUBE_SYNC_RESOURCE_FILE",
                                             DATA_DIR / "resource.json")),
    }

    if not config["YOUTUBE_API_KEY"] and not config["YOUTUBE_REFRESH_TOKEN"]:
        logger.error("Missing config: YOUTUBE_API_KEY or YOUTUBE_REFRESH_TOKEN")
        sys.exit(1)

    return config


def main() -> int:
    setup_logging()

    lock_fd = acquire_lock()
    if lock_fd is None:
        logger.warning("Another sync running, exiting")
        return 0

    try:
        write_running_status(STATUS_FILE)
        config = load_config()

        resource_file = config["RESOURCE_FILE"]
        try:
            resource = load_resource(resource_file)
        except (OSError, ValueError, KeyError, IncompatibleResourceError) as e:
            logger.error(f"Cannot load {resource_file}: {e}")
            write_failure(f"Cannot load {resource_file}: {e}", STATUS_FILE)
            return 1

        logger.info("Initializing YouTube client...")
        try:
            youtube = YouTubeClient(
                refresh_token=config["YOUTUBE_REFRESH_TOKEN"],
                api_key=config["YOUTUBE_API_KEY"],
            )
        except YouTubeAuthError as e:
            logger.error(f"YouTube auth failed: {e}")
            write_failure(f"YouTube auth failed: {e}", STATUS_FILE)
            return 1

        engine = Synchronizer(youtube)

        logger.info(f"Starting sync of {resource.youtube_id}...")
        result = engine.reconcile(resource)

        if result.changed:
            save_resource(resource_file, apply_result(resource, result))
        else:
            logger.info("Already in sync!")
        write_status(result, STATUS_FILE)

        logger.info(f"Sync completed in {result.duration:.1f}s: +{result.added} "
                    f"~{result.updated} -{len(result.dropped)}")
        return 0

    except IncompatibleResourceError as e:
        logger.error(f"Incompatible resource: {e}")
        write_failure(f"Incompatible resource: {e}", STATUS_FILE)
        return 1
    except YouTubeQuotaExceededError as e:
        logger.error(f"Quota exceeded: {e}")
        write_failure(f"Quota exceeded: {e}", STATUS_FILE)
        return 1
    except Exception as e:
        logger.exception(f"Unexpected error: {e}")
        write_failure(f"Unexpected error: {e}", STATUS_FILE)
        return 1
    finally:
        release_lock(lock_fd)


if __name__ == "__main__":
    sys.exit(main())
