import os
import logging
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

loaded = load_dotenv()
if not loaded and Path(".env").exists():
	raise RuntimeError(".env file present but failed to load")


def get_str_env(name: str, default: str) -> str:
	raw = os.getenv(name)
	if raw is None or raw == "":
		return default
	return raw


def get_optional_str_env(name: str) -> Optional[str]:
	raw = os.getenv(name)
	if raw is None or raw == "":
		return None
	return raw


def get_int_env(name: str, default: int) -> int:
	raw = os.getenv(name)
	if raw is None or raw == "":
		return default
	try:
		return int(raw)
	except ValueError:
		logger.exception("Invalid %s: %r", name, raw)
		return default


def get_optional_int_env(name: str) -> Optional[int]:
	raw = os.getenv(name)
	if raw is None or raw == "":
		return None
	try:
		return int(raw)
	except ValueError:
		logger.exception("Invalid %s: %r", name, raw)
		return None


def get_float_env(name: str, default: float) -> float:
	raw = os.getenv(name)
	if raw is None or raw == "":
		return default
	try:
		return float(raw)
	except ValueError:
		logger.exception("Invalid %s: %r", name, raw)
		return default


USER_AGENT = get_str_env("USER_AGENT", "doccrawl/0.1 (+documentation crawler)")
STATE_DIR = get_str_env("DOCCRAWL_STATE_DIR", ".doccrawl")
LOG_LEVEL = get_str_env("DOCCRAWL_LOG_LEVEL", "INFO")


def max_parallel() -> int:
	return get_int_env("DOCCRAWL_MAX_PARALLEL", 3)


def cancel_timeout_seconds() -> float:
	return get_float_env("DOCCRAWL_CANCEL_TIMEOUT", 10.0)


def max_completed_records() -> int:
	return get_int_env("DOCCRAWL_MAX_COMPLETED_RECORDS", 1000)


def global_delay_ms() -> int:
	return get_int_env("DOCCRAWL_GLOBAL_DELAY_MS", 1000)


def output_dir() -> str:
	return get_str_env("DOCCRAWL_OUTPUT_DIR", "output")
