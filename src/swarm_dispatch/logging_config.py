"""Centralized logging configuration for swarm-dispatch."""

import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

ROOT_LOGGER = "swarm_dispatch"
SECURITY_LOGGER = f"{ROOT_LOGGER}.guards"


def setup_logging(
	level: Optional[str] = None,
	log_dir: Optional[Path] = None,
	stream=None,
) -> logging.Logger:
	"""
	Set up logging with console and (optionally) rotating file handlers.

	Args:
		level: Log level (DEBUG, INFO, WARNING, ERROR). Defaults to env var or INFO.
		log_dir: Directory for log files. No file handlers when omitted.
		stream: Console stream (defaults to stderr so stdio transports stay clean)

	Returns:
		Configured package logger
	"""
	level = level or os.getenv("SWARM_DISPATCH_LOG_LEVEL", "INFO")
	log_level = getattr(logging, level.upper(), logging.INFO)

	logger = logging.getLogger(ROOT_LOGGER)
	logger.setLevel(log_level)

	# Avoid duplicate handlers
	if logger.handlers:
		return logger

	detailed_formatter = logging.Formatter(
		"%(asctime)s [%(levelname)s] %(name)s:%(lineno)d - %(message)s",
		datefmt="%Y-%m-%d %H:%M:%S",
	)
	simple_formatter = logging.Formatter(
		"%(asctime)s [%(levelname)s] %(message)s",
		datefmt="%H:%M:%S",
	)

	console_handler = logging.StreamHandler(stream or sys.stderr)
	console_handler.setLevel(log_level)
	console_handler.setFormatter(simple_formatter)
	logger.addHandler(console_handler)

	if log_dir is None:
		return logger

	log_path = Path(log_dir)
	log_path.mkdir(parents=True, exist_ok=True)

	file_handler = RotatingFileHandler(
		log_path / f"{ROOT_LOGGER}.log",
		maxBytes=10 * 1024 * 1024,  # 10 MB
		backupCount=5,
	)
	file_handler.setLevel(logging.DEBUG)
	file_handler.setFormatter(detailed_formatter)
	logger.addHandler(file_handler)

	# Policy rejections get their own trail
	security_handler = RotatingFileHandler(
		log_path / "security.log",
		maxBytes=5 * 1024 * 1024,
		backupCount=10,
	)
	security_handler.setLevel(logging.WARNING)
	security_handler.setFormatter(detailed_formatter)
	logging.getLogger(SECURITY_LOGGER).addHandler(security_handler)

	return logger
