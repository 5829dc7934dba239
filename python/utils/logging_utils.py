import logging
import traceback
from typing import Optional, Union

DEFAULT_FORMAT = '%(asctime)s - %(levelname)s - %(name)s - %(message)s'

# Third-party loggers that are chatty at INFO/DEBUG
_NOISY_LOGGERS = ("botocore", "boto3", "urllib3", "kubernetes")


def setup_logging(level: Optional[Union[int, str]] = None, fmt: Optional[str] = None) -> None:
	"""Configure root logging once. Later calls only apply an explicitly given level.
	If fmt is not provided, a sensible default is used.
	"""
	explicit = level is not None
	if level is None:
		level = logging.INFO
	elif isinstance(level, str):
		level = logging.getLevelName(level.upper())
		if not isinstance(level, int):
			level = logging.INFO
	root = logging.getLogger()
	if root.handlers:
		# Already configured
		if explicit:
			root.setLevel(level)
		return
	logging.basicConfig(level=level, format=fmt or DEFAULT_FORMAT)
	for name in _NOISY_LOGGERS:
		logging.getLogger(name).setLevel(max(level, logging.WARNING))


def get_logger(name: Optional[str] = None) -> logging.Logger:
	"""Return a module/logger by name, after ensuring logging is configured."""
	setup_logging()
	return logging.getLogger(name) if name else logging.getLogger(__name__)


def log_exception(logger: logging.Logger, message: str = "An error occurred", exc_info: Exception = None) -> None:
	"""Centralized exception logging with full traceback.

	Args:
		logger: Logger instance to use
		message: Custom error message to log before the traceback
		exc_info: Exception instance (if None, uses current exception context)
	"""
	logger.error(message)
	if exc_info is not None:
		logger.error(f"Exception type: {type(exc_info).__name__}")
		logger.error(f"Exception message: {str(exc_info)}")
	logger.error("Full traceback:")
	logger.error(traceback.format_exc())
