#!/usr/bin/env python3
"""
Configuration Manager for ECR Image Cleaner

This module handles loading and managing configuration from config.yaml
and environment variables.
"""

import logging
import os
import re
from typing import Any, Dict, List, Optional

import yaml


class ConfigValidationError(Exception):
    """Raised when configuration validation fails"""


def split_names(value: Any) -> List[str]:
    """Normalize a comma separated string or a YAML list into a list of names"""
    if value is None:
        return []
    if isinstance(value, str):
        items = value.split(",")
    else:
        items = list(value)
    return [str(item).strip() for item in items if str(item).strip()]


class ConfigManager:
    """Manages configuration for the ECR image cleaner"""

    def __init__(self, config_file: str = None, validate: bool = True):
        """Initialize ConfigManager

        Args:
            config_file: Path to configuration YAML file (defaults to ../config.yaml or CONFIG_FILE env var)
            validate: If True, validate configuration on initialization
        """
        # Allow override via environment variable for containerized deployments
        if config_file is None:
            config_file = os.environ.get("CONFIG_FILE", "../config.yaml")
        self.config_file = config_file
        self.config = self._load_config()

        if validate:
            self.validate_config()

    def _load_config(self) -> Dict[str, Any]:
        """Load configuration from YAML file with defaults"""
        default_config = {
            "aws": {"region": "us-east-1"},
            "cleanup": {
                "repositories": [],
                "keep_max": 100,
                "interval": 1800,  # Seconds between cleanup passes
                "delete_batch_size": 100,  # BatchDeleteImage accepts at most 100 image ids
            },
            "kubernetes": {"namespaces": ["default"], "kubeconfig": None},
            "retry": {
                "max_retries": 3,
                "initial_delay": 1.0,
                "max_delay": 60.0,
                "exponential_base": 2.0,
                "jitter": True,
            },
            "reports": {"output_dir": "reports", "cleanup_report": "ecr-cleanup.json"},
            "security": {"dry_run_by_default": True},
        }

        try:
            if os.path.exists(self.config_file):
                with open(self.config_file, "r") as f:
                    user_config = yaml.safe_load(f) or {}
                return self._merge_config(default_config, user_config)
            else:
                logging.warning(f"Config file {self.config_file} not found, using defaults")
                return default_config
        except (OSError, yaml.YAMLError) as e:
            logging.error(f"Error loading config file: {e}")
            return default_config

    def _merge_config(self, default: Dict[str, Any], user: Dict[str, Any]) -> Dict[str, Any]:
        """Recursively merge user config with defaults"""
        result = default.copy()
        for key, value in user.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._merge_config(result[key], value)
            else:
                result[key] = value
        return result

    # AWS configuration
    def get_aws_region(self) -> str:
        """Get AWS region from environment or config"""
        return (
            os.environ.get("AWS_REGION")
            or os.environ.get("AWS_DEFAULT_REGION")
            or self.config.get("aws", {}).get("region", "us-east-1")
        )

    # Cleanup configuration
    def get_repositories(self) -> List[str]:
        """Get ECR repository names to clean.
        Priority: env ECR_REPOSITORIES (comma separated) -> config.cleanup.repositories
        """
        env_value = os.environ.get("ECR_REPOSITORIES")
        if env_value:
            return split_names(env_value)
        return split_names(self.config.get("cleanup", {}).get("repositories"))

    def get_keep_max(self) -> int:
        """Get number of images to keep per repository, with type coercion"""
        keep_max = os.environ.get("KEEP_MAX") or self.config.get("cleanup", {}).get("keep_max", 100)
        try:
            return int(keep_max)
        except (ValueError, TypeError):
            raise ConfigValidationError(
                f"cleanup.keep_max must be an integer, got: {keep_max} (type: {type(keep_max).__name__})"
            )

    def get_interval(self) -> int:
        """Get seconds between cleanup passes, with type coercion"""
        interval = os.environ.get("CLEANUP_INTERVAL") or self.config.get("cleanup", {}).get("interval", 1800)
        try:
            return int(interval)
        except (ValueError, TypeError):
            raise ConfigValidationError(
                f"cleanup.interval must be an integer, got: {interval} (type: {type(interval).__name__})"
            )

    def get_delete_batch_size(self) -> int:
        """Get number of image ids sent per BatchDeleteImage call"""
        size = self.config.get("cleanup", {}).get("delete_batch_size", 100)
        try:
            return int(size)
        except (ValueError, TypeError):
            raise ConfigValidationError(
                f"cleanup.delete_batch_size must be an integer, got: {size} (type: {type(size).__name__})"
            )

    # Kubernetes configuration
    def get_namespaces(self) -> List[str]:
        """Get namespaces whose running pods protect images.
        Priority: env WATCH_NAMESPACES (comma separated) -> config.kubernetes.namespaces.
        An empty list means all namespaces.
        """
        env_value = os.environ.get("WATCH_NAMESPACES")
        if env_value is not None:
            return split_names(env_value)
        return split_names(self.config.get("kubernetes", {}).get("namespaces"))

    def get_kubeconfig(self) -> Optional[str]:
        """Get kubeconfig path, None means in-cluster config or the default kubeconfig"""
        return os.environ.get("KUBECONFIG") or self.config.get("kubernetes", {}).get("kubeconfig")

    # Retry configuration
    def get_max_retries(self) -> int:
        """Get max retries from config, with type coercion"""
        retries = self.config.get("retry", {}).get("max_retries", 3)
        try:
            return int(retries)
        except (ValueError, TypeError):
            raise ConfigValidationError(
                f"retry.max_retries must be an integer, got: {retries} (type: {type(retries).__name__})"
            )

    def get_retry_initial_delay(self) -> float:
        """Get initial retry delay from config, with type coercion"""
        delay = self.config.get("retry", {}).get("initial_delay", 1.0)
        try:
            return float(delay)
        except (ValueError, TypeError):
            raise ConfigValidationError(
                f"retry.initial_delay must be a number, got: {delay} (type: {type(delay).__name__})"
            )

    def get_retry_max_delay(self) -> float:
        """Get max retry delay from config, with type coercion"""
        delay = self.config.get("retry", {}).get("max_delay", 60.0)
        try:
            return float(delay)
        except (ValueError, TypeError):
            raise ConfigValidationError(
                f"retry.max_delay must be a number, got: {delay} (type: {type(delay).__name__})"
            )

    def get_retry_exponential_base(self) -> float:
        """Get exponential base for retry backoff from config, with type coercion"""
        base = self.config.get("retry", {}).get("exponential_base", 2.0)
        try:
            return float(base)
        except (ValueError, TypeError):
            raise ConfigValidationError(
                f"retry.exponential_base must be a number, got: {base} (type: {type(base).__name__})"
            )

    def get_retry_jitter(self) -> bool:
        """Get whether to use jitter in retry delays from config"""
        return self.config.get("retry", {}).get("jitter", True)

    def get_retry_settings(self) -> Dict[str, Any]:
        """Keyword arguments for utils.retry_utils.retry_with_backoff"""
        return {
            "max_retries": self.get_max_retries(),
            "initial_delay": self.get_retry_initial_delay(),
            "max_delay": self.get_retry_max_delay(),
            "exponential_base": self.get_retry_exponential_base(),
            "jitter": self.get_retry_jitter(),
        }

    # Report configuration
    def get_output_dir(self) -> str:
        """Get output directory from config"""
        return self.config.get("reports", {}).get("output_dir", "reports")

    def get_cleanup_report_path(self) -> str:
        """Get cleanup report path, resolved under output_dir unless it already has a directory"""
        path = self.config.get("reports", {}).get("cleanup_report", "ecr-cleanup.json")
        if os.path.isabs(path) or os.path.basename(path) != path:
            return path
        return os.path.join(self.get_output_dir(), path)

    # Security configuration
    def is_dry_run_by_default(self) -> bool:
        """Get dry run default from config"""
        return self.config.get("security", {}).get("dry_run_by_default", True)

    def validate_config(self) -> None:
        """Validate configuration values

        Raises:
            ConfigValidationError: If configuration is invalid
        """
        errors = []
        warnings = []

        region = self.get_aws_region()
        if not region or not self._is_valid_aws_region(region):
            errors.append(f"AWS region '{region}' is invalid (expected format like 'us-east-1')")

        repositories = self.get_repositories()
        if not repositories:
            warnings.append("No ECR repositories configured, nothing will be cleaned")
        for repository in repositories:
            if not self._is_valid_repository_name(repository):
                errors.append(
                    f"Repository name '{repository}' is invalid (lowercase alphanumerics separated by '.', '_', '-' or '/')"
                )

        for namespace in self.get_namespaces():
            if not self._is_valid_k8s_name(namespace):
                errors.append(
                    f"Namespace '{namespace}' is not a valid Kubernetes name (lowercase alphanumeric and hyphens only)"
                )

        keep_max = self.get_keep_max()
        if keep_max < 0:
            errors.append(f"cleanup.keep_max must be a non-negative integer, got: {keep_max}")

        interval = self.get_interval()
        if interval < 1:
            errors.append(f"cleanup.interval must be a positive integer (seconds), got: {interval}")
        elif interval < 60:
            warnings.append(f"cleanup.interval is very low ({interval}s), the ECR API may throttle requests")

        batch_size = self.get_delete_batch_size()
        if batch_size < 1 or batch_size > 100:
            errors.append(f"cleanup.delete_batch_size must be between 1 and 100, got: {batch_size}")

        max_retries = self.get_max_retries()
        if max_retries < 0:
            errors.append(f"retry.max_retries must be a non-negative integer, got: {max_retries}")
        elif max_retries > 10:
            warnings.append(f"max_retries is very high ({max_retries}), operations may take a long time")

        initial_delay = self.get_retry_initial_delay()
        if initial_delay < 0:
            errors.append(f"retry.initial_delay must be a non-negative number, got: {initial_delay}")

        max_delay = self.get_retry_max_delay()
        if max_delay < 0:
            errors.append(f"retry.max_delay must be a non-negative number, got: {max_delay}")
        elif max_delay < initial_delay:
            errors.append(f"retry.max_delay ({max_delay}) must be >= retry.initial_delay ({initial_delay})")

        exponential_base = self.get_retry_exponential_base()
        if exponential_base < 1.0:
            errors.append(f"retry.exponential_base must be >= 1.0, got: {exponential_base}")

        output_dir = self.get_output_dir()
        if not output_dir or not str(output_dir).strip():
            errors.append("reports.output_dir is required and cannot be empty")

        # Log warnings
        for warning in warnings:
            logging.warning(f"Configuration warning: {warning}")

        # Raise error if there are validation errors
        if errors:
            error_msg = "Configuration validation failed:\n  " + "\n  ".join(errors)
            logging.error(error_msg)
            raise ConfigValidationError(error_msg)

    def _is_valid_aws_region(self, region: str) -> bool:
        """Validate AWS region format (e.g. us-east-1, eu-central-2, us-gov-west-1)"""
        return bool(re.match(r"^[a-z]{2}(-[a-z]+)+-\d$", region))

    def _is_valid_repository_name(self, name: str) -> bool:
        """Validate ECR repository name format"""
        if not name or len(name) > 256:
            return False
        pattern = r"^(?:[a-z0-9]+(?:[._-][a-z0-9]+)*/)*[a-z0-9]+(?:[._-][a-z0-9]+)*$"
        return bool(re.match(pattern, name))

    def _is_valid_k8s_name(self, name: str) -> bool:
        """Validate Kubernetes resource name format"""
        if not name:
            return False
        # Kubernetes names: lowercase alphanumeric and hyphens, max 253 chars
        pattern = r"^[a-z0-9]([a-z0-9\-]*[a-z0-9])?$"
        return bool(re.match(pattern, name)) and len(name) <= 253

    def print_config(self):
        """Print current configuration"""
        namespaces = self.get_namespaces()
        print("Current Configuration:")
        print(f"  AWS Region: {self.get_aws_region()}")
        print(f"  Repositories: {', '.join(self.get_repositories()) or 'None configured'}")
        print(f"  Namespaces: {', '.join(namespaces) if namespaces else 'All namespaces'}")
        print(f"  Keep Max: {self.get_keep_max()}")
        print(f"  Interval: {self.get_interval()}s")
        print(f"  Output Directory: {self.get_output_dir()}")
        print(f"  Dry Run Default: {self.is_dry_run_by_default()}")
