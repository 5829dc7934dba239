"""
Error message utilities for providing actionable guidance to users.

This module provides functions to create helpful error messages with
suggested fixes and troubleshooting steps for ECR, Kubernetes and
configuration failures.
"""

from typing import List, Optional, Dict, Any
from enum import Enum

from urllib3.exceptions import HTTPError


class ErrorCategory(Enum):
    """Categories of errors for better error handling"""
    CONNECTION = "connection"
    AUTHENTICATION = "authentication"
    CONFIGURATION = "configuration"
    PERMISSION = "permission"
    REGISTRY = "registry"
    KUBERNETES = "kubernetes"
    THROTTLING = "throttling"
    UNKNOWN = "unknown"


class ActionableError(Exception):
    """Exception with actionable guidance for users"""

    def __init__(self, message: str, category: ErrorCategory = ErrorCategory.UNKNOWN,
                 suggestions: Optional[List[str]] = None, details: Optional[Dict[str, Any]] = None):
        """Initialize actionable error

        Args:
            message: Primary error message
            category: Error category for classification
            suggestions: List of suggested fixes
            details: Additional context information
        """
        self.message = message
        self.category = category
        self.suggestions = suggestions or []
        self.details = details or {}
        super().__init__(self.format_message())

    def format_message(self) -> str:
        """Format the complete error message with suggestions"""
        lines = [f"❌ {self.message}"]

        if self.suggestions:
            lines.append("\n💡 Suggested fixes:")
            for i, suggestion in enumerate(self.suggestions, 1):
                lines.append(f"   {i}. {suggestion}")

        if self.details:
            lines.append("\n📋 Additional details:")
            for key, value in self.details.items():
                lines.append(f"   {key}: {value}")

        return "\n".join(lines)


def get_aws_error_code(error: Exception) -> str:
    """Return the AWS error code of a botocore ClientError, or an empty string"""
    response = getattr(error, "response", None)
    if isinstance(response, dict):
        return response.get("Error", {}).get("Code", "") or ""
    return ""


def create_ecr_error(operation: str, error: Exception, repository: Optional[str] = None) -> ActionableError:
    """Create actionable error for ECR API failures"""
    error_str = str(error).lower()
    code = get_aws_error_code(error)

    suggestions = [
        "Verify AWS credentials are configured (aws sts get-caller-identity)",
        "Check that the AWS region matches the region of the repositories",
        "Verify network connectivity to the ECR API endpoint",
    ]
    category = ErrorCategory.REGISTRY

    if code == "RepositoryNotFoundException" or "not found" in error_str:
        suggestions.insert(0, "Check the repository names in config.yaml (cleanup.repositories)")
    elif code in ("AccessDeniedException", "UnrecognizedClientException") or "access denied" in error_str:
        category = ErrorCategory.PERMISSION
        suggestions.insert(0, "Check the IAM policy allows ecr:DescribeRepositories, "
                              "ecr:DescribeImages and ecr:BatchDeleteImage")
    elif code == "ThrottlingException" or "rate exceeded" in error_str:
        category = ErrorCategory.THROTTLING
        suggestions.insert(0, "Increase retry.initial_delay or run the cleanup less often")
    elif "credentials" in error_str:
        category = ErrorCategory.AUTHENTICATION
        suggestions.insert(0, "Configure AWS credentials: aws configure")
        suggestions.insert(1, "Or set AWS_ACCESS_KEY_ID and AWS_SECRET_ACCESS_KEY environment variables")

    details = {
        "operation": operation,
        "error_type": type(error).__name__,
        "error_message": str(error),
    }
    if repository:
        details["repository"] = repository
    if code:
        details["error_code"] = code

    return ActionableError(
        message=f"ECR operation failed: {operation}",
        category=category,
        suggestions=suggestions,
        details=details,
    )


def create_kubernetes_error(operation: str, error: Exception) -> ActionableError:
    """Create actionable error for Kubernetes API failures"""
    error_str = str(error).lower()

    suggestions = [
        "Verify Kubernetes cluster access (kubectl cluster-info)",
        "Check if running in-cluster or using kubeconfig",
        "Verify RBAC permissions allow listing pods",
        "Check if the namespace exists and is accessible"
    ]

    if isinstance(error, (OSError, HTTPError)):
        category = ErrorCategory.CONNECTION
        suggestions.insert(0, "Check that the Kubernetes API server is reachable from this host")
    elif "403" in error_str or "forbidden" in error_str:
        category = ErrorCategory.PERMISSION
        suggestions.insert(0, "Check Kubernetes RBAC permissions")
        suggestions.insert(1, "Verify service account has the 'list pods' permission")
    else:
        category = ErrorCategory.KUBERNETES

    return ActionableError(
        message=f"Kubernetes operation failed: {operation}",
        category=category,
        suggestions=suggestions,
        details={
            "operation": operation,
            "error_type": type(error).__name__,
            "error_message": str(error)
        }
    )


def create_config_error(field: str, value: Any, reason: str) -> ActionableError:
    """Create actionable error for configuration validation failures"""
    suggestions = [
        f"Check the '{field}' value in config.yaml",
        "Verify the value matches the expected format",
        "Review the configuration validation error message above"
    ]

    if "keep_max" in field.lower():
        suggestions.insert(1, "keep_max must be a non-negative integer")
    elif "interval" in field.lower() or "delay" in field.lower():
        suggestions.insert(1, "Time values must be positive numbers")

    return ActionableError(
        message=f"Configuration error: Invalid value for '{field}'",
        category=ErrorCategory.CONFIGURATION,
        suggestions=suggestions,
        details={
            "field": field,
            "value": value,
            "reason": reason
        }
    )
