"""Naming rules for cluster-derived Azure resources."""

from __future__ import annotations

import re

# Azure storage account names are 3-24 lowercase letters and digits
MAX_STORAGE_ACCOUNT_NAME_LENGTH = 24
STORAGE_ACCOUNT_SUFFIX = "acc"
# Longest sanitized stem kept before the suffix
MAX_STORAGE_ACCOUNT_STEM_LENGTH = 20

# ARM limit on deployment names
MAX_DEPLOYMENT_NAME_LENGTH = 64

_NON_ALPHANUMERIC = re.compile(r"[^a-z0-9]")


def storage_account_name(name: str) -> str:
    """Derive a storage account name from an arbitrary display name.

    Lowercases, strips everything except ASCII letters and digits, truncates
    the result and appends the fixed suffix.

    Examples:
        >>> storage_account_name("My-name")
        'mynameacc'
        >>> storage_account_name("SuPer!looooong_1234_name")
        'superlooooong1234namacc'
    """
    stem = _NON_ALPHANUMERIC.sub("", name.lower())
    return stem[:MAX_STORAGE_ACCOUNT_STEM_LENGTH] + STORAGE_ACCOUNT_SUFFIX


def deployment_name(cluster_name: str) -> str:
    """ARM deployment name for a cluster.

    The deployment is named after the cluster so it can be looked up again
    from state; names longer than the ARM limit are truncated.
    """
    if not cluster_name:
        raise ValueError("cluster_name cannot be empty")
    return cluster_name[:MAX_DEPLOYMENT_NAME_LENGTH]
