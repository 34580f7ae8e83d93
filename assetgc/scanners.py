# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Asset GC Scanners - Enumerate artifacts in the object and image stores.

Every listing follows continuation tokens to the end through the
aiobotocore paginators; pages are consumed one at a time in store order.
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Tuple

import structlog

from assetgc.exceptions import ScanError

logger = structlog.get_logger()


@dataclass(frozen=True)
class ManagedRepository:
    """An image repository carrying the asset convention tag."""

    name: str
    arn: str


async def list_object_keys(s3: Any, bucket: str, batch_size: int = 1000) -> List[str]:
    """
    List every object key in the bucket.

    Args:
        s3: aiobotocore S3 client
        bucket: Staging bucket name
        batch_size: Keys requested per page

    Returns:
        All keys, in listing order
    """
    keys: List[str] = []
    paginator = s3.get_paginator("list_objects_v2")

    try:
        async for page in paginator.paginate(Bucket=bucket, MaxKeys=batch_size):
            for obj in page.get("Contents", []):
                keys.append(obj["Key"])
    except Exception as e:
        raise ScanError(f"Failed to list objects: {e}", details={"bucket": bucket}) from e

    logger.debug("objects_scanned", bucket=bucket, count=len(keys))
    return keys


async def list_managed_repositories(
    ecr: Any,
    tag_key: str,
    tag_value: str,
) -> Tuple[List[ManagedRepository], List[str]]:
    """
    Find the repositories tagged as holding deployment image assets.

    Repository discovery is fresh on every run; nothing is cached. A
    repository whose tags cannot be read is skipped and reported; the
    others are still discovered.

    Args:
        ecr: aiobotocore ECR client
        tag_key: Convention tag key (e.g. 'awscdk:asset')
        tag_value: Convention tag value (e.g. 'true')

    Returns:
        Tuple of (managed repositories in listing order, errors)

    Raises:
        ScanError: If the repositories cannot be listed
    """
    repositories: List[Dict[str, Any]] = []
    paginator = ecr.get_paginator("describe_repositories")

    try:
        async for page in paginator.paginate():
            repositories.extend(page.get("repositories", []))
    except Exception as e:
        raise ScanError(f"Failed to discover repositories: {e}") from e

    managed: List[ManagedRepository] = []
    errors: List[str] = []
    for repo in repositories:
        name = repo.get("repositoryName")
        arn = repo.get("repositoryArn")
        if not name or not arn:
            continue

        try:
            response = await ecr.list_tags_for_resource(resourceArn=arn)
        except Exception as e:
            errors.append(f"{name}: failed to read repository tags: {e}")
            logger.warning("repository_tags_unreadable", repository=name, error=str(e))
            continue

        for tag in response.get("tags", []):
            if tag.get("Key") == tag_key and tag.get("Value") == tag_value:
                managed.append(ManagedRepository(name=name, arn=arn))
                break

    logger.info(
        "repositories_discovered",
        total=len(repositories),
        managed=len(managed),
        skipped=len(errors),
    )
    return managed, errors


async def list_image_tags(ecr: Any, repository: str) -> Dict[str, List[str]]:
    """
    Group the tags of a repository's images by digest.

    A digest pushed under several tags (or shared by several platform
    manifests) yields several tags; they are judged together. Untagged
    image ids are skipped.

    Args:
        ecr: aiobotocore ECR client
        repository: Repository name

    Returns:
        Mapping of image digest to its tags
    """
    images: Dict[str, List[str]] = {}
    paginator = ecr.get_paginator("list_images")

    try:
        async for page in paginator.paginate(repositoryName=repository):
            for image_id in page.get("imageIds", []):
                digest = image_id.get("imageDigest")
                tag = image_id.get("imageTag")
                if not digest or not tag:
                    continue
                tags = images.setdefault(digest, [])
                if tag not in tags:
                    tags.append(tag)
    except Exception as e:
        raise ScanError(
            f"Failed to list images: {e}",
            details={"repository": repository},
        ) from e

    logger.debug("images_scanned", repository=repository, digests=len(images))
    return images
