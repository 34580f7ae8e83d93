# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Asset GC Quarantine Tagger and Grace-Period Sweeper.

Isolated artifacts go through two runs before they are deleted:

1. Isolated-Untagged: a tombstone marker carrying the current time is
   attached (an object tag, or an extra image tag since ECR images have
   no separate tagging).
2. Isolated-Tombstoned: once the marker is older than the grace period
   the artifact is deleted; until then it is left alone.

A deployment that starts between classification and deletion therefore
has at least the grace period to make its new artifact visible in a
deployed template. Each transition is idempotent, so an interrupted run
is simply resumed by the next one.
"""

from datetime import datetime, timedelta, UTC
from typing import Any, Dict, Iterator, List, Sequence, Set, Tuple

import structlog

from assetgc.classifier import is_tombstone_tag
from assetgc.report import StoreReport

logger = structlog.get_logger()

# ECR batch operations accept at most 100 image ids
ECR_BATCH_SIZE = 100

MANIFEST_MEDIA_TYPES = [
    "application/vnd.docker.distribution.manifest.v2+json",
    "application/vnd.docker.distribution.manifest.list.v2+json",
    "application/vnd.oci.image.manifest.v1+json",
    "application/vnd.oci.image.index.v1+json",
]


def marker_value(now: datetime) -> str:
    """Tombstone timestamp: epoch milliseconds."""
    return str(int(now.timestamp() * 1000))


def parse_marker(value: str) -> datetime | None:
    try:
        millis = int(value)
        if millis < 0:
            return None
        return datetime.fromtimestamp(millis / 1000, UTC)
    except (TypeError, ValueError, OverflowError, OSError):
        return None


def image_tombstone_tag(tag_prefix: str, now: datetime) -> str:
    return f"{tag_prefix}-{marker_value(now)}"


def unique_tombstone_tags(
    tag_prefix: str,
    now: datetime,
    taken: Set[str],
) -> Iterator[str]:
    """
    Yield distinct image tombstone tags, none of them already in taken.

    An ECR tag names a single digest per repository, so every digest
    needs its own marker. Each tag is one millisecond later than the
    previous one; a later marker only ever delays deletion.
    """
    offset = 0
    while True:
        tag = image_tombstone_tag(tag_prefix, now + timedelta(milliseconds=offset))
        offset += 1
        if tag in taken:
            continue
        taken.add(tag)
        yield tag


def object_tombstone(tag_set: Sequence[Dict[str, str]], tag_key: str) -> datetime | None:
    """Return when an object was tombstoned, or None if it is not."""
    for tag in tag_set:
        if tag.get("Key") == tag_key:
            return parse_marker(tag.get("Value", ""))
    return None


def image_tombstone(tags: Sequence[str], tag_prefix: str) -> datetime | None:
    """
    Return when an image digest was tombstoned, or None if it is not.

    Should a digest carry several markers, the most recent one counts.
    """
    marks = [
        parse_marker(tag[len(tag_prefix) + 1:])
        for tag in tags
        if is_tombstone_tag(tag, tag_prefix)
    ]
    valid = [m for m in marks if m is not None]
    return max(valid) if valid else None


def grace_period_elapsed(marked_at: datetime, now: datetime, days: int) -> bool:
    return now - marked_at >= timedelta(days=days)


def _chunks(items: List[str], size: int) -> Iterator[List[str]]:
    for i in range(0, len(items), size):
        yield items[i:i + size]


async def process_isolated_objects(
    s3: Any,
    bucket: str,
    keys: List[str],
    *,
    tag_key: str,
    in_isolation_for: int,
    now: datetime,
    report: StoreReport,
) -> None:
    """
    Tombstone or sweep each isolated object.

    Failures on one key are recorded in the report and do not stop the
    remaining keys.
    """
    for key in keys:
        try:
            response = await s3.get_object_tagging(Bucket=bucket, Key=key)
            tag_set = response.get("TagSet", [])
            marked_at = object_tombstone(tag_set, tag_key)

            if marked_at is None:
                # PutObjectTagging replaces the whole set, so keep existing tags
                new_tags = [t for t in tag_set if t.get("Key") != tag_key]
                new_tags.append({"Key": tag_key, "Value": marker_value(now)})
                await s3.put_object_tagging(
                    Bucket=bucket,
                    Key=key,
                    Tagging={"TagSet": new_tags},
                )
                report.tombstoned.append(key)
                logger.debug("object_tombstoned", bucket=bucket, key=key)

            elif grace_period_elapsed(marked_at, now, in_isolation_for):
                await s3.delete_object(Bucket=bucket, Key=key)
                report.deleted.append(key)
                logger.info(
                    "object_deleted",
                    bucket=bucket,
                    key=key,
                    isolated_since=marked_at.isoformat(),
                )

            else:
                report.pending.append(key)

        except Exception as e:
            report.errors.append(f"{key}: {e}")
            logger.error("object_sweep_failed", bucket=bucket, key=key, error=str(e))


async def get_image_manifests(
    ecr: Any,
    repository: str,
    digests: List[str],
) -> Tuple[Dict[str, Tuple[str, str | None]], List[str]]:
    """
    Fetch the manifests of image digests.

    Returns:
        Tuple of (digest -> (manifest, media type), errors)
    """
    manifests: Dict[str, Tuple[str, str | None]] = {}
    errors: List[str] = []

    for chunk in _chunks(digests, ECR_BATCH_SIZE):
        try:
            response = await ecr.batch_get_image(
                repositoryName=repository,
                imageIds=[{"imageDigest": d} for d in chunk],
                acceptedMediaTypes=MANIFEST_MEDIA_TYPES,
            )
        except Exception as e:
            errors.extend(f"{d}: {e}" for d in chunk)
            continue

        for image in response.get("images", []):
            digest = image.get("imageId", {}).get("imageDigest")
            manifest = image.get("imageManifest")
            if digest and manifest and digest not in manifests:
                manifests[digest] = (manifest, image.get("imageManifestMediaType"))

        failed = set()
        for failure in response.get("failures", []):
            digest = failure.get("imageId", {}).get("imageDigest", "?")
            failed.add(digest)
            errors.append(f"{digest}: {failure.get('failureReason', 'unknown failure')}")

        for digest in chunk:
            if digest not in manifests and digest not in failed:
                errors.append(f"{digest}: manifest not returned")

    return manifests, errors


async def delete_images(
    ecr: Any,
    repository: str,
    digests: List[str],
) -> Tuple[List[str], List[str]]:
    """
    Delete image digests (and with them every tag they carry).

    Returns:
        Tuple of (deleted digests, errors)
    """
    deleted: List[str] = []
    errors: List[str] = []

    for chunk in _chunks(digests, ECR_BATCH_SIZE):
        try:
            response = await ecr.batch_delete_image(
                repositoryName=repository,
                imageIds=[{"imageDigest": d} for d in chunk],
            )
        except Exception as e:
            errors.extend(f"{d}: {e}" for d in chunk)
            continue

        failed = set()
        for failure in response.get("failures", []):
            digest = failure.get("imageId", {}).get("imageDigest", "?")
            failed.add(digest)
            errors.append(f"{digest}: {failure.get('failureReason', 'unknown failure')}")

        deleted.extend(d for d in chunk if d not in failed)

    return deleted, errors


async def process_isolated_images(
    ecr: Any,
    repository: str,
    images: Dict[str, List[str]],
    digests: List[str],
    *,
    tag_prefix: str,
    in_isolation_for: int,
    now: datetime,
    report: StoreReport,
) -> None:
    """
    Tombstone or sweep each isolated image digest of a repository.

    Args:
        ecr: aiobotocore ECR client
        repository: Repository name
        images: Digest -> tags mapping from the scan
        digests: Digests classified isolated
        tag_prefix: Tombstone tag prefix
        in_isolation_for: Grace period in days
        now: Time of this run
        report: Report collecting the outcome
    """
    untagged: List[str] = []
    expired: List[str] = []

    for digest in digests:
        marked_at = image_tombstone(images.get(digest, []), tag_prefix)
        if marked_at is None:
            untagged.append(digest)
        elif grace_period_elapsed(marked_at, now, in_isolation_for):
            expired.append(digest)
        else:
            report.pending.append(digest)

    if expired:
        deleted, errors = await delete_images(ecr, repository, expired)
        report.deleted.extend(deleted)
        report.errors.extend(errors)
        logger.info("images_deleted", repository=repository, count=len(deleted))

    if not untagged:
        return

    manifests, errors = await get_image_manifests(ecr, repository, untagged)
    report.errors.extend(errors)
    taken = {tag for tags in images.values() for tag in tags}
    tombstone_tags = unique_tombstone_tags(tag_prefix, now, taken)

    for digest in untagged:
        if digest not in manifests:
            continue
        manifest, media_type = manifests[digest]
        params: Dict[str, Any] = {
            "repositoryName": repository,
            "imageManifest": manifest,
            "imageDigest": digest,
            "imageTag": next(tombstone_tags),
        }
        if media_type:
            params["imageManifestMediaType"] = media_type
        try:
            await ecr.put_image(**params)
            report.tombstoned.append(digest)
            logger.debug("image_tombstoned", repository=repository, digest=digest)
        except Exception as e:
            report.errors.append(f"{digest}: {e}")
            logger.error(
                "image_tombstone_failed",
                repository=repository,
                digest=digest,
                error=str(e),
            )
