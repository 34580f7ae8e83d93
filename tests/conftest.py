# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Test fixtures for assetgc tests.

Provides in-memory CloudFormation, S3 and ECR clients with the
aiobotocore call shapes (paginators, async calls, botocore ClientError),
plus configuration helpers.
"""

import os
import tempfile
from datetime import datetime, UTC
from pathlib import Path
from typing import Any, Dict, Generator, Iterable, List

import pytest
from botocore.exceptions import ClientError

# Set test environment variables
os.environ["ASSETGC_ADMIN_API_KEY"] = "test-api-key-12345"

ACCOUNT = "123456789012"
REGION = "us-east-1"
BUCKET = "cdk-hnb659fds-assets-123456789012-us-east-1"
NOW = datetime(2026, 10, 19, 12, 0, tzinfo=UTC)
MANIFEST_TYPE = "application/vnd.docker.distribution.manifest.v2+json"


def client_error(code: str, operation: str) -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": f"{operation} failed"}}, operation)


def _pages(items: List[Any], size: int) -> List[List[Any]]:
    return [items[i:i + size] for i in range(0, len(items), size)] or [[]]


class FakePaginator:
    """Mimics an aiobotocore paginator: paginate() is async-iterable."""

    def __init__(self, fetch):
        self._fetch = fetch

    def paginate(self, **kwargs):
        return self._iterate(kwargs)

    async def _iterate(self, kwargs):
        for page in self._fetch(**kwargs):
            yield page


class FakeCloudFormation:
    def __init__(
        self,
        templates: Dict[str, Any],
        page_size: int = 2,
        deleted: Iterable[str] = (),
        failing_templates: Iterable[str] = (),
        fail_listing_at_page: int | None = None,
    ):
        self.templates = templates
        self.page_size = page_size
        self.deleted = set(deleted)
        self.failing_templates = set(failing_templates)
        self.fail_listing_at_page = fail_listing_at_page
        self.fetched: List[str] = []

    def get_paginator(self, name: str) -> FakePaginator:
        assert name == "list_stacks"
        return FakePaginator(self._list_stacks)

    def _list_stacks(self):
        summaries = [
            {
                "StackId": f"arn:aws:cloudformation:{REGION}:{ACCOUNT}:stack/{name}/0001",
                "StackName": name,
                "StackStatus": "DELETE_COMPLETE" if name in self.deleted else "UPDATE_COMPLETE",
            }
            for name in self.templates
        ]
        for index, chunk in enumerate(_pages(summaries, self.page_size)):
            if index == self.fail_listing_at_page:
                raise client_error("Throttling", "ListStacks")
            yield {"StackSummaries": chunk}

    async def list_stacks(self, **kwargs):
        return {"StackSummaries": []}

    async def get_template(self, StackName: str):
        name = StackName.split("/")[1]
        self.fetched.append(name)
        if name in self.failing_templates:
            raise client_error("ValidationError", "GetTemplate")
        return {"TemplateBody": self.templates[name]}


class FakeS3:
    def __init__(self, objects: Dict[str, List[Dict[str, str]]], page_size: int = 2):
        self.objects = {key: [dict(t) for t in tags] for key, tags in objects.items()}
        self.page_size = page_size
        self.fail_tagging: set = set()
        self.fail_listing = False
        self.calls: List[tuple] = []

    def get_paginator(self, name: str) -> FakePaginator:
        assert name == "list_objects_v2"
        return FakePaginator(self._list_objects)

    def _list_objects(self, Bucket: str, MaxKeys: int = 1000):
        if self.fail_listing:
            raise client_error("AccessDenied", "ListObjectsV2")
        for chunk in _pages(sorted(self.objects), self.page_size):
            yield {"Contents": [{"Key": key} for key in chunk]}

    async def get_object_tagging(self, Bucket: str, Key: str):
        self.calls.append(("get_object_tagging", Key))
        if Key in self.fail_tagging:
            raise client_error("AccessDenied", "GetObjectTagging")
        return {"TagSet": [dict(t) for t in self.objects[Key]]}

    async def put_object_tagging(self, Bucket: str, Key: str, Tagging: Dict[str, Any]):
        self.calls.append(("put_object_tagging", Key))
        self.objects[Key] = [dict(t) for t in Tagging["TagSet"]]
        return {}

    async def delete_object(self, Bucket: str, Key: str):
        self.calls.append(("delete_object", Key))
        self.objects.pop(Key, None)
        return {}

    @property
    def mutations(self) -> List[tuple]:
        return [c for c in self.calls if c[0] in ("put_object_tagging", "delete_object")]


class FakeRepository:
    def __init__(
        self,
        name: str,
        images: Dict[str, List[str]],
        managed: bool = True,
        immutable: bool = True,
    ):
        self.name = name
        self.immutable = immutable
        self.arn = f"arn:aws:ecr:{REGION}:{ACCOUNT}:repository/{name}"
        self.tags = [{"Key": "awscdk:asset", "Value": "true"}] if managed else []
        self.images = {digest: list(tags) for digest, tags in images.items()}
        self.manifests = {digest: f'{{"digest": "{digest}"}}' for digest in images}


class FakeECR:
    def __init__(self, repositories: List[FakeRepository], page_size: int = 2):
        self.repositories = {repo.name: repo for repo in repositories}
        self.page_size = page_size
        self.failing_repositories: set = set()
        self.unreadable_repositories: set = set()
        self.calls: List[tuple] = []

    def get_paginator(self, name: str) -> FakePaginator:
        if name == "describe_repositories":
            return FakePaginator(self._describe_repositories)
        assert name == "list_images"
        return FakePaginator(self._list_images)

    def _describe_repositories(self):
        repos = [
            {"repositoryName": repo.name, "repositoryArn": repo.arn}
            for repo in self.repositories.values()
        ]
        for chunk in _pages(repos, self.page_size):
            yield {"repositories": chunk}

    def _list_images(self, repositoryName: str):
        if repositoryName in self.failing_repositories:
            raise client_error("RepositoryNotFoundException", "ListImages")
        image_ids = []
        for digest, tags in self.repositories[repositoryName].images.items():
            if not tags:
                image_ids.append({"imageDigest": digest})
            for tag in tags:
                image_ids.append({"imageDigest": digest, "imageTag": tag})
        for chunk in _pages(image_ids, self.page_size):
            yield {"imageIds": chunk}

    async def list_tags_for_resource(self, resourceArn: str):
        for repo in self.repositories.values():
            if repo.arn == resourceArn:
                if repo.name in self.unreadable_repositories:
                    raise client_error("AccessDeniedException", "ListTagsForResource")
                return {"tags": list(repo.tags)}
        raise client_error("RepositoryNotFoundException", "ListTagsForResource")

    async def batch_get_image(self, repositoryName: str, imageIds, acceptedMediaTypes=None):
        self.calls.append(("batch_get_image", repositoryName))
        repo = self.repositories[repositoryName]
        images, failures = [], []
        for image_id in imageIds:
            digest = image_id["imageDigest"]
            if digest in repo.images:
                images.append(
                    {
                        "imageId": {"imageDigest": digest},
                        "imageManifest": repo.manifests[digest],
                        "imageManifestMediaType": MANIFEST_TYPE,
                    }
                )
            else:
                failures.append(
                    {
                        "imageId": {"imageDigest": digest},
                        "failureCode": "ImageNotFound",
                        "failureReason": "Requested image not found",
                    }
                )
        return {"images": images, "failures": failures}

    async def put_image(
        self,
        repositoryName: str,
        imageManifest: str,
        imageTag: str,
        imageDigest: str | None = None,
        imageManifestMediaType: str | None = None,
    ):
        self.calls.append(("put_image", repositoryName, imageDigest, imageTag))
        repo = self.repositories[repositoryName]
        assert repo.manifests[imageDigest] == imageManifest
        # A tag names exactly one digest per repository
        for digest, tags in repo.images.items():
            if digest != imageDigest and imageTag in tags:
                if repo.immutable:
                    raise client_error("ImageTagAlreadyExistsException", "PutImage")
                tags.remove(imageTag)
        repo.images[imageDigest].append(imageTag)
        return {"image": {"imageId": {"imageDigest": imageDigest, "imageTag": imageTag}}}

    async def batch_delete_image(self, repositoryName: str, imageIds):
        self.calls.append(("batch_delete_image", repositoryName))
        repo = self.repositories[repositoryName]
        for image_id in imageIds:
            repo.images.pop(image_id["imageDigest"], None)
        return {"imageIds": list(imageIds), "failures": []}

    @property
    def mutations(self) -> List[tuple]:
        return [c for c in self.calls if c[0] in ("put_image", "batch_delete_image")]


class _ClientContext:
    def __init__(self, client):
        self._client = client

    async def __aenter__(self):
        return self._client

    async def __aexit__(self, *exc_info):
        return False


class FakeSession:
    """Stands in for an aiobotocore session handing out the fake clients."""

    def __init__(self, clients: Dict[str, Any]):
        self.clients = clients
        self.created: List[str] = []

    def create_client(self, service_name: str, region_name: str | None = None):
        self.created.append(service_name)
        return _ClientContext(self.clients[service_name])


def object_marker(moment: datetime) -> Dict[str, str]:
    return {"Key": "awscdk.isolated", "Value": str(int(moment.timestamp() * 1000))}


def image_marker(moment: datetime) -> str:
    return f"awscdk.isolated-{int(moment.timestamp() * 1000)}"


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for tests."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def test_config(temp_dir: Path):
    """Create an execute-mode test configuration for both stores."""
    from assetgc.config import Environment, GCConfig, StoreKind

    return GCConfig(
        environment=Environment(account=ACCOUNT, region=REGION),
        bucket=BUCKET,
        store_kind=StoreKind.BOTH,
        dry_run=False,
        in_isolation_for=3,
        vault_path=temp_dir / "vault",
    )


@pytest.fixture
def dry_run_config(test_config):
    """Same configuration in dry-run mode."""
    return test_config.with_updates(dry_run=True)
