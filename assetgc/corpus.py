# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Asset GC Inventory Collector - Reference corpus of deployed templates.

The corpus is the concatenation of every deployed stack's template body.
An artifact is live when its identifying token occurs anywhere in it.
The corpus must be complete: any failure while listing stacks or fetching
templates aborts the run with InventoryError.
"""

import json
import re
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, Iterable, List, Set

import structlog

from assetgc.exceptions import InventoryError

logger = structlog.get_logger()

# Stacks in this state no longer have a deployed template
_DELETED_STACK_STATUS = "DELETE_COMPLETE"

_TOKEN_PATTERN = re.compile(r"[A-Za-z0-9]+")

# Length of the substrings indexing the alphanumeric runs of the corpus
_GRAM = 4


@dataclass(frozen=True)
class ReferenceCorpus:
    """
    Immutable snapshot of all deployed template bodies.

    Matching is plain substring containment. An alphanumeric token (asset
    hashes are) can only occur inside a single alphanumeric run of the
    text, so such tokens are looked up among the runs sharing their
    rarest 4-character gram instead of scanning the whole text. Other
    tokens fall back to a scan.
    """

    text: str
    stack_count: int = 0
    _tokens: FrozenSet[str] = field(init=False, repr=False, compare=False)
    _grams: Dict[str, Set[str]] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        tokens = frozenset(_TOKEN_PATTERN.findall(self.text))
        grams: Dict[str, Set[str]] = defaultdict(set)
        for run in tokens:
            for i in range(len(run) - _GRAM + 1):
                grams[run[i:i + _GRAM]].add(run)
        object.__setattr__(self, "_tokens", tokens)
        object.__setattr__(self, "_grams", dict(grams))

    @classmethod
    def from_templates(cls, bodies: Iterable[str]) -> "ReferenceCorpus":
        bodies = list(bodies)
        return cls(text="".join(bodies), stack_count=len(bodies))

    def references(self, token: str) -> bool:
        """Return True if token occurs anywhere in the corpus."""
        if not token or token in self._tokens:
            return True
        if len(token) >= _GRAM and _TOKEN_PATTERN.fullmatch(token):
            runs = min(
                (
                    self._grams.get(token[i:i + _GRAM], set())
                    for i in range(len(token) - _GRAM + 1)
                ),
                key=len,
            )
            return any(token in run for run in runs)
        return token in self.text

    @property
    def size(self) -> int:
        return len(self.text)


async def list_stack_ids(cfn: Any) -> List[str]:
    """
    List the ids of every deployed stack, following all pages.

    Args:
        cfn: aiobotocore CloudFormation client

    Returns:
        Stack ids (stack name when the id is missing)
    """
    stack_ids: List[str] = []
    paginator = cfn.get_paginator("list_stacks")

    async for page in paginator.paginate():
        for summary in page.get("StackSummaries", []):
            if summary.get("StackStatus") == _DELETED_STACK_STATUS:
                continue
            stack_id = summary.get("StackId") or summary.get("StackName")
            if stack_id:
                stack_ids.append(stack_id)

    return stack_ids


async def fetch_template(cfn: Any, stack_id: str) -> str:
    """
    Fetch the current template body of a stack as text.

    botocore decodes JSON template bodies into mappings; those are
    serialised back so the corpus is always text.
    """
    response = await cfn.get_template(StackName=stack_id)
    body = response.get("TemplateBody")
    if body is None:
        return ""
    if isinstance(body, str):
        return body
    return json.dumps(body)


async def collect_corpus(cfn: Any) -> ReferenceCorpus:
    """
    Build the reference corpus from every deployed stack.

    Args:
        cfn: aiobotocore CloudFormation client

    Returns:
        Complete ReferenceCorpus

    Raises:
        InventoryError: If any stack page or template fetch fails
    """
    try:
        stack_ids = await list_stack_ids(cfn)
    except Exception as e:
        raise InventoryError(f"Failed to list stacks: {e}") from e

    logger.info("stacks_listed", count=len(stack_ids))

    bodies: List[str] = []
    for stack_id in stack_ids:
        try:
            bodies.append(await fetch_template(cfn, stack_id))
        except Exception as e:
            raise InventoryError(
                f"Failed to fetch template: {e}",
                details={"stack_id": stack_id},
            ) from e

    corpus = ReferenceCorpus.from_templates(bodies)
    logger.info("corpus_collected", stacks=corpus.stack_count, size=corpus.size)
    return corpus
