# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Asset GC Liveness Classifier.

Decides for each artifact whether any deployed template still refers to
it. The classifier only ever errs towards LIVE: a token found in the
corpus, even by coincidence, keeps the artifact.
"""

import posixpath
from enum import Enum
from typing import Dict, Iterable, List, Sequence

from assetgc.corpus import ReferenceCorpus


class Liveness(str, Enum):
    """Classification of an artifact against the corpus."""

    LIVE = "live"
    ISOLATED = "isolated"


def object_token(key: str) -> str:
    """
    Identifying token of an object: its base name without extension.

    File assets are stored as '<hash>.<ext>', so this is the asset hash.
    """
    stem, _ = posixpath.splitext(posixpath.basename(key))
    return stem


def is_tombstone_tag(tag: str, isolated_tag: str) -> bool:
    return tag.startswith(f"{isolated_tag}-")


def classify_object(key: str, corpus: ReferenceCorpus) -> Liveness:
    if corpus.references(object_token(key)):
        return Liveness.LIVE
    return Liveness.ISOLATED


def classify_image(
    tags: Sequence[str],
    corpus: ReferenceCorpus,
    isolated_tag: str,
) -> Liveness:
    """
    Classify an image digest by all of its tags.

    The digest is the unit of deletion, so one referenced tag keeps it.
    Tombstone tags added by an earlier run are not identifying tokens.
    """
    for tag in tags:
        if is_tombstone_tag(tag, isolated_tag):
            continue
        if corpus.references(tag):
            return Liveness.LIVE
    return Liveness.ISOLATED


def isolated_objects(keys: Iterable[str], corpus: ReferenceCorpus) -> List[str]:
    return [key for key in keys if classify_object(key, corpus) is Liveness.ISOLATED]


def isolated_images(
    images: Dict[str, List[str]],
    corpus: ReferenceCorpus,
    isolated_tag: str,
) -> List[str]:
    """Return the digests whose tags are all unreferenced."""
    return [
        digest
        for digest, tags in images.items()
        if classify_image(tags, corpus, isolated_tag) is Liveness.ISOLATED
    ]
