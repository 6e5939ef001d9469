"""Ordered registry of digesters."""

from __future__ import annotations

import logging
from typing import Dict, Iterator, List

from lifedigest.digest.base import DigestContext, Digester
from lifedigest.models import FileRecord

LOGGER = logging.getLogger(__name__)


class DigesterRegistry:
    """Holds digesters in registration order, which is also execution order."""

    def __init__(self) -> None:
        self._digesters: List[Digester] = []
        self._by_name: Dict[str, Digester] = {}

    def register(self, digester: Digester) -> Digester:
        if not digester.name:
            raise ValueError(f"Digester {digester!r} has no name")
        for name in {digester.name, *digester.output_names}:
            if name in self._by_name:
                raise ValueError(f"Digester output already registered: {name}")
        self._digesters.append(digester)
        for name in {digester.name, *digester.output_names}:
            self._by_name[name] = digester
        LOGGER.debug("Registered digester %s", digester.name)
        return digester

    def get(self, name: str) -> Digester | None:
        """Look up a digester by its name or by one of its output names."""
        return self._by_name.get(name)

    def names(self) -> List[str]:
        """All output names, in execution order."""
        return [name for digester in self._digesters for name in digester.output_names]

    def applicable(self, file: FileRecord) -> List[Digester]:
        return [digester for digester in self._digesters if digester.can_digest(file)]

    def __iter__(self) -> Iterator[Digester]:
        return iter(self._digesters)

    def __len__(self) -> int:
        return len(self._digesters)

    def __contains__(self, name: object) -> bool:
        return name in self._by_name


def build_default_registry(context: DigestContext) -> DigesterRegistry:
    """Register the built-in digesters. Later digesters may read earlier outputs."""
    from lifedigest.digest.digesters.documents import DocToMarkdownDigester
    from lifedigest.digest.digesters.images import (
        ImageCaptioningDigester,
        ImageObjectsDigester,
        ImageOcrDigester,
    )
    from lifedigest.digest.digesters.search import SearchKeywordDigester, SearchSemanticDigester
    from lifedigest.digest.digesters.speech import (
        SpeechRecognitionCleanupDigester,
        SpeechRecognitionDigester,
        SpeechRecognitionSummaryDigester,
    )
    from lifedigest.digest.digesters.tags import TagsDigester
    from lifedigest.digest.digesters.urls import UrlCrawlDigester, UrlCrawlSummaryDigester

    registry = DigesterRegistry()
    for digester_class in (
        UrlCrawlDigester,
        DocToMarkdownDigester,
        ImageOcrDigester,
        ImageCaptioningDigester,
        ImageObjectsDigester,
        SpeechRecognitionDigester,
        SpeechRecognitionCleanupDigester,
        SpeechRecognitionSummaryDigester,
        UrlCrawlSummaryDigester,
        TagsDigester,
        SearchKeywordDigester,
        SearchSemanticDigester,
    ):
        registry.register(digester_class(context))
    return registry
