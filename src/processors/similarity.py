"""
Internal link suggestions by content similarity.

Articles are represented as TF-IDF vectors over their weighted token
streams (see processors.tokenization) and candidate targets are scored by
cosine similarity against the source article.

Selection policy for one source article:
- never the source itself, never a target it already links to
- a satellite always gets a link to its pillar first (counts against the quota)
- then the most similar candidates above `min_similarity`, up to the quota
- if the article still has fewer than `min_outbound` links, the quota is
  filled with the best remaining candidates below the threshold
"""

from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional

from sklearn.feature_extraction.text import TfidfVectorizer
from sklearn.metrics.pairwise import cosine_similarity

from domain.types import ArticleStatus, LinkContext
from domain.graph import ArticleNode, LinkGraph
from processors.tokenization import (
    document_tokens,
    get_stopwords,
    html_to_text,
    is_content_word,
    iter_words,
    keyword_frequencies,
    tokenize,
)

MIN_ANCHOR_WORDS = 2


@dataclass
class LinkSuggestion:
    source_id: int
    target_id: int
    similarity: float
    anchor_text: str
    position: Optional[int] = None
    link_context: LinkContext = LinkContext.RELATED
    authority: float = 0.0
    mandatory: bool = False

    def to_dict(self) -> Dict:
        return {
            'source_id': self.source_id,
            'target_id': self.target_id,
            'similarity': self.similarity,
            'anchor_text': self.anchor_text,
            'position': self.position,
            'link_context': self.link_context.value,
            'authority': self.authority,
            'mandatory': self.mandatory,
        }


def _passthrough(tokens):
    # Documents are already tokenized
    return tokens


@dataclass
class SimilarityIndex:
    """TF-IDF vectors of one language scope, rows aligned with `article_ids`."""
    article_ids: List[int] = field(default_factory=list)
    matrix: Optional[object] = None

    def __post_init__(self):
        self._row = {article_id: i for i, article_id in enumerate(self.article_ids)}

    def __len__(self) -> int:
        return len(self.article_ids)

    def __contains__(self, article_id: int) -> bool:
        return article_id in self._row

    def similarities(self, article_id: int) -> Dict[int, float]:
        """Cosine similarity of one article against every article in the index."""
        if self.matrix is None or article_id not in self._row:
            return {}
        row = self.matrix[self._row[article_id]]
        values = cosine_similarity(row, self.matrix)[0]
        return {
            other_id: round(float(values[i]), 6)
            for i, other_id in enumerate(self.article_ids)
            if other_id != article_id
        }


def countries_compatible(a: ArticleNode, b: ArticleNode) -> bool:
    """Same country, or at least one side is not country-specific."""
    return a.country is None or b.country is None or a.country == b.country


def link_context_for(source: ArticleNode, target: ArticleNode) -> LinkContext:
    if source.pillar_id is not None and source.pillar_id == target.id:
        return LinkContext.ARTICLE_TO_PILLAR
    if target.is_pillar and not source.is_pillar:
        return LinkContext.ARTICLE_TO_PILLAR
    if source.is_pillar and target.pillar_id == source.id:
        return LinkContext.PILLAR_TO_ARTICLE
    if source.theme and source.theme == target.theme:
        return LinkContext.SAME_THEME
    if source.country and source.country == target.country:
        return LinkContext.SAME_COUNTRY
    return LinkContext.RELATED


def truncate_anchor(text: str, max_length: int) -> str:
    """Cut at the last word boundary that fits within max_length."""
    text = ' '.join(text.split())
    if len(text) <= max_length:
        return text
    cut = text[:max_length + 1]
    space = cut.rfind(' ')
    if space > 0:
        return cut[:space].rstrip(' ,;:-')
    return text[:max_length]


def find_anchor(
    source_text: str,
    target_title: str,
    language: Optional[str] = None,
    max_length: int = 60
) -> tuple:
    """
    Pick the anchor text for a link.

    Looks in the source text for the longest run of words made of the
    target title's content words (stopwords allowed in between) containing
    at least two of them. Falls back to the target title.

    Returns:
        (anchor_text, position) where position is the character offset of
        the span in the source text, or None when the title is used
    """
    stopwords = get_stopwords(language)
    title_words = set(tokenize(target_title, language))

    if source_text and len(title_words) >= MIN_ANCHOR_WORDS:
        words = list(iter_words(source_text))
        best = None
        i = 0
        while i < len(words):
            word, start, _ = words[i]
            if not (is_content_word(word, stopwords) and word in title_words):
                i += 1
                continue

            matched = 1
            end = words[i][2]
            last = i
            j = i + 1
            while j < len(words):
                candidate = words[j][0]
                if is_content_word(candidate, stopwords):
                    if candidate not in title_words:
                        break
                    matched += 1
                    end = words[j][2]
                    last = j
                j += 1

            if matched >= MIN_ANCHOR_WORDS and (best is None or end - start > best[1] - best[0]):
                best = (start, end)
            i = last + 1

        if best is not None:
            return truncate_anchor(source_text[best[0]:best[1]], max_length), best[0]

    return truncate_anchor(target_title, max_length), None


class SimilaritySuggester:
    """Propose internal links from TF-IDF cosine similarity."""

    def __init__(
        self,
        min_similarity: float = 0.10,
        max_new_links: int = 5,
        min_outbound: int = 3,
        title_weight: int = 3,
        heading_weight: int = 2,
        anchor_max_length: int = 60,
        statuses: Optional[Iterable[ArticleStatus]] = None
    ):
        if max_new_links < 1:
            raise ValueError("max_new_links must be at least 1")
        self.min_similarity = min_similarity
        self.max_new_links = max_new_links
        self.min_outbound = min_outbound
        self.title_weight = title_weight
        self.heading_weight = heading_weight
        self.anchor_max_length = anchor_max_length
        self.statuses = frozenset(statuses) if statuses is not None else frozenset({ArticleStatus.PUBLISHED})

    def tokens_for(self, node: ArticleNode) -> List[str]:
        return document_tokens(
            node.title, node.content, node.language,
            title_weight=self.title_weight,
            heading_weight=self.heading_weight,
        )

    def build_index(
        self,
        graph: LinkGraph,
        language: str,
        include_ids: Iterable[int] = ()
    ) -> SimilarityIndex:
        """
        Vectorize every in-scope article of one language.

        Args:
            graph: Link graph snapshot
            language: Language scope
            include_ids: Articles added to the corpus even when outside the
                status scope (e.g. a draft source article)

        Returns:
            SimilarityIndex, empty when the corpus has no usable vocabulary
        """
        nodes = {n.id: n for n in graph.select(statuses=self.statuses, language=language)}
        for article_id in include_ids:
            node = graph.nodes.get(article_id)
            if node is not None and node.language == language:
                nodes[article_id] = node

        article_ids = sorted(nodes)
        if len(article_ids) < 2:
            return SimilarityIndex(article_ids=article_ids)

        documents = [self.tokens_for(nodes[i]) for i in article_ids]
        vectorizer = TfidfVectorizer(analyzer=_passthrough, lowercase=False)
        try:
            matrix = vectorizer.fit_transform(documents)
        except ValueError:
            # Empty vocabulary: nothing to compare
            return SimilarityIndex(article_ids=article_ids)

        return SimilarityIndex(article_ids=article_ids, matrix=matrix)

    def _rank(
        self,
        candidates: List[int],
        similarities: Dict[int, float],
        authority: Dict[int, float]
    ) -> List[int]:
        # Similarity descending, then authority descending, then id
        return sorted(
            candidates,
            key=lambda i: (-similarities.get(i, 0.0), -authority.get(i, 0.0), i)
        )

    def _make(
        self,
        graph: LinkGraph,
        source: ArticleNode,
        target_id: int,
        similarity: float,
        authority: Dict[int, float],
        source_text: str,
        mandatory: bool = False
    ) -> LinkSuggestion:
        target = graph.nodes[target_id]
        anchor, position = find_anchor(source_text, target.title, source.language, self.anchor_max_length)
        return LinkSuggestion(
            source_id=source.id,
            target_id=target_id,
            similarity=similarity,
            anchor_text=anchor,
            position=position,
            link_context=link_context_for(source, target),
            authority=authority.get(target_id, 0.0),
            mandatory=mandatory,
        )

    def suggest(
        self,
        graph: LinkGraph,
        source_id: int,
        authority: Optional[Dict[int, float]] = None,
        index: Optional[SimilarityIndex] = None,
        max_links: Optional[int] = None
    ) -> List[LinkSuggestion]:
        """
        New outbound links for one article.

        Args:
            graph: Link graph snapshot (existing links are respected)
            source_id: Article needing links
            authority: Normalized authority scores used to break similarity ties
            index: Prebuilt index for the source's language (built when omitted)
            max_links: Quota override for this call

        Returns:
            Ordered suggestions, at most `max_links` (default `max_new_links`).
            Empty when the article is unknown or the corpus is too small.
        """
        source = graph.nodes.get(source_id)
        if source is None:
            return []

        authority = authority or {}
        quota = max_links if max_links is not None else self.max_new_links
        if quota < 1:
            return []

        if index is None or source_id not in index:
            index = self.build_index(graph, source.language, include_ids=[source_id])
        if len(index) < 2:
            return []

        similarities = index.similarities(source_id)
        source_text = html_to_text(source.content)
        suggestions: List[LinkSuggestion] = []
        taken = set()

        pillar_id = source.pillar_id
        if (pillar_id is not None and pillar_id != source_id and pillar_id in graph.nodes
                and not graph.has_edge(source_id, pillar_id)):
            suggestions.append(self._make(
                graph, source, pillar_id, similarities.get(pillar_id, 0.0),
                authority, source_text, mandatory=True,
            ))
            taken.add(pillar_id)

        candidates = [
            i for i in similarities
            if i not in taken
            and not graph.has_edge(source_id, i)
            and graph.nodes[i].status in self.statuses
            and countries_compatible(source, graph.nodes[i])
        ]
        ranked = self._rank(candidates, similarities, authority)

        for target_id in ranked:
            if len(suggestions) >= quota:
                break
            if similarities[target_id] < self.min_similarity:
                break
            suggestions.append(self._make(
                graph, source, target_id, similarities[target_id], authority, source_text,
            ))
            taken.add(target_id)

        # Fill up to the outbound floor with weaker (but related) candidates
        if graph.out_degree(source_id) + len(suggestions) < self.min_outbound:
            for target_id in ranked:
                if len(suggestions) >= quota:
                    break
                if graph.out_degree(source_id) + len(suggestions) >= self.min_outbound:
                    break
                if target_id in taken or similarities[target_id] <= 0:
                    continue
                suggestions.append(self._make(
                    graph, source, target_id, similarities[target_id], authority, source_text,
                ))
                taken.add(target_id)

        return suggestions

    def best_source_for(
        self,
        graph: LinkGraph,
        target_id: int,
        authority: Optional[Dict[int, float]] = None,
        index: Optional[SimilarityIndex] = None
    ) -> Optional[LinkSuggestion]:
        """
        Best article to give `target_id` an inbound link.

        The most similar in-scope article (above `min_similarity`) that does
        not already link to the target; failing that, the target's pillar.
        """
        target = graph.nodes.get(target_id)
        if target is None:
            return None

        authority = authority or {}
        if index is None or target_id not in index:
            index = self.build_index(graph, target.language, include_ids=[target_id])
        similarities = index.similarities(target_id) if len(index) >= 2 else {}

        candidates = [
            i for i, score in similarities.items()
            if score >= self.min_similarity
            and not graph.has_edge(i, target_id)
            and graph.nodes[i].status in self.statuses
            and countries_compatible(graph.nodes[i], target)
        ]
        if candidates:
            source_id = self._rank(candidates, similarities, authority)[0]
            source = graph.nodes[source_id]
            return self._make(
                graph, source, target_id, similarities[source_id], authority,
                html_to_text(source.content),
            )

        pillar_id = target.pillar_id
        if (pillar_id is not None and pillar_id in graph.nodes
                and pillar_id != target_id and not graph.has_edge(pillar_id, target_id)):
            pillar = graph.nodes[pillar_id]
            return self._make(
                graph, pillar, target_id, similarities.get(pillar_id, 0.0), authority,
                html_to_text(pillar.content), mandatory=True,
            )

        return None

    def common_keywords(self, a: ArticleNode, b: ArticleNode, limit: int = 10) -> List[str]:
        """Shared keywords of two articles, strongest combined weight first."""
        ka = keyword_frequencies(a.title, a.content, a.language, self.title_weight, self.heading_weight)
        kb = keyword_frequencies(b.title, b.content, b.language, self.title_weight, self.heading_weight)
        shared = set(ka) & set(kb)
        return sorted(shared, key=lambda w: (-(ka[w] + kb[w]), w))[:limit]

