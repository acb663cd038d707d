"""
Tokenization utilities for content-similarity linking.

This module turns article HTML into normalized, stopword-free tokens and
builds the weighted token streams (title x3, headings x2, body x1) fed to
the TF-IDF vectorizer.

Scripts written without spaces (Chinese, Japanese kana) are split into
overlapping character bigrams, so similarity on them works on bigram overlap
rather than on dictionary words.
"""

import re
import unicodedata
from collections import Counter
from typing import Dict, FrozenSet, Iterator, List, Optional, Tuple

from bs4 import BeautifulSoup

MIN_TOKEN_LENGTH = 3

# Letters and digits only; underscores and punctuation split words
WORD_PATTERN = re.compile(r'[^\W_]+', re.UNICODE)

# CJK ideographs and kana, written without word separators
IDEOGRAPH_PATTERN = re.compile(r'[\u3040-\u30ff\u3400-\u4dbf\u4e00-\u9fff\uf900-\ufaff]+')

HEADING_TAGS = ['h1', 'h2', 'h3', 'h4', 'h5', 'h6']


def normalize_token(token: str) -> str:
    """
    Normalize a token for matching.

    - Convert to lowercase
    - Remove accents/diacritics

    Args:
        token: Original token

    Returns:
        Normalized token (lowercase, no accents)

    Examples:
        >>> normalize_token("Démarches")
        'demarches'
        >>> normalize_token("VISA")
        'visa'
    """
    token = token.lower()

    # NFD decomposes 'é' into 'e' + combining accent, then drop the marks
    return ''.join(
        c for c in unicodedata.normalize('NFD', token)
        if unicodedata.category(c) != 'Mn'
    )


_RAW_STOPWORDS = {
    'fr': """le la les un une des de du et est en au aux pour par sur dans avec ce cette ces
             qui que quoi son sa ses leur leurs nous vous ils elles être avoir fait faire comme
             plus tout tous toute toutes pas mais donc car ainsi aussi bien très peut peuvent
             doit doivent""",
    'en': """the a an and or but in on at to for of with by from as is are was were be been
             being have has had do does did will would could should may might this that these
             those it its they them their you your""",
    'es': """el la los las un una unos unas de del al y o en con por para que como más pero
             su sus es son ser estar hay tiene tienen fue era sido siendo hacer este esta estos
             estas ese esa esos esas""",
    'de': """der die das ein eine und oder aber in auf an für mit von zu bei ist sind war
             werden wird haben hat sein kann können muss müssen diese dieser dieses wenn auch""",
    'pt': """o a os as um uma de do da dos das e ou em no na por para com que como mais mas
             seu sua ser estar ter foi era são está pode podem deve""",
    'ru': """и в во не что он на я с со как а то все она так его но да ты к у же вы за бы по
             только её мне было вот от меня ещё нет о из ему теперь когда уже или ни быть был
             него до вас нибудь опять уж вам ведь там потом себя ничего ей может они тут где
             есть надо ней для мы тебя их чем была сам чтоб без будто чего раз тоже себе под""",
    'zh': """的 是 在 不 了 有 和 人 这 中 大 为 上 个 国 我 以 要 他 时 来 用 们 生 到 作 地 于
             出 就 分 对 成 会 可 主 发 年 动 同 工 也 能 下 过 子 说 产 种 面 而 方 后 多 定 行""",
    'ar': """في من على إلى عن أن هذا هذه التي الذي ما مع كان قد و أو ثم بعد قبل حتى لكن إذا
             كل بين هو هي هم نحن أنت أنا ذلك تلك هنا هناك كيف لماذا متى أين كم أي لا نعم غير
             بل لم لن سوف قال عند منذ خلال حول ضد نحو بسبب رغم مثل فقط أيضا جدا كثير قليل بعض""",
    'hi': """का के की है हैं में को से पर और एक यह था थी थे होता होती होते हो गया गयी गये
             किया कर करते करता करती जो तो ने भी इस उस वह यहाँ वहाँ कि जब तब अब कब कहाँ क्या
             कैसे क्यों कितना कौन इसके उसके अपने अपना अपनी मैं हम तुम आप वे उन इन जिस सब कुछ""",
}

# Normalized the same way as tokens so accented entries still match
STOPWORDS: Dict[str, FrozenSet[str]] = {
    lang: frozenset(normalize_token(w) for w in words.split())
    for lang, words in _RAW_STOPWORDS.items()
}

DEFAULT_STOPWORD_LANGUAGE = 'en'


def get_stopwords(language: Optional[str]) -> FrozenSet[str]:
    """Stopwords for a language code, falling back to English."""
    if language:
        lang = language.lower().split('-')[0].split('_')[0]
        if lang in STOPWORDS:
            return STOPWORDS[lang]
    return STOPWORDS[DEFAULT_STOPWORD_LANGUAGE]


def _soup(html: str) -> BeautifulSoup:
    return BeautifulSoup(html, 'lxml')


def html_to_text(html: Optional[str]) -> str:
    """
    Strip markup and collapse whitespace.

    Examples:
        >>> html_to_text("<p>Visa <b>guide</b></p>")
        'Visa guide'
    """
    if not html:
        return ''
    text = _soup(html).get_text(' ')
    return ' '.join(text.split())


def extract_headings(html: Optional[str]) -> List[str]:
    """Text of every h1-h6 element, in document order."""
    if not html:
        return []
    headings = []
    for element in _soup(html).find_all(HEADING_TAGS):
        text = element.get_text(' ', strip=True)
        if text:
            headings.append(text)
    return headings


def iter_words(text: str) -> Iterator[Tuple[str, int, int]]:
    """
    Yield (normalized_word, start, end) for every word in text.

    Offsets refer to the original text, so callers can cut the original
    spelling back out of it.
    """
    for match in WORD_PATTERN.finditer(text):
        offset = match.start()
        segment = match.group(0)
        pos = 0
        for run in IDEOGRAPH_PATTERN.finditer(segment):
            if run.start() > pos:
                yield normalize_token(segment[pos:run.start()]), offset + pos, offset + run.start()
            yield from _bigrams(run.group(0), offset + run.start())
            pos = run.end()
        if pos < len(segment):
            yield normalize_token(segment[pos:]), offset + pos, match.end()


def _bigrams(run: str, start: int) -> Iterator[Tuple[str, int, int]]:
    if len(run) == 1:
        yield run, start, start + 1
        return
    for i in range(len(run) - 1):
        yield run[i:i + 2], start + i, start + i + 2


def is_ideographic(word: str) -> bool:
    return IDEOGRAPH_PATTERN.fullmatch(word) is not None


def is_content_word(word: str, stopwords: FrozenSet[str]) -> bool:
    if is_ideographic(word):
        # Bigrams made only of stopword characters carry no topic
        return len(word) >= 2 and not all(c in stopwords for c in word)
    return len(word) >= MIN_TOKEN_LENGTH and word not in stopwords


def tokenize(text: Optional[str], language: Optional[str] = None) -> List[str]:
    """
    Tokenize plain text into normalized content words.

    Rules:
    - Separator: any character that is not a letter or number
    - Lowercase, accents folded
    - Words shorter than 3 characters and stopwords are dropped
    - CJK runs become overlapping character bigrams

    Args:
        text: Plain text
        language: ISO language code selecting the stopword list

    Returns:
        List of tokens in text order (duplicates kept, they are the term frequency)

    Examples:
        >>> tokenize("The best visa for students", "en")
        ['best', 'visa', 'students']
    """
    if not text:
        return []
    stopwords = get_stopwords(language)
    return [word for word, _, _ in iter_words(text) if is_content_word(word, stopwords)]


def document_tokens(
    title: str,
    content: Optional[str],
    language: Optional[str] = None,
    title_weight: int = 3,
    heading_weight: int = 2
) -> List[str]:
    """
    Weighted token stream of an article.

    Title tokens are repeated `title_weight` times and heading tokens
    `heading_weight` times; the stripped body counts once (headings are
    part of the body, so their effective weight is heading_weight + 1).
    """
    tokens = tokenize(title, language) * title_weight
    for heading in extract_headings(content):
        tokens.extend(tokenize(heading, language) * heading_weight)
    tokens.extend(tokenize(html_to_text(content), language))
    return tokens


def keyword_frequencies(
    title: str,
    content: Optional[str],
    language: Optional[str] = None,
    title_weight: int = 3,
    heading_weight: int = 2,
    limit: Optional[int] = None
) -> Dict[str, int]:
    """Weighted keyword counts of an article, most frequent first."""
    counts = Counter(document_tokens(title, content, language, title_weight, heading_weight))
    return dict(counts.most_common(limit))
